from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Hashable, Mapping, Sequence, Tuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

from network_matrices.config import MACHINE_EPS
from network_matrices.errors import ConfigurationError

from .sparsify import maybe_sparsify

logger = logging.getLogger(__name__)

MATRIX_KINDS: Tuple[str, ...] = ("incidence", "ba", "aba", "ptdf", "lodf")

_ALL = slice(None)


def make_lookup(labels: Sequence[Hashable]) -> Mapping[Hashable, int]:
    """Read-only label -> position mapping for one axis."""
    lookup = {label: pos for pos, label in enumerate(labels)}
    if len(lookup) != len(labels):
        raise ValueError("Axis labels must be unique.")
    return MappingProxyType(lookup)


@dataclass(eq=False)
class NetworkMatrix:
    """
    Labelled 2D matrix shared by every matrix kind (incidence, BA, ABA, PTDF, LODF).

    Storage vs logical orientation
    ------------------------------
    `data`, `axes` and `lookup` are in storage order. PTDF is stored transposed
    (bus x branch) because the solver produces one column per branch; for such
    matrices `transposed=True` and every query method works in the logical order
    (branch x bus).

    Metadata
    --------
    - ref_bus_positions: positions (in bus order) of reference buses.
    - subnetworks: representative bus number -> bus numbers of the island.
    - tol: sparsification threshold applied to `data` (machine epsilon = none).
    """

    kind: str
    data: Any = field(repr=False)
    axes: Tuple[Tuple[Any, ...], Tuple[Any, ...]]
    ref_bus_positions: frozenset[int] = frozenset()
    subnetworks: dict[int, frozenset[int]] = field(default_factory=dict, repr=False)
    tol: float = MACHINE_EPS
    transposed: bool = False
    lookup: Tuple[Mapping[Hashable, int], Mapping[Hashable, int]] = field(
        init=False, repr=False
    )

    def __post_init__(self) -> None:
        if self.kind not in MATRIX_KINDS:
            raise ValueError(f"Unknown matrix kind {self.kind!r}; expected one of {MATRIX_KINDS}")
        if getattr(self.data, "ndim", 2) != 2:
            raise ValueError(f"{self.kind}: data must be 2D; got shape {np.shape(self.data)}")

        rows, cols = tuple(self.axes[0]), tuple(self.axes[1])
        if tuple(self.data.shape) != (len(rows), len(cols)):
            raise ValueError(
                f"{self.kind}: data shape {self.data.shape} does not match axes "
                f"({len(rows)}, {len(cols)})."
            )
        self.axes = (rows, cols)
        self.lookup = (make_lookup(rows), make_lookup(cols))
        self.ref_bus_positions = frozenset(int(x) for x in self.ref_bus_positions)
        self.subnetworks = {
            int(k): frozenset(int(b) for b in v) for k, v in dict(self.subnetworks).items()
        }
        self.tol = float(self.tol)

    # ------------------------------------------------------------------ axes
    @property
    def row_axis(self) -> Tuple[Any, ...]:
        """Logical row labels (branches for PTDF/LODF/incidence/BA)."""
        return self.axes[1] if self.transposed else self.axes[0]

    @property
    def column_axis(self) -> Tuple[Any, ...]:
        """Logical column labels."""
        return self.axes[0] if self.transposed else self.axes[1]

    @property
    def shape(self) -> Tuple[int, int]:
        """Logical shape."""
        return len(self.row_axis), len(self.column_axis)

    @property
    def is_sparse(self) -> bool:
        return bool(sp.issparse(self.data))

    def _position(self, axis: int, label: Hashable) -> int:
        try:
            return int(self.lookup[axis][label])
        except KeyError:
            raise KeyError(
                f"{self.kind}: unknown label {label!r} on axis {axis}"
            ) from None

    def to_index(self, row: Hashable, col: Hashable) -> Tuple[int, int]:
        """Map logical (row, col) labels to storage indices into `data`."""
        if self.transposed:
            return self._position(0, col), self._position(1, row)
        return self._position(0, row), self._position(1, col)

    # ---------------------------------------------------------------- access
    def _storage_row(self, i: int) -> np.ndarray:
        if self.is_sparse:
            return np.asarray(self.data[i, :].toarray(), dtype=float).ravel()
        return np.asarray(self.data[i, :], dtype=float).ravel()

    def _storage_col(self, j: int) -> np.ndarray:
        if self.is_sparse:
            return np.asarray(self.data[:, j].toarray(), dtype=float).ravel()
        return np.asarray(self.data[:, j], dtype=float).ravel()

    def __getitem__(self, key: Tuple[Any, Any]) -> Any:
        """
        Label-based access in logical orientation.

        - m[row, col] -> float
        - m[row, :]   -> 1D array over column_axis
        - m[:, col]   -> 1D array over row_axis
        """
        if not isinstance(key, tuple) or len(key) != 2:
            raise TypeError(f"{self.kind}: index with a (row, col) pair of labels")
        row, col = key
        if row == _ALL and col == _ALL:
            return self.values

        if row == _ALL:
            p = self._position(0 if self.transposed else 1, col)
            return self._storage_row(p) if self.transposed else self._storage_col(p)
        if col == _ALL:
            p = self._position(1 if self.transposed else 0, row)
            return self._storage_col(p) if self.transposed else self._storage_row(p)

        i, j = self.to_index(row, col)
        return float(self.data[i, j])

    @property
    def values(self) -> np.ndarray:
        """Dense copy of the body in logical orientation."""
        arr = self.data.toarray() if self.is_sparse else np.array(self.data)
        return arr.T if self.transposed else arr

    def to_dataframe(self) -> pd.DataFrame:
        """Logical-orientation pandas DataFrame labelled with the axes."""
        return pd.DataFrame(
            self.values, index=list(self.row_axis), columns=list(self.column_axis)
        )

    # ------------------------------------------------------------- tolerance
    def set_tol(self, tol: float) -> None:
        """
        Raise the sparsification tolerance and re-sparsify `data`.

        Entries dropped under the current tolerance cannot be recovered, so lowering
        the tolerance requires rebuilding the matrix.

        Raises
        ------
        ConfigurationError
            If `tol` is lower than the current tolerance.
        """
        t = float(tol)
        if not np.isfinite(t) or t < 0.0:
            raise ConfigurationError(f"tol must be finite and >= 0; got {tol!r}")
        if t < self.tol:
            raise ConfigurationError(
                f"{self.kind}: cannot lower tol from {self.tol:.3g} to {t:.3g} "
                "without rebuilding the matrix."
            )
        self.data = maybe_sparsify(self.data, t)
        self.tol = t
        logger.debug("%s: tol set to %.3g", self.kind, t)
