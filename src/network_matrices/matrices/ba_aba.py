from __future__ import annotations

import logging
from typing import Iterable, Sequence

import numpy as np
import scipy.sparse as sp

from network_matrices.errors import TopologyError
from network_matrices.topology import Branch

from .base import NetworkMatrix
from .subnetworks import find_subnetworks

logger = logging.getLogger(__name__)


def non_reference_positions(n_bus: int, ref_bus_positions: Iterable[int]) -> np.ndarray:
    """Sorted bus positions that are not reference buses."""
    mask = np.ones(int(n_bus), dtype=bool)
    mask[np.fromiter((int(p) for p in ref_bus_positions), dtype=int)] = False
    return np.flatnonzero(mask)


def calculate_ba_matrix(
    A: sp.spmatrix, susceptances: Sequence[float], ref_bus_positions: Iterable[int]
) -> sp.csr_matrix:
    """
    BA = diag(b) . A with the reference-bus columns removed (branch x non-ref bus).
    """
    b = np.asarray(susceptances, dtype=float).reshape(-1)
    if b.size != A.shape[0]:
        raise TopologyError(
            f"Susceptance vector length {b.size} does not match branch count {A.shape[0]}."
        )
    if not np.all(np.isfinite(b)):
        raise TopologyError("Branch susceptances must be finite.")
    keep = non_reference_positions(A.shape[1], ref_bus_positions)
    A_red = sp.csr_matrix(A, dtype=float)[:, keep]
    return sp.csr_matrix(sp.diags(b) @ A_red)


def calculate_aba_matrix(
    A: sp.spmatrix, BA: sp.spmatrix, ref_bus_positions: Iterable[int]
) -> sp.csc_matrix:
    """ABA = A_red^T . BA (square over non-reference buses, symmetric)."""
    keep = non_reference_positions(A.shape[1], ref_bus_positions)
    A_red = sp.csr_matrix(A, dtype=float)[:, keep]
    return sp.csc_matrix(A_red.T @ BA)


def build_ba_matrix(incidence: NetworkMatrix, branches: Sequence[Branch]) -> NetworkMatrix:
    """
    Labelled BA matrix (axes: branch names x non-reference bus numbers).

    `branches` must be given in the same order as the incidence rows.
    """
    names = tuple(str(br.name) for br in branches)
    if names != tuple(incidence.row_axis):
        raise TopologyError(
            "Branch names/order do not match the incidence matrix rows "
            f"(got {len(names)} branches, incidence has {len(incidence.row_axis)})."
        )
    ref_pos = incidence.ref_bus_positions
    b = np.asarray([float(br.susceptance) for br in branches], dtype=float)
    BA = calculate_ba_matrix(incidence.data, b, ref_pos)
    bus_axis = incidence.column_axis
    keep = non_reference_positions(len(bus_axis), ref_pos)

    n_zero = int(np.count_nonzero(b == 0.0))
    if n_zero:
        logger.debug("BA: %d branch(es) with zero susceptance give zero rows.", n_zero)

    return NetworkMatrix(
        kind="ba",
        data=BA,
        axes=(names, tuple(bus_axis[i] for i in keep)),
        ref_bus_positions=ref_pos,
    )


def build_aba_matrix(incidence: NetworkMatrix, ba: NetworkMatrix) -> NetworkMatrix:
    """Labelled ABA matrix with the island partition of `incidence` attached."""
    if tuple(ba.row_axis) != tuple(incidence.row_axis):
        raise TopologyError("BA rows do not match the incidence matrix rows.")
    if ba.ref_bus_positions != incidence.ref_bus_positions:
        raise TopologyError("BA and incidence disagree on reference bus positions.")

    ABA = calculate_aba_matrix(incidence.data, ba.data, incidence.ref_bus_positions)
    bus_ax = tuple(ba.column_axis)
    logger.debug("ABA: %dx%d, nnz=%d", ABA.shape[0], ABA.shape[1], int(ABA.nnz))
    return NetworkMatrix(
        kind="aba",
        data=ABA,
        axes=(bus_ax, bus_ax),
        ref_bus_positions=incidence.ref_bus_positions,
        subnetworks=find_subnetworks(incidence),
    )
