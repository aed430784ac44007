from __future__ import annotations

import logging
from typing import Any, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from network_matrices.config import DEFAULT_MATRIX, validate_linear_solver
from network_matrices.errors import ConfigurationError, InvalidSlackConfiguration
from network_matrices.solvers import factorization, get_linear_solver, solve_columns
from network_matrices.topology import Branch, Bus

from .ba_aba import build_aba_matrix, build_ba_matrix, non_reference_positions
from .base import NetworkMatrix
from .incidence import build_incidence_matrix
from .sparsify import maybe_sparsify
from .subnetworks import assign_reference_buses, check_reference_buses, find_subnetworks

logger = logging.getLogger(__name__)


def _config_values(config: Any) -> Tuple[str, float, np.ndarray, int, bool]:
    """Read and validate the options used here; works with any MatrixConfig-like object."""
    solver = validate_linear_solver(getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver))

    tol = float(getattr(config, "tol", DEFAULT_MATRIX.tol))
    if not np.isfinite(tol) or tol < 0.0:
        raise ConfigurationError(f"tol must be finite and >= 0; got {tol!r}")

    raw = getattr(config, "dist_slack", None)
    try:
        weights = np.asarray(() if raw is None else raw, dtype=float).reshape(-1)
    except (TypeError, ValueError) as e:
        raise InvalidSlackConfiguration("dist_slack must be a sequence of numbers.") from e

    chunk_size = int(getattr(config, "chunk_size", DEFAULT_MATRIX.chunk_size))
    if chunk_size <= 0:
        raise ConfigurationError("chunk_size must be positive.")
    assign = bool(getattr(config, "assign_missing_references", False))
    return solver, tol, weights, chunk_size, assign


def _check_slack_weights(weights: np.ndarray, n_bus: int) -> None:
    if weights.size == 0:
        return
    if weights.size != n_bus:
        raise InvalidSlackConfiguration(
            f"Distributed slack vector has length {weights.size}; expected one weight per bus "
            f"({n_bus})."
        )
    if not np.all(np.isfinite(weights)):
        raise InvalidSlackConfiguration("Distributed slack weights must be finite.")
    if float(weights.sum()) <= 0.0:
        raise InvalidSlackConfiguration(
            f"Distributed slack weights must sum to a positive value; got {weights.sum()!r}."
        )


def apply_distributed_slack(ptdf_t: np.ndarray, weights: Sequence[float]) -> np.ndarray:
    """
    Re-reference a (bus x branch) PTDF to a distributed slack.

    With normalized weights w, every column c becomes c - (w . c). An injection at a bus
    is then balanced by withdrawals at all buses in proportion to w.
    """
    w = np.asarray(weights, dtype=float).reshape(-1)
    w = w / w.sum()
    return ptdf_t - np.outer(np.ones(ptdf_t.shape[0]), w @ ptdf_t)


def _resolve_reference_buses(
    incidence: NetworkMatrix, assign_missing: bool
) -> Tuple[frozenset[int], frozenset[int], dict]:
    """
    Detect islands and make sure each has a reference bus.

    Returns
    -------
    (ref_positions, added_positions, subnetworks)
        `added_positions` are buses promoted to reference for islands that had none.
    """
    bus_axis = incidence.column_axis
    ref_pos = frozenset(incidence.ref_bus_positions)
    ref_numbers = {int(bus_axis[p]) for p in ref_pos}

    subnetworks = find_subnetworks(incidence)
    added: frozenset[int] = frozenset()
    if assign_missing:
        lookup = incidence.lookup[1]
        missing = [key for key, members in subnetworks.items() if not (members & ref_numbers)]
        if missing:
            logger.warning(
                "Assigning reference buses to %d subnetwork(s) without one: %s",
                len(missing),
                missing[:20],
            )
            added = frozenset(int(lookup[key]) for key in missing)
            ref_numbers |= set(missing)
    else:
        check_reference_buses(subnetworks, ref_numbers)

    subnetworks = assign_reference_buses(subnetworks, ref_numbers)
    return ref_pos | added, added, subnetworks


def build_ptdf_from_matrices(
    incidence: NetworkMatrix,
    ba: NetworkMatrix,
    aba: NetworkMatrix | None = None,
    *,
    config: Any = DEFAULT_MATRIX,
) -> NetworkMatrix:
    """
    PTDF from precomputed incidence and BA (and optionally ABA) matrices.

    Stored transposed (bus x branch); query it in logical order as ptdf[branch, bus].

    Raises
    ------
    ConfigurationError
        Unknown linear solver or invalid tolerance.
    InvalidSlackConfiguration
        Distributed slack weights with the wrong length, a non-positive sum, or a
        network that has more than one reference bus.
    TopologyError
        Islands without a reference bus (unless `config.assign_missing_references`).
    SingularSystemError
        If ABA cannot be factorized.
    """
    solver_name, tol, weights, chunk_size, assign = _config_values(config)

    bus_axis = tuple(incidence.column_axis)
    branch_axis = tuple(incidence.row_axis)
    n_bus = len(bus_axis)
    _check_slack_weights(weights, n_bus)
    if weights.size and len(incidence.ref_bus_positions) != 1:
        raise InvalidSlackConfiguration(
            "Distributed slack requires exactly one reference bus; "
            f"{len(incidence.ref_bus_positions)} are flagged."
        )

    ref_pos, added, subnetworks = _resolve_reference_buses(incidence, assign)
    if weights.size and len(ref_pos) != 1:
        raise InvalidSlackConfiguration(
            f"Distributed slack requires exactly one reference bus; network has {len(ref_pos)} "
            f"(subnetworks: {len(subnetworks)})."
        )

    solver = get_linear_solver(solver_name)

    if aba is None:
        aba = build_aba_matrix(incidence, ba)
    BA = sp.csr_matrix(ba.data, dtype=float)
    ABA = sp.csc_matrix(aba.data, dtype=float)

    if added:
        # Promoted buses leave the reduced system: drop their rows/columns.
        base_keep = non_reference_positions(n_bus, incidence.ref_bus_positions)
        sub = np.flatnonzero(~np.isin(base_keep, np.fromiter(added, dtype=int)))
        BA = BA[:, sub]
        ABA = ABA[sub, :][:, sub]

    keep = non_reference_positions(n_bus, ref_pos)
    if BA.shape != (len(branch_axis), keep.size) or ABA.shape != (keep.size, keep.size):
        raise ConfigurationError(
            f"Matrix shapes do not match the incidence matrix: BA={BA.shape}, ABA={ABA.shape}, "
            f"expected ({len(branch_axis)}, {keep.size}) and ({keep.size}, {keep.size})."
        )

    ptdf_t = np.zeros((n_bus, len(branch_axis)), dtype=float)
    with factorization(solver, ABA) as fact:
        ptdf_t[keep, :] = solve_columns(solver, fact, BA.T.tocsc(), chunk_size=chunk_size)

    if weights.size:
        ptdf_t = apply_distributed_slack(ptdf_t, weights)
        logger.debug("PTDF: applied distributed slack over %d buses", int(np.count_nonzero(weights)))

    data = maybe_sparsify(ptdf_t, tol)
    logger.debug(
        "PTDF: branches=%d, buses=%d, reference positions=%s, solver=%s, tol=%.3g",
        len(branch_axis),
        n_bus,
        sorted(ref_pos),
        solver_name,
        tol,
    )
    return NetworkMatrix(
        kind="ptdf",
        data=data,
        axes=(bus_axis, branch_axis),
        ref_bus_positions=ref_pos,
        subnetworks=subnetworks,
        tol=tol,
        transposed=True,
    )


def build_ptdf(
    buses: Sequence[Bus],
    branches: Sequence[Branch],
    *,
    config: Any = DEFAULT_MATRIX,
) -> NetworkMatrix:
    """Build the PTDF matrix directly from bus and branch records."""
    _, _, weights, _, _ = _config_values(config)
    _check_slack_weights(weights, len(buses))
    incidence = build_incidence_matrix(buses, branches)
    ba = build_ba_matrix(incidence, branches)
    return build_ptdf_from_matrices(incidence, ba, config=config)
