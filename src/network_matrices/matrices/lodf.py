from __future__ import annotations

import logging
from typing import Any, Sequence

import numpy as np
import scipy.sparse as sp

from network_matrices.config import DEFAULT_MATRIX, MACHINE_EPS, MatrixConfig, validate_lodf_linear_solver
from network_matrices.errors import TopologyError
from network_matrices.solvers import factorization, get_linear_solver, solve_columns
from network_matrices.topology import Branch, Bus

from .ba_aba import build_aba_matrix, build_ba_matrix
from .base import NetworkMatrix
from .incidence import build_incidence_matrix
from .ptdf import _check_slack_weights, _config_values, build_ptdf_from_matrices
from .sparsify import maybe_sparsify

logger = logging.getLogger(__name__)

# Below this, 1 - PTDF_kk is treated as zero (radial/islanding outage) and the
# correction factor falls back to 1.
RADIAL_THRESHOLD = 1e-6


def lodf_correction_factors(diagonal: Sequence[float]) -> np.ndarray:
    """
    Per-branch correction factors 1 - d_kk, replaced by 1.0 where that is < 1e-6.

    `diagonal` is the diagonal of A . PTDF^T, i.e. the share of a transfer between the
    endpoints of branch k that flows over branch k itself.
    """
    d = np.asarray(diagonal, dtype=float).reshape(-1)
    factors = 1.0 - d
    radial = factors < RADIAL_THRESHOLD
    if np.any(radial):
        logger.debug(
            "LODF: %d branch(es) with 1 - PTDF_kk < %.0e (radial/islanding outages)",
            int(np.count_nonzero(radial)),
            RADIAL_THRESHOLD,
        )
    factors[radial] = 1.0
    return factors


def calculate_lodf(
    A: Any,
    ptdf_t: Any,
    *,
    linear_solver: str = DEFAULT_MATRIX.linear_solver,
    chunk_size: int = DEFAULT_MATRIX.chunk_size,
) -> np.ndarray:
    """
    LODF body in logical orientation from incidence A (branch x bus) and PTDF^T (bus x branch).

    Entry (i, j) is the change of flow on branch i per unit of pre-outage flow on
    branch j when j is outaged. The diagonal is exactly -1.
    """
    solver = get_linear_solver(validate_lodf_linear_solver(linear_solver))

    P_t = ptdf_t.toarray() if sp.issparse(ptdf_t) else np.asarray(ptdf_t, dtype=float)
    denom = np.asarray(sp.csr_matrix(A, dtype=float) @ P_t, dtype=float)  # (branch x branch)
    if denom.shape[0] != denom.shape[1]:
        raise TopologyError(
            f"Incidence {A.shape} and PTDF^T {P_t.shape} do not describe the same branches."
        )

    factors = lodf_correction_factors(np.diag(denom))
    D = sp.diags(factors, format="csc")
    with factorization(solver, D) as fact:
        lodf_t = solve_columns(solver, fact, denom, chunk_size=chunk_size)

    np.fill_diagonal(lodf_t, -1.0)
    return np.ascontiguousarray(lodf_t.T)


def build_lodf_from_ptdf(
    incidence: NetworkMatrix,
    ptdf: NetworkMatrix,
    *,
    config: Any = DEFAULT_MATRIX,
) -> NetworkMatrix:
    """
    LODF from the incidence matrix and an already computed PTDF.

    A distributed-slack PTDF gives the same LODF as a single-slack one.

    Raises
    ------
    UnsupportedSolverError
        For the "alt-direct" backend (checked before any work).
    TopologyError
        If the PTDF axes do not match the incidence matrix.
    """
    solver_name = validate_lodf_linear_solver(
        getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver)
    )
    _, tol, _, chunk_size, _ = _config_values(config)

    if tuple(ptdf.row_axis) != tuple(incidence.row_axis) or tuple(ptdf.column_axis) != tuple(
        incidence.column_axis
    ):
        raise TopologyError("PTDF axes do not match the incidence matrix (branches x buses).")

    ptdf_t = ptdf.data if ptdf.transposed else ptdf.data.T
    body = calculate_lodf(
        incidence.data, ptdf_t, linear_solver=solver_name, chunk_size=chunk_size
    )
    data = maybe_sparsify(body, tol)

    branch_axis = tuple(incidence.row_axis)
    logger.debug("LODF: %dx%d, solver=%s, tol=%.3g", len(branch_axis), len(branch_axis), solver_name, tol)
    return NetworkMatrix(
        kind="lodf",
        data=data,
        axes=(branch_axis, branch_axis),
        tol=tol,
    )


def build_lodf_from_matrices(
    incidence: NetworkMatrix,
    aba: NetworkMatrix,
    ba: NetworkMatrix,
    *,
    config: Any = DEFAULT_MATRIX,
) -> NetworkMatrix:
    """LODF reusing a precomputed ABA/BA pair (an intermediate PTDF is built internally)."""
    solver_name = validate_lodf_linear_solver(
        getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver)
    )
    _, _, _, chunk_size, assign = _config_values(config)

    # Single-slack, unsparsified PTDF: LODF does not depend on the slack choice.
    ptdf_cfg = MatrixConfig(
        linear_solver=solver_name,
        tol=MACHINE_EPS,
        chunk_size=chunk_size,
        assign_missing_references=assign,
    )
    ptdf = build_ptdf_from_matrices(incidence, ba, aba, config=ptdf_cfg)
    return build_lodf_from_ptdf(incidence, ptdf, config=config)


def build_lodf(
    buses: Sequence[Bus],
    branches: Sequence[Branch],
    *,
    config: Any = DEFAULT_MATRIX,
) -> NetworkMatrix:
    """Build the LODF matrix directly from bus and branch records."""
    validate_lodf_linear_solver(getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver))
    _, _, weights, _, _ = _config_values(config)
    _check_slack_weights(weights, len(buses))
    if weights.size:
        logger.debug("LODF: distributed slack weights given; they do not change the LODF.")

    incidence = build_incidence_matrix(buses, branches)
    ba = build_ba_matrix(incidence, branches)
    aba = build_aba_matrix(incidence, ba)
    return build_lodf_from_matrices(incidence, aba, ba, config=config)
