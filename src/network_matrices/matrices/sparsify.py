from __future__ import annotations

import logging
from typing import Any

import numpy as np
import scipy.sparse as sp

from network_matrices.config import MACHINE_EPS

logger = logging.getLogger(__name__)


def sparsify(matrix: Any, tol: float) -> sp.csr_matrix:
    """
    Drop entries whose absolute value is below `tol`.

    Entries with |x| < tol become structural zeros (sign is irrelevant); all other
    entries are kept bit-for-bit. Applying the function twice with the same `tol`
    changes nothing.

    Parameters
    ----------
    matrix:
        Dense array or scipy sparse matrix (2D).
    tol:
        Absolute threshold (>= 0).

    Returns
    -------
    scipy.sparse.csr_matrix
        A new CSR matrix; the input is not modified.
    """
    t = float(tol)
    if not np.isfinite(t) or t < 0.0:
        raise ValueError(f"tol must be finite and >= 0; got {tol!r}")

    if sp.issparse(matrix):
        out = sp.csr_matrix(matrix, dtype=float, copy=True)
    else:
        arr = np.asarray(matrix, dtype=float)
        if arr.ndim != 2:
            raise ValueError(f"sparsify expects a 2D matrix; got shape {arr.shape}")
        out = sp.csr_matrix(arr)

    nnz_before = int(out.nnz)
    out.data[np.abs(out.data) < t] = 0.0
    out.eliminate_zeros()

    logger.debug(
        "sparsify(tol=%.3g): nnz %d -> %d (shape=%s)", t, nnz_before, int(out.nnz), out.shape
    )
    return out


def maybe_sparsify(matrix: Any, tol: float) -> Any:
    """Sparsify only when `tol` strictly exceeds machine epsilon; otherwise return `matrix` as-is."""
    if float(tol) > MACHINE_EPS:
        return sparsify(matrix, tol)
    return matrix
