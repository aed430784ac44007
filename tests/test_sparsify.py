from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from network_matrices.config import MACHINE_EPS
from network_matrices.matrices.sparsify import maybe_sparsify, sparsify


def test_entries_below_tol_are_dropped_regardless_of_sign():
    m = np.array([[0.5, -1e-4, 2e-3], [-0.2, 1e-9, 0.0]])
    out = sparsify(m, 1e-3)

    assert out.format == "csr"
    assert out.toarray().tolist() == [[0.5, 0.0, 2e-3], [-0.2, 0.0, 0.0]]
    assert out.nnz == 3
    # input untouched
    assert m[0, 1] == -1e-4


def test_idempotent():
    rng = np.random.default_rng(3)
    m = rng.normal(scale=0.01, size=(20, 15))
    once = sparsify(m, 0.01)
    twice = sparsify(once, 0.01)
    assert (once != twice).nnz == 0
    assert once.nnz == twice.nnz


def test_invalid_tolerance():
    with pytest.raises(ValueError):
        sparsify(np.eye(2), -1.0)


def test_maybe_sparsify_is_noop_at_machine_eps():
    m = np.eye(3)
    assert maybe_sparsify(m, MACHINE_EPS) is m
    assert sp.issparse(maybe_sparsify(m, 1e-12))
