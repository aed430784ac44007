from __future__ import annotations

"""
Linear-solver strategy used by the PTDF and LODF engines.

Every backend factorizes a square operator once and solves many right-hand sides
against it:

- "sparse-direct": SuperLU via scipy.sparse.linalg.splu (default)
- "dense": LAPACK getrf/getrs via scipy.linalg.lu_factor/lu_solve
- "alt-direct": MKL PARDISO via pypardiso (optional `pardiso` extra)

Use `factorization(solver, operator)` so that backend memory is released on every
exit path.
"""

import importlib
import logging
import warnings
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Type

import numpy as np
import scipy.linalg as sla
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from network_matrices.config import ALT_DIRECT, DENSE, SPARSE_DIRECT, validate_linear_solver
from network_matrices.errors import SingularSystemError, UnsupportedSolverError

logger = logging.getLogger(__name__)


@dataclass
class Factorization:
    """Backend-specific factorization handle plus the operator size."""

    backend: str
    handle: Any
    n: int
    operator: Any = None
    released: bool = False


class LinearSolver(ABC):
    """Factorize once, solve many right-hand sides, release explicitly."""

    name: str = ""

    @abstractmethod
    def factorize(self, operator: Any) -> Factorization:
        """Factorize a square operator; raises SingularSystemError on failure."""

    @abstractmethod
    def _solve(self, fact: Factorization, rhs: np.ndarray) -> np.ndarray:
        ...

    def solve(self, fact: Factorization, rhs: Any) -> np.ndarray:
        """
        Solve operator * x = rhs for a vector or a block of columns.

        Raises
        ------
        SingularSystemError
            If the solution contains non-finite values.
        """
        if fact.released:
            raise RuntimeError(f"{self.name}: factorization has already been released.")
        b = rhs.toarray() if sp.issparse(rhs) else np.asarray(rhs, dtype=float)
        if b.shape[0] != fact.n:
            raise ValueError(f"rhs must have {fact.n} rows; got shape {b.shape}")
        if b.size == 0:
            return np.zeros(b.shape, dtype=float)
        x = np.asarray(self._solve(fact, np.asarray(b, dtype=float)), dtype=float).reshape(b.shape)
        if not np.all(np.isfinite(x)):
            raise SingularSystemError(
                f"{self.name}: solution contains non-finite values (operator {fact.n}x{fact.n})."
            )
        return x

    def release(self, fact: Factorization) -> None:
        """Free backend memory held by `fact`. Safe to call twice."""
        fact.handle = None
        fact.operator = None
        fact.released = True


def _check_square(operator: Any, name: str) -> int:
    shape = getattr(operator, "shape", None)
    if shape is None or len(shape) != 2 or shape[0] != shape[1]:
        raise ValueError(f"{name}: operator must be a square 2D matrix; got shape {shape}")
    if shape[0] == 0:
        raise SingularSystemError(f"{name}: cannot factorize an empty operator.")
    return int(shape[0])


class SparseDirectSolver(LinearSolver):
    """SuperLU (scipy.sparse.linalg.splu) on a CSC operator."""

    name = SPARSE_DIRECT

    def factorize(self, operator: Any) -> Factorization:
        n = _check_square(operator, self.name)
        try:
            lu = spla.splu(sp.csc_matrix(operator, dtype=float))
        except RuntimeError as e:
            logger.error("SuperLU factorization failed for a %dx%d operator: %s", n, n, e)
            raise SingularSystemError(
                f"Sparse LU factorization failed (singular operator {n}x{n}); "
                "check for islands without a reference bus or zero-susceptance cut sets."
            ) from e
        return Factorization(backend=self.name, handle=lu, n=n)

    def _solve(self, fact: Factorization, rhs: np.ndarray) -> np.ndarray:
        return fact.handle.solve(rhs)


class DenseSolver(LinearSolver):
    """LAPACK LU on a dense copy of the operator."""

    name = DENSE

    def factorize(self, operator: Any) -> Factorization:
        n = _check_square(operator, self.name)
        arr = operator.toarray() if sp.issparse(operator) else np.array(operator, dtype=float)
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", sla.LinAlgWarning)
                lu_piv = sla.lu_factor(np.asarray(arr, dtype=float), check_finite=True)
        except (sla.LinAlgWarning, sla.LinAlgError, ValueError) as e:
            logger.error("Dense LU factorization failed for a %dx%d operator: %s", n, n, e)
            raise SingularSystemError(
                f"Dense LU factorization failed (singular operator {n}x{n})."
            ) from e
        return Factorization(backend=self.name, handle=lu_piv, n=n)

    def _solve(self, fact: Factorization, rhs: np.ndarray) -> np.ndarray:
        return sla.lu_solve(fact.handle, rhs, check_finite=False)


class PardisoSolver(LinearSolver):
    """MKL PARDISO via pypardiso (imported lazily)."""

    name = ALT_DIRECT

    def __init__(self) -> None:
        try:
            self._pypardiso = importlib.import_module("pypardiso")
        except ImportError as e:
            raise UnsupportedSolverError(
                "Linear solver 'alt-direct' requires pypardiso "
                "(install with `pip install network-matrices[pardiso]`)."
            ) from e

    def factorize(self, operator: Any) -> Factorization:
        n = _check_square(operator, self.name)
        A = sp.csr_matrix(operator, dtype=float)
        A.sort_indices()
        ps = self._pypardiso.PyPardisoSolver()
        try:
            ps.factorize(A)
        except Exception as e:  # noqa: BLE001 - pypardiso raises its own error types
            logger.error("PARDISO factorization failed for a %dx%d operator: %s", n, n, e)
            ps.free_memory(everything=True)
            raise SingularSystemError(
                f"PARDISO factorization failed (operator {n}x{n})."
            ) from e
        return Factorization(backend=self.name, handle=ps, n=n, operator=A)

    def _solve(self, fact: Factorization, rhs: np.ndarray) -> np.ndarray:
        try:
            return fact.handle.solve(fact.operator, rhs)
        except Exception as e:  # noqa: BLE001
            raise SingularSystemError(f"PARDISO solve failed: {e}") from e

    def release(self, fact: Factorization) -> None:
        if fact.handle is not None:
            fact.handle.free_memory(everything=True)
        super().release(fact)


_SOLVERS: Dict[str, Type[LinearSolver]] = {
    SPARSE_DIRECT: SparseDirectSolver,
    DENSE: DenseSolver,
    ALT_DIRECT: PardisoSolver,
}


def get_linear_solver(name: str) -> LinearSolver:
    """
    Instantiate the backend registered under `name`.

    Raises
    ------
    ConfigurationError
        For unknown names.
    UnsupportedSolverError
        If the backend library is not installed.
    """
    key = validate_linear_solver(name)
    return _SOLVERS[key]()


@contextmanager
def factorization(solver: LinearSolver, operator: Any) -> Iterator[Factorization]:
    """Factorize `operator` and release the factorization when the block exits."""
    fact = solver.factorize(operator)
    logger.debug("%s: factorized %dx%d operator", solver.name, fact.n, fact.n)
    try:
        yield fact
    finally:
        solver.release(fact)


def solve_columns(
    solver: LinearSolver,
    fact: Factorization,
    rhs: Any,
    *,
    chunk_size: int = 256,
) -> np.ndarray:
    """
    Solve for all columns of `rhs` in blocks of `chunk_size` columns.

    `rhs` may be dense or sparse; only one dense block is materialized at a time.
    """
    if int(chunk_size) <= 0:
        raise ValueError("chunk_size must be positive")
    n_rows, k = rhs.shape
    out = np.zeros((n_rows, k), dtype=float)
    rhs_csc = sp.csc_matrix(rhs) if sp.issparse(rhs) else None

    start = 0
    while start < k:
        end = min(k, start + int(chunk_size))
        block = rhs_csc[:, start:end].toarray() if rhs_csc is not None else rhs[:, start:end]
        out[:, start:end] = solver.solve(fact, block)
        start = end

    logger.debug("%s: solved %d right-hand sides in chunks of %d", solver.name, k, chunk_size)
    return out
