"""
network_matrices package.

The repository uses a `src/` layout. Library code lives under `src/network_matrices`.

Public API
----------
- `Bus`, `Branch`: topology records consumed by the builders.
- `MatrixConfig`: immutable options (linear solver, tolerance, distributed slack).
- `build_ptdf`, `build_lodf` and the other builders in `network_matrices.matrices`.
- `compute_matrices_for_case`: MATPOWER case -> PTDF (-> LODF) pipeline.
"""

from __future__ import annotations

from .config import MatrixConfig
from .errors import (
    ConfigurationError,
    InvalidSlackConfiguration,
    NetworkMatrixError,
    SingularSystemError,
    TopologyError,
    UnsupportedSolverError,
)
from .matrices import (
    NetworkMatrix,
    build_aba_matrix,
    build_ba_matrix,
    build_incidence_matrix,
    build_lodf,
    build_lodf_from_matrices,
    build_lodf_from_ptdf,
    build_ptdf,
    build_ptdf_from_matrices,
    load_matrix,
    save_matrix,
)
from .topology import Branch, Bus
from .workflows import compute_matrices_for_case

__all__ = [
    "Branch",
    "Bus",
    "ConfigurationError",
    "InvalidSlackConfiguration",
    "MatrixConfig",
    "NetworkMatrix",
    "NetworkMatrixError",
    "SingularSystemError",
    "TopologyError",
    "UnsupportedSolverError",
    "__version__",
    "build_aba_matrix",
    "build_ba_matrix",
    "build_incidence_matrix",
    "build_lodf",
    "build_lodf_from_matrices",
    "build_lodf_from_ptdf",
    "build_ptdf",
    "build_ptdf_from_matrices",
    "compute_matrices_for_case",
    "load_matrix",
    "save_matrix",
]

__version__ = "0.1.0"
