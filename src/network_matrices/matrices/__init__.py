"""
Network sensitivity matrices.

Each matrix kind is a `NetworkMatrix` produced by one builder function:

- incidence: `build_incidence_matrix`
- BA / ABA: `build_ba_matrix`, `build_aba_matrix`
- PTDF: `build_ptdf`, `build_ptdf_from_matrices`
- LODF: `build_lodf`, `build_lodf_from_ptdf`, `build_lodf_from_matrices`
"""

from __future__ import annotations

from .ba_aba import build_aba_matrix, build_ba_matrix
from .base import NetworkMatrix
from .incidence import build_incidence_matrix
from .lodf import build_lodf, build_lodf_from_matrices, build_lodf_from_ptdf
from .ptdf import build_ptdf, build_ptdf_from_matrices
from .sparsify import sparsify
from .storage import load_matrix, save_matrix
from .subnetworks import find_subnetworks

__all__ = [
    "NetworkMatrix",
    "build_aba_matrix",
    "build_ba_matrix",
    "build_incidence_matrix",
    "build_lodf",
    "build_lodf_from_matrices",
    "build_lodf_from_ptdf",
    "build_ptdf",
    "build_ptdf_from_matrices",
    "find_subnetworks",
    "load_matrix",
    "save_matrix",
    "sparsify",
]
