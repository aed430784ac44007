from __future__ import annotations

"""
High-level workflows (library API).

Public API
----------
- load_topology(path): MATPOWER .m or pandapower .json -> (buses, branches)
- compute_matrices_for_case(...): case file -> incidence/BA -> PTDF (-> LODF) -> .npz files
"""

import logging
import os
from pathlib import Path
from typing import Any

from network_matrices.config import DEFAULT_MATRIX, validate_linear_solver, validate_lodf_linear_solver
from network_matrices.matrices.ba_aba import build_aba_matrix, build_ba_matrix
from network_matrices.matrices.incidence import build_incidence_matrix
from network_matrices.matrices.lodf import build_lodf_from_ptdf
from network_matrices.matrices.ptdf import build_ptdf_from_matrices
from network_matrices.matrices.storage import save_matrix
from network_matrices.parsers.matpower import load_case
from network_matrices.parsers.pandapower_net import load_pandapower_case
from network_matrices.utils import log_matrix, log_stage

logger = logging.getLogger(__name__)

# Matrices with more rows than this are summarized in run.log instead of dumped whole.
_LOG_MATRIX_MAX_ROWS = 200


def load_topology(path: str | os.PathLike[str]) -> tuple[list, list]:
    """Read `(buses, branches)` from a MATPOWER `.m` file or a pandapower `.json` file."""
    p = Path(path)
    if p.suffix.lower() == ".json":
        return load_pandapower_case(p)
    return load_case(p)


def compute_matrices_for_case(
    input_path: str | os.PathLike[str],
    *,
    config: Any = DEFAULT_MATRIX,
    compute_lodf: bool = True,
    out_dir: str | os.PathLike[str] | None = None,
) -> dict[str, Any]:
    """
    Build PTDF (and optionally LODF) for one case file.

    Parameters
    ----------
    input_path:
        MATPOWER `.m` file or pandapower `.json` network.
    config:
        MatrixConfig (solver, tolerance, distributed slack, chunk size).
    compute_lodf:
        Also build the LODF matrix from the PTDF.
    out_dir:
        When given, matrices are saved as `ptdf.npz` / `lodf.npz` in this directory.

    Returns
    -------
    dict
        Keys: "case", "n_bus", "n_branch", "ptdf", "lodf" (None if skipped) and "files"
        (name -> saved path).
    """
    # Fail before any parsing if the options cannot work.
    validate_linear_solver(getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver))
    if compute_lodf:
        validate_lodf_linear_solver(getattr(config, "linear_solver", DEFAULT_MATRIX.linear_solver))

    case_path = Path(input_path)
    with log_stage(logger, "Read Data"):
        buses, branches = load_topology(case_path)
        logger.info("Case %s: %d buses, %d branches", case_path.name, len(buses), len(branches))

    with log_stage(logger, "Build Topology Matrices"):
        incidence = build_incidence_matrix(buses, branches)
        ba = build_ba_matrix(incidence, branches)
        aba = build_aba_matrix(incidence, ba)

    with log_stage(logger, "Build PTDF"):
        ptdf = build_ptdf_from_matrices(incidence, ba, aba, config=config)
        log_matrix(ptdf, max_rows=_LOG_MATRIX_MAX_ROWS)

    lodf = None
    if compute_lodf:
        with log_stage(logger, "Build LODF"):
            lodf = build_lodf_from_ptdf(incidence, ptdf, config=config)
            log_matrix(lodf, max_rows=_LOG_MATRIX_MAX_ROWS)

    files: dict[str, str] = {}
    if out_dir is not None:
        with log_stage(logger, "Save Outputs"):
            target = Path(out_dir)
            files["ptdf"] = str(save_matrix(ptdf, target / "ptdf.npz"))
            if lodf is not None:
                files["lodf"] = str(save_matrix(lodf, target / "lodf.npz"))
            for name, path in files.items():
                logger.info("Saved %s: %s", name, path)

    return {
        "case": case_path.name,
        "n_bus": len(buses),
        "n_branch": len(branches),
        "ptdf": ptdf,
        "lodf": lodf,
        "files": files,
    }
