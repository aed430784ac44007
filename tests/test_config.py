from __future__ import annotations

from pathlib import Path

import pytest

from network_matrices.config import (
    MACHINE_EPS,
    MatrixConfig,
    load_project_config,
    matrix_config_from_mapping,
    validate_linear_solver,
    validate_lodf_linear_solver,
)
from network_matrices.errors import ConfigurationError, UnsupportedSolverError


def test_defaults():
    cfg = MatrixConfig()
    assert cfg.linear_solver == "sparse-direct"
    assert cfg.tol == MACHINE_EPS
    assert cfg.dist_slack == ()
    assert cfg.assign_missing_references is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"linear_solver": "KLU"},
        {"tol": -1.0},
        {"tol": float("nan")},
        {"chunk_size": 0},
        {"dist_slack": ("a", "b")},
    ],
)
def test_invalid_values_are_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        MatrixConfig(**kwargs)


def test_solver_names():
    assert validate_linear_solver(" Dense ") == "dense"
    assert validate_lodf_linear_solver("sparse-direct") == "sparse-direct"
    with pytest.raises(UnsupportedSolverError):
        validate_lodf_linear_solver("alt-direct")
    # UnsupportedSolverError is still a configuration problem
    assert issubclass(UnsupportedSolverError, ConfigurationError)
    assert issubclass(ConfigurationError, ValueError)


def test_matrix_config_from_mapping_keeps_base_values():
    base = MatrixConfig(linear_solver="dense", chunk_size=16)
    cfg = matrix_config_from_mapping({"tol": 1e-6, "dist_slack": [1, 2]}, base=base)
    assert cfg.linear_solver == "dense"
    assert cfg.chunk_size == 16
    assert cfg.tol == 1e-6
    assert cfg.dist_slack == (1.0, 2.0)


def test_load_project_config_supports_extends(tmp_path: Path) -> None:
    pytest.importorskip("omegaconf")

    base = tmp_path / "base.yaml"
    base.write_text("matrix:\n  linear_solver: dense\n  tol: 1.0e-9\n", encoding="utf-8")
    child_dir = tmp_path / "child"
    child_dir.mkdir()
    child = child_dir / "child.yaml"
    child.write_text("extends: ../base.yaml\nmatrix:\n  tol: 1.0e-6\n", encoding="utf-8")

    cfg = load_project_config(child, allow_missing=False)
    assert "extends" not in cfg
    assert cfg.matrix.linear_solver == "dense"
    assert float(cfg.matrix.tol) == 1e-6

    mc = matrix_config_from_mapping(cfg.matrix)
    assert mc.linear_solver == "dense"
    assert mc.tol == 1e-6


def test_cyclic_extends_is_rejected(tmp_path: Path) -> None:
    pytest.importorskip("omegaconf")

    (tmp_path / "a.yaml").write_text("extends: b.yaml\nx: 1\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("extends: a.yaml\ny: 2\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Cyclic"):
        load_project_config(tmp_path / "a.yaml", allow_missing=False)


def test_missing_config(tmp_path: Path) -> None:
    assert load_project_config(tmp_path / "nope.yaml", allow_missing=True) is None
    with pytest.raises(FileNotFoundError):
        load_project_config(tmp_path / "nope.yaml", allow_missing=False)


def test_repository_config_is_valid() -> None:
    pytest.importorskip("omegaconf")

    root = Path(__file__).resolve().parents[1]
    cfg = load_project_config(root / "conf" / "experiments" / "sparse_lodf.yaml", allow_missing=False)
    mc = matrix_config_from_mapping(cfg.matrix)
    assert mc.linear_solver == "dense"
    assert mc.tol == 1e-6
    assert mc.dist_slack == ()
    assert cfg.logging.run_name == "sparse_lodf"


def test_extends_list_is_merged_in_order(tmp_path: Path) -> None:
    pytest.importorskip("omegaconf")

    (tmp_path / "a.yaml").write_text("matrix:\n  chunk_size: 8\n  tol: 1.0e-9\n", encoding="utf-8")
    (tmp_path / "b.yaml").write_text("matrix:\n  chunk_size: 16\n", encoding="utf-8")
    (tmp_path / "c.yaml").write_text("extends: [a.yaml, b.yaml]\n", encoding="utf-8")

    cfg = load_project_config(tmp_path / "c.yaml", allow_missing=False)
    assert int(cfg.matrix.chunk_size) == 16
    assert float(cfg.matrix.tol) == 1e-9


def test_bad_extends_targets(tmp_path: Path) -> None:
    pytest.importorskip("omegaconf")

    (tmp_path / "missing.yaml").write_text("extends: nowhere.yaml\n", encoding="utf-8")
    with pytest.raises(FileNotFoundError, match="nowhere.yaml"):
        load_project_config(tmp_path / "missing.yaml", allow_missing=False)

    (tmp_path / "list.yaml").write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="mapping"):
        load_project_config(tmp_path / "list.yaml", allow_missing=False)
