from __future__ import annotations

import json
from pathlib import Path

import pytest


def _run_args(tmp_path: Path) -> list[str]:
    return [
        "--runs-dir",
        str(tmp_path / "runs"),
        "--run-dir-mode",
        "overwrite",
        "--run-name",
        "cli",
    ]


def test_lodf_command_writes_run_artifacts(tmp_path: Path, case5_file: Path, monkeypatch) -> None:
    from network_matrices.cli import main

    monkeypatch.chdir(tmp_path)
    out = tmp_path / "matrices"
    rc = main(_run_args(tmp_path) + ["lodf", str(case5_file), "--linear-solver", "dense", "--out", str(out)])
    assert rc == 0

    run_dir = tmp_path / "runs" / "cli"
    for name in ("argv.txt", "config.json", "config.yaml", "run.log"):
        assert (run_dir / name).exists(), name
    assert (out / "ptdf.npz").exists()
    assert (out / "lodf.npz").exists()

    used = json.loads((run_dir / "config.json").read_text(encoding="utf-8"))
    assert used["command"] == "lodf"
    assert used["matrix"]["linear_solver"] == "dense"

    log_text = (run_dir / "run.log").read_text(encoding="utf-8")
    assert "Build LODF" in log_text


def test_show_prints_saved_entries(tmp_path: Path, case5_file: Path, monkeypatch, capsys) -> None:
    from network_matrices.cli import main

    monkeypatch.chdir(tmp_path)
    out = tmp_path / "matrices"
    assert main(_run_args(tmp_path) + ["lodf", str(case5_file), "--out", str(out)]) == 0
    capsys.readouterr()

    rc = main(["show", str(out / "lodf.npz"), "--row", "3-4-1", "--col", "4-5-1"])
    assert rc == 0
    assert float(capsys.readouterr().out.strip()) == pytest.approx(-0.3070707071, abs=1e-8)

    # Bus columns are matched numerically.
    rc = main(["show", str(out / "ptdf.npz"), "--row", "1-2-1", "--col", "2"])
    assert rc == 0
    assert float(capsys.readouterr().out.strip()) == pytest.approx(-0.4758947156, abs=1e-8)

    rc = main(["show", str(out / "lodf.npz"), "--row", "9-9-1", "--col", "4-5-1"])
    assert rc == 2


def test_explicit_missing_config_fails(tmp_path: Path, monkeypatch) -> None:
    from network_matrices.cli import main

    monkeypatch.chdir(tmp_path)
    assert main(["--config", "nope.yaml", "show", "x.npz"]) == 2


def test_invalid_options_exit_with_2(tmp_path: Path, case5_file: Path, monkeypatch) -> None:
    from network_matrices.cli import main

    monkeypatch.chdir(tmp_path)
    rc = main(_run_args(tmp_path) + ["lodf", str(case5_file), "--linear-solver", "alt-direct"])
    assert rc == 2
    assert "invalid options" in (tmp_path / "runs" / "cli" / "run.log").read_text(encoding="utf-8")

    rc = main(_run_args(tmp_path) + ["ptdf", str(case5_file), "--dist-slack", "1,1"])
    assert rc == 2
    rc = main(_run_args(tmp_path) + ["ptdf", str(case5_file), "--dist-slack", "a,b"])
    assert rc == 2
    assert not (tmp_path / "runs" / "cli" / "lodf.npz").exists()


def test_dist_slack_parsing() -> None:
    from network_matrices.cli import _parse_dist_slack
    from network_matrices.errors import ConfigurationError

    assert _parse_dist_slack("") == ()
    assert _parse_dist_slack("0.2, 0.8") == (0.2, 0.8)
    assert _parse_dist_slack([1, 2]) == (1.0, 2.0)
    with pytest.raises(ConfigurationError):
        _parse_dist_slack("a,b")


def test_unsolvable_case_exits_with_1(tmp_path: Path, case5_file: Path, monkeypatch) -> None:
    from network_matrices.cli import main

    monkeypatch.chdir(tmp_path)
    # Second island (buses 6, 7) without a reference bus.
    text = case5_file.read_text(encoding="utf-8")
    text = text.replace(
        "\t5\t2\t0\t0\t0\t0\t1\t1\t0\t230\t1\t1.1\t0.9;\n",
        "\t5\t2\t0\t0\t0\t0\t1\t1\t0\t230\t1\t1.1\t0.9;\n"
        "\t6\t1\t0\t0\t0\t0\t1\t1\t0\t230\t1\t1.1\t0.9;\n"
        "\t7\t1\t0\t0\t0\t0\t1\t1\t0\t230\t1\t1.1\t0.9;\n",
    )
    text = text.replace(
        "\t4\t5\t0.00297\t0.0297\t0.00674\t240\t240\t240\t0\t0\t1\t-360\t360;\n",
        "\t4\t5\t0.00297\t0.0297\t0.00674\t240\t240\t240\t0\t0\t1\t-360\t360;\n"
        "\t6\t7\t0.001\t0.01\t0\t0\t0\t0\t0\t0\t1\t-360\t360;\n",
    )
    assert "\t6\t7\t" in text and "\t7\t1\t" in text
    islands = tmp_path / "islands.m"
    islands.write_text(text, encoding="utf-8")

    assert main(_run_args(tmp_path) + ["ptdf", str(islands)]) == 1
    assert main(_run_args(tmp_path) + ["ptdf", str(tmp_path / "missing.m")]) == 1
    assert main(_run_args(tmp_path) + ["ptdf", str(islands), "--assign-missing-references", "1"]) == 0
