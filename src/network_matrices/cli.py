from __future__ import annotations

"""
Command-line interface (argparse + OmegaConf YAML defaults).

- Defaults live in `conf/config.yaml` (sections `logging:` and `matrix:`); CLI flags
  override them.
- `ptdf` / `lodf` build matrices from a MATPOWER case and save them as `.npz`.
  Each run creates a run folder with run.log, argv.txt, config.json and config.yaml.
- `show` prints entries of a saved matrix by label.

Usage:
  network-matrices ptdf case14.m --linear-solver dense --tol 1e-8
  network-matrices lodf case14.m --out results/
  network-matrices show results/lodf.npz --row 1-2-1 --col 2-3-1
"""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Sequence

from network_matrices.config import (
    DEFAULT_LOGGING,
    DEFAULT_MATRIX,
    HAVE_OMEGACONF,
    SUPPORTED_LINEAR_SOLVERS,
    LoggingConfig,
    MatrixConfig,
    OmegaConf,
    load_project_config,
    matrix_config_from_mapping,
)
from network_matrices.errors import ConfigurationError, NetworkMatrixError
from network_matrices.matrices.storage import load_matrix
from network_matrices.utils import setup_logging
from network_matrices.workflows import compute_matrices_for_case

logger = logging.getLogger("network_matrices.cli")

_DEFAULT_CONFIG_PATH = "conf/config.yaml"


def _preparse_config_path(argv: Sequence[str]) -> tuple[str, bool]:
    """Return (config path, explicitly given) before the full parser exists."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None)
    ns, _ = pre.parse_known_args(list(argv))
    if ns.config is None:
        return _DEFAULT_CONFIG_PATH, False
    return str(ns.config), True


def _cfg_get(cfg: Any, key: str, default: Any) -> Any:
    """Dotted-key lookup in an OmegaConf config; `default` when missing."""
    if cfg is None or not HAVE_OMEGACONF or OmegaConf is None:
        return default
    v = OmegaConf.select(cfg, key, default=None)
    return default if v is None else v


def _parse_dist_slack(value: str | Sequence[float] | None) -> tuple[float, ...]:
    """Accept "0.2,0.3,0.5", an empty string, or a list from YAML."""
    if value is None:
        return ()
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
        try:
            return tuple(float(p) for p in parts)
        except ValueError as e:
            raise ConfigurationError(
                f"--dist-slack must be comma-separated numbers; got {value!r}"
            ) from e
    return tuple(float(x) for x in value)


def build_parser(cfg: Any) -> argparse.ArgumentParser:
    """Create the CLI parser (defaults are taken from the loaded YAML config)."""
    parser = argparse.ArgumentParser(
        prog="network-matrices",
        description="Build PTDF/LODF sensitivity matrices for DC power-flow models.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=_DEFAULT_CONFIG_PATH,
        help="Path to OmegaConf-compatible YAML config (supports `extends:`).",
    )
    parser.add_argument(
        "--runs-dir",
        type=str,
        default=str(_cfg_get(cfg, "logging.runs_dir", DEFAULT_LOGGING.runs_dir)),
        help="Directory where per-run folders and run.log are created.",
    )
    parser.add_argument(
        "--run-dir-mode",
        type=str,
        default=str(_cfg_get(cfg, "logging.run_dir_mode", DEFAULT_LOGGING.run_dir_mode)),
        choices=("timestamp", "overwrite"),
        help="Run directory behavior: timestamp (new folder) or overwrite (reuse run-name).",
    )
    parser.add_argument(
        "--run-name",
        type=str,
        default=str(_cfg_get(cfg, "logging.run_name", DEFAULT_LOGGING.run_name)),
        help="Run folder name used when --run-dir-mode overwrite.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=str(_cfg_get(cfg, "logging.level_console", DEFAULT_LOGGING.level_console)),
        help="Console logging level (INFO/DEBUG/WARNING/ERROR).",
    )
    parser.add_argument(
        "--log-file-level",
        type=str,
        default=str(_cfg_get(cfg, "logging.level_file", DEFAULT_LOGGING.level_file)),
        help="File logging level (DEBUG includes matrix dumps).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("ptdf", "Build the PTDF matrix of a case."),
        ("lodf", "Build the PTDF and LODF matrices of a case."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("input", type=str, help="Case file: MATPOWER .m or pandapower .json.")
        p.add_argument(
            "--linear-solver",
            type=str,
            default=str(_cfg_get(cfg, "matrix.linear_solver", DEFAULT_MATRIX.linear_solver)),
            choices=SUPPORTED_LINEAR_SOLVERS,
            help="Factorization backend (LODF supports sparse-direct and dense).",
        )
        p.add_argument(
            "--tol",
            type=float,
            default=float(_cfg_get(cfg, "matrix.tol", DEFAULT_MATRIX.tol)),
            help="Sparsification threshold; entries with |x| < tol are dropped.",
        )
        p.add_argument(
            "--dist-slack",
            type=str,
            default=",".join(
                str(x) for x in _parse_dist_slack(_cfg_get(cfg, "matrix.dist_slack", None))
            ),
            help="Comma-separated distributed slack weights, one per bus (empty: single slack).",
        )
        p.add_argument(
            "--chunk-size",
            type=int,
            default=int(_cfg_get(cfg, "matrix.chunk_size", DEFAULT_MATRIX.chunk_size)),
            help="Right-hand-side columns per solve call.",
        )
        p.add_argument(
            "--assign-missing-references",
            type=int,
            default=int(
                _cfg_get(
                    cfg,
                    "matrix.assign_missing_references",
                    int(DEFAULT_MATRIX.assign_missing_references),
                )
            ),
            help="1: pick a reference bus for islands without one; 0: fail.",
        )
        p.add_argument(
            "--out",
            type=str,
            default=None,
            help="Output directory for .npz files (default: the run directory).",
        )

    p_show = sub.add_parser("show", help="Print entries of a saved matrix.")
    p_show.add_argument("path", type=str, help="Matrix file written by ptdf/lodf (.npz).")
    p_show.add_argument("--row", type=str, default=None, help="Row label (branch name).")
    p_show.add_argument("--col", type=str, default=None, help="Column label (bus number or branch name).")
    return parser


def _write_run_artifacts(
    *,
    run_dir: Path,
    cfg_source_path: Path,
    cfg_used: dict[str, Any],
    argv: Sequence[str],
) -> None:
    """Write reproducibility artifacts into the run directory."""
    (run_dir / "argv.txt").write_text(" ".join(argv) + "\n", encoding="utf-8")
    if cfg_source_path.exists():
        shutil.copyfile(cfg_source_path, run_dir / "config_source.yaml")

    (run_dir / "config.json").write_text(
        json.dumps(cfg_used, indent=2, ensure_ascii=False, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    (run_dir / "config.yaml").write_text(
        OmegaConf.to_yaml(OmegaConf.create(cfg_used)), encoding="utf-8"
    )


def _matrix_config_from_args(args: argparse.Namespace) -> MatrixConfig:
    return matrix_config_from_mapping(
        {
            "linear_solver": str(args.linear_solver),
            "tol": float(args.tol),
            "dist_slack": _parse_dist_slack(str(args.dist_slack)),
            "chunk_size": int(args.chunk_size),
            "assign_missing_references": bool(int(args.assign_missing_references)),
        }
    )


def run_build(args: argparse.Namespace, *, cfg_path: Path, argv: Sequence[str]) -> int:
    """
    Run the `ptdf` / `lodf` commands.

    Returns 1 when the case cannot be read or solved. ConfigurationError propagates so
    `main` reports every invalid-option error with exit code 2.
    """
    matrix_cfg = _matrix_config_from_args(args)
    run_dir = Path(
        setup_logging(
            LoggingConfig(
                runs_dir=str(args.runs_dir),
                level_console=str(args.log_level),
                level_file=str(args.log_file_level),
                run_dir_mode=str(args.run_dir_mode),
                run_name=str(args.run_name),
            )
        )
    )
    out_dir = Path(args.out) if args.out else run_dir

    cfg_used: dict[str, Any] = {
        "config_path": str(cfg_path),
        "command": str(args.command),
        "input": str(args.input),
        "out": str(out_dir),
        "logging": {
            "runs_dir": str(args.runs_dir),
            "run_dir_mode": str(args.run_dir_mode),
            "run_name": str(args.run_name),
            "level_console": str(args.log_level),
            "level_file": str(args.log_file_level),
        },
        "matrix": {
            "linear_solver": matrix_cfg.linear_solver,
            "tol": matrix_cfg.tol,
            "dist_slack": list(matrix_cfg.dist_slack),
            "chunk_size": matrix_cfg.chunk_size,
            "assign_missing_references": int(matrix_cfg.assign_missing_references),
        },
    }
    _write_run_artifacts(run_dir=run_dir, cfg_source_path=cfg_path, cfg_used=cfg_used, argv=argv)

    try:
        result = compute_matrices_for_case(
            args.input,
            config=matrix_cfg,
            compute_lodf=args.command == "lodf",
            out_dir=out_dir,
        )
    except ConfigurationError as e:
        logger.error("%s: invalid options: %s", args.command, e)
        raise
    except (NetworkMatrixError, FileNotFoundError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1

    logger.info(
        "Done: %s (%d buses, %d branches). Files: %s",
        result["case"],
        result["n_bus"],
        result["n_branch"],
        ", ".join(f"{k}={v}" for k, v in result["files"].items()),
    )
    return 0


def _parse_label(text: str, axis: Sequence[Any]) -> Any:
    """Match a CLI string against axis labels (int labels are compared numerically)."""
    if text in axis:
        return text
    try:
        number = int(text)
    except ValueError:
        return text
    return number if number in axis else text


def run_show(args: argparse.Namespace) -> int:
    """Print a value, a row, a column or the whole saved matrix."""
    matrix = load_matrix(args.path)
    try:
        if args.row is not None and args.col is not None:
            row = _parse_label(args.row, matrix.row_axis)
            col = _parse_label(args.col, matrix.column_axis)
            print(f"{matrix[row, col]:.10g}")
        elif args.row is not None:
            row = _parse_label(args.row, matrix.row_axis)
            values = matrix[row, :]
            for label, v in zip(matrix.column_axis, values):
                print(f"{label}\t{v:.10g}")
        elif args.col is not None:
            col = _parse_label(args.col, matrix.column_axis)
            values = matrix[:, col]
            for label, v in zip(matrix.row_axis, values):
                print(f"{label}\t{v:.10g}")
        else:
            print(matrix.to_dataframe().to_string(float_format=lambda v: f"{v:.6g}"))
    except KeyError as e:
        print(f"[ERROR] {e.args[0]}", file=sys.stderr)
        return 2
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entrypoint."""
    argv_list = list(argv) if argv is not None else sys.argv[1:]

    cfg_path_str, explicit = _preparse_config_path(argv_list)
    cfg_path = Path(cfg_path_str)
    if not cfg_path.is_absolute():
        cfg_path = (Path.cwd() / cfg_path).resolve()

    # The default config may be missing (built-in defaults); an explicit one may not.
    try:
        cfg_loaded = load_project_config(cfg_path, allow_missing=not explicit)
    except Exception as e:  # noqa: BLE001
        print(f"[ERROR] Failed to load config: {str(cfg_path)} ({e})", file=sys.stderr)
        return 2

    parser = build_parser(cfg_loaded)
    args = parser.parse_args(argv_list)

    if args.command == "show":
        return run_show(args)
    if args.command in ("ptdf", "lodf"):
        try:
            return run_build(args, cfg_path=cfg_path, argv=argv_list)
        except ConfigurationError as e:
            print(f"[ERROR] {e}", file=sys.stderr)
            return 2

    raise AssertionError(f"Unhandled command: {args.command}")
