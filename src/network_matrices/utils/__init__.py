from __future__ import annotations

"""
Project utilities: run directories and logging.

Logging design
--------------
- All project loggers live under the "network_matrices" namespace; handlers are attached
  to that logger only, so third-party libraries (pandapower, numba, ...) stay quiet.
- "network_matrices.fileonly" writes to run.log only. It is used to dump whole matrices,
  which are too large for the console.
"""

import logging
import os
import shutil
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from network_matrices.config import LoggingConfig

__all__ = ["log_matrix", "log_stage", "prepare_run_dir", "setup_logging"]

_LOGGER_ROOT_NAME = "network_matrices"
_LOGGER_FILE_ONLY_NAME = "network_matrices.fileonly"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _level_from_str(level: str) -> int:
    """Convert 'INFO'/'DEBUG'/... to logging level integer."""
    lvl = getattr(logging, str(level).upper(), None)
    if not isinstance(lvl, int):
        raise ValueError(f"Invalid logging level: {level!r}")
    return int(lvl)


def _reset_logger(lg: logging.Logger, *, level: int, propagate: bool) -> None:
    """Close and drop existing handlers so repeated setup_logging() calls do not leak files."""
    for h in list(lg.handlers):
        try:
            h.close()
        except Exception:  # noqa: BLE001 - best-effort cleanup
            pass
    lg.handlers.clear()
    lg.setLevel(level)
    lg.propagate = propagate


def prepare_run_dir(cfg: LoggingConfig) -> Path:
    """
    Create the run directory described by `cfg`.

    - run_dir_mode="timestamp": runs/<YYYY-mm-dd_HH-MM-SS_ffffff>[_NN]
    - run_dir_mode="overwrite": runs/<run_name>, deleted and recreated

    Returns
    -------
    Path
        Absolute path of the (new, empty) run directory.
    """
    runs_dir = Path(str(cfg.runs_dir))
    if not runs_dir.is_absolute():
        runs_dir = (Path(os.getcwd()) / runs_dir).resolve()

    mode = str(cfg.run_dir_mode).strip().lower()
    if mode == "overwrite":
        run_dir = runs_dir / (str(cfg.run_name).strip() or "latest")
        if run_dir.exists():
            shutil.rmtree(run_dir)
        run_dir.mkdir(parents=True)
        return run_dir.resolve()
    if mode != "timestamp":
        raise ValueError("run_dir_mode must be 'timestamp' or 'overwrite'.")

    prefix = datetime.now().strftime("%Y-%m-%d_%H-%M-%S_%f")
    candidate = runs_dir / prefix
    i = 0
    while candidate.exists():
        i += 1
        candidate = runs_dir / f"{prefix}_{i:02d}"
    candidate.mkdir(parents=True)
    return candidate.resolve()


def setup_logging(cfg: LoggingConfig) -> str:
    """
    Configure project logging and create a per-run output directory.

    The project logger gets a file handler (runs/<run>/run.log, level `cfg.level_file`)
    and a console handler (level `cfg.level_console`). The root logger is reset to
    WARNING without handlers.

    Returns
    -------
    str
        Absolute path to the created run directory.
    """
    run_dir = prepare_run_dir(cfg)
    fmt = logging.Formatter(_LOG_FORMAT)

    file_handler = logging.FileHandler(run_dir / "run.log", encoding="utf-8")
    file_handler.setLevel(_level_from_str(cfg.level_file))
    file_handler.setFormatter(fmt)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_level_from_str(cfg.level_console))
    console_handler.setFormatter(fmt)

    _reset_logger(logging.getLogger(), level=logging.WARNING, propagate=True)

    project_logger = logging.getLogger(_LOGGER_ROOT_NAME)
    _reset_logger(project_logger, level=logging.DEBUG, propagate=False)
    project_logger.addHandler(file_handler)
    project_logger.addHandler(console_handler)

    file_only_logger = logging.getLogger(_LOGGER_FILE_ONLY_NAME)
    _reset_logger(file_only_logger, level=logging.DEBUG, propagate=False)
    file_only_logger.addHandler(file_handler)

    project_logger.info("Run directory: %s", str(run_dir))
    project_logger.info("Log file: %s", str(run_dir / "run.log"))
    return str(run_dir)


@contextmanager
def log_stage(stage_logger: logging.Logger, stage_name: str):
    """
    Log a workflow stage boundary with duration.

    Format:
        ==> [START] <name>
        <== [END] <name> (time taken: X.XXX sec)

    On exception:
        <!! [FAIL] <name> (time taken: X.XXX sec)  + traceback
    """
    t0 = time.perf_counter()
    stage_logger.info("==> [START] %s", str(stage_name))
    try:
        yield
    except Exception:
        stage_logger.exception(
            "<!! [FAIL] %s (time taken: %.3f sec)", str(stage_name), time.perf_counter() - t0
        )
        raise
    stage_logger.info(
        "<== [END] %s (time taken: %.3f sec)", str(stage_name), time.perf_counter() - t0
    )


def log_matrix(matrix: Any, *, max_rows: int | None = None) -> None:
    """Write a labelled table of `matrix` (a NetworkMatrix) to run.log only."""
    df = matrix.to_dataframe()
    if max_rows is not None and int(max_rows) >= 0:
        df = df.head(int(max_rows))
    logging.getLogger(_LOGGER_FILE_ONLY_NAME).info(
        "%s matrix %dx%d:\n%s", matrix.kind, df.shape[0], df.shape[1], df.to_string()
    )
