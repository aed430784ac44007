from __future__ import annotations

"""
Central configuration for the project.

Why this module exists
----------------------
Matrix construction depends on a handful of options (linear solver backend,
sparsification tolerance, distributed slack weights). They are collected in one
immutable `MatrixConfig` value that is passed explicitly to every construction call,
so two matrices built concurrently with different solvers never interfere.

YAML config loading
-------------------
The CLI reads OmegaConf-compatible YAML files under `conf/`.
We support a minimal composition mechanism:

- `extends: <path-or-list>` at the top level of a YAML file.
- `extends` paths are resolved relative to the extending file.
- Configs are merged deterministically in the given order, where later configs override earlier ones.
"""

import logging
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Tuple

from network_matrices.errors import ConfigurationError, UnsupportedSolverError

logger = logging.getLogger(__name__)

try:
    from omegaconf import OmegaConf  # type: ignore

    HAVE_OMEGACONF: bool = True
except Exception:  # noqa: BLE001
    OmegaConf = None  # type: ignore[assignment]
    HAVE_OMEGACONF = False


SPARSE_DIRECT = "sparse-direct"
DENSE = "dense"
ALT_DIRECT = "alt-direct"

SUPPORTED_LINEAR_SOLVERS: Tuple[str, ...] = (SPARSE_DIRECT, DENSE, ALT_DIRECT)

# The diagonal LODF correction solve has no PARDISO path.
LODF_LINEAR_SOLVERS: Tuple[str, ...] = (SPARSE_DIRECT, DENSE)

MACHINE_EPS: float = float(sys.float_info.epsilon)


def validate_linear_solver(linear_solver: str) -> str:
    """
    Validate a solver identifier against `SUPPORTED_LINEAR_SOLVERS`.

    Raises
    ------
    ConfigurationError
        If the identifier is not recognized.
    """
    name = str(linear_solver).strip().lower()
    if name not in SUPPORTED_LINEAR_SOLVERS:
        raise ConfigurationError(
            f"Unrecognized linear solver {linear_solver!r}. "
            f"Supported: {', '.join(SUPPORTED_LINEAR_SOLVERS)}."
        )
    return name


def validate_lodf_linear_solver(linear_solver: str) -> str:
    """Validate a solver identifier for LODF construction (no alt-direct backend)."""
    name = validate_linear_solver(linear_solver)
    if name not in LODF_LINEAR_SOLVERS:
        raise UnsupportedSolverError(
            f"Linear solver {name!r} is not implemented for LODF construction. "
            f"Use one of: {', '.join(LODF_LINEAR_SOLVERS)}."
        )
    return name


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging- and run-directory-related defaults for the CLI.

    Run directory mode
    ------------------
    - run_dir_mode="timestamp": create a new unique folder per run (default).
    - run_dir_mode="overwrite": reuse `runs_dir/run_name` (delete/recreate folder).
    """

    runs_dir: str = "runs"
    level_console: str = "INFO"
    level_file: str = "DEBUG"

    run_dir_mode: str = "timestamp"  # "timestamp" | "overwrite"
    run_name: str = "latest"  # used only when run_dir_mode="overwrite"


@dataclass(frozen=True)
class MatrixConfig:
    """
    Options shared by every matrix construction call.

    Attributes
    ----------
    linear_solver:
        One of `SUPPORTED_LINEAR_SOLVERS`. LODF accepts only "sparse-direct" and "dense".
    tol:
        Sparsification threshold. Values <= machine epsilon mean "no sparsification".
    dist_slack:
        Distributed slack weights, one per bus (empty tuple = single reference bus).
    chunk_size:
        Number of right-hand-side columns per solve call.
    assign_missing_references:
        When True, islands without a reference bus get one assigned by the subnetwork
        detector instead of failing with TopologyError.
    """

    linear_solver: str = SPARSE_DIRECT
    tol: float = MACHINE_EPS
    dist_slack: Tuple[float, ...] = field(default_factory=tuple)
    chunk_size: int = 256
    assign_missing_references: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "linear_solver", validate_linear_solver(self.linear_solver)
        )

        try:
            tol = float(self.tol)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"tol must be a float; got {self.tol!r}") from e
        if not math.isfinite(tol) or tol < 0.0:
            raise ConfigurationError(f"tol must be finite and >= 0; got {tol!r}")
        object.__setattr__(self, "tol", tol)

        try:
            weights = tuple(float(w) for w in (() if self.dist_slack is None else self.dist_slack))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"dist_slack must be a sequence of floats; got {self.dist_slack!r}"
            ) from e
        object.__setattr__(self, "dist_slack", weights)

        if int(self.chunk_size) <= 0:
            raise ConfigurationError("chunk_size must be positive.")
        object.__setattr__(self, "chunk_size", int(self.chunk_size))
        object.__setattr__(
            self, "assign_missing_references", bool(self.assign_missing_references)
        )


DEFAULT_LOGGING = LoggingConfig()
DEFAULT_MATRIX = MatrixConfig()


def matrix_config_from_mapping(values: Any, *, base: MatrixConfig = DEFAULT_MATRIX) -> MatrixConfig:
    """
    Build a MatrixConfig from a mapping-like config node (dict or OmegaConf DictConfig).

    Missing keys fall back to `base`.
    """
    if values is None:
        return base

    def _get(key: str, default: Any) -> Any:
        try:
            v = values.get(key, None)
        except AttributeError:
            v = getattr(values, key, None)
        return default if v is None else v

    dist_slack = _get("dist_slack", base.dist_slack)
    return MatrixConfig(
        linear_solver=str(_get("linear_solver", base.linear_solver)),
        tol=float(_get("tol", base.tol)),
        dist_slack=tuple(float(x) for x in dist_slack),
        chunk_size=int(_get("chunk_size", base.chunk_size)),
        assign_missing_references=bool(
            _get("assign_missing_references", base.assign_missing_references)
        ),
    )


def _extends_targets(node: Any, path: Path) -> list[Path]:
    """Files named by the `extends:` key of `node`, resolved next to `path`."""
    raw = OmegaConf.select(node, "extends")
    if raw is None:
        return []
    if isinstance(raw, str):
        names = [raw]
    elif OmegaConf.is_list(raw):
        names = [str(x) for x in raw if x is not None]
    else:
        raise ConfigurationError(f"{path}: extends must be a path or a list of paths.")

    targets: list[Path] = []
    for name in (n.strip() for n in names):
        if not name:
            continue
        target = (path.parent / Path(name).expanduser()).resolve()
        if not target.exists():
            raise FileNotFoundError(f"Extended config not found: {target} (referenced from {path})")
        targets.append(target)
    return targets


def _compose(path: Path, chain: tuple[Path, ...]) -> Any:
    """Load `path` on top of everything it extends; later files win."""
    if path in chain:
        cycle = " -> ".join(str(p) for p in (*chain, path))
        raise ConfigurationError(f"Cyclic config extends detected: {cycle}")

    node = OmegaConf.load(str(path))
    if not OmegaConf.is_dict(node):
        raise ConfigurationError(f"Config root must be a mapping: {path}")

    parents = [_compose(t, (*chain, path)) for t in _extends_targets(node, path)]
    own = OmegaConf.to_container(node, resolve=False)
    own.pop("extends", None)

    logger.debug("Loaded config %s (extends %d file(s))", str(path), len(parents))
    return OmegaConf.merge(*parents, OmegaConf.create(own))


def load_project_config(path: str | Path, *, allow_missing: bool = True) -> Any:
    """
    Load a YAML config, applying `extends:` composition.

    Relative paths are resolved against the working directory; `extends` entries are
    resolved against the file that names them.

    Returns
    -------
    Any
        OmegaConf DictConfig, or None when the file is missing and `allow_missing` is set.

    Raises
    ------
    FileNotFoundError
        Missing file (with allow_missing=False) or missing `extends` target.
    ConfigurationError
        Cyclic `extends` chains or a non-mapping config root.
    ImportError
        If OmegaConf is not installed.
    """
    cfg_path = Path(path).expanduser()
    if not cfg_path.is_absolute():
        cfg_path = Path.cwd() / cfg_path
    cfg_path = cfg_path.resolve()

    if not cfg_path.exists():
        if allow_missing:
            logger.info("Config file not found, using built-in defaults: %s", str(cfg_path))
            return None
        raise FileNotFoundError(str(cfg_path))

    if not HAVE_OMEGACONF or OmegaConf is None:
        raise ImportError("OmegaConf is required to load YAML configs (install `omegaconf`).")

    return _compose(cfg_path, ())
