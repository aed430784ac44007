from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import numpy as np

from network_matrices.errors import TopologyError
from network_matrices.topology import Branch, Bus, series_susceptance

logger = logging.getLogger(__name__)

# MATPOWER column indices (0-based).
BUS_I, BUS_TYPE = 0, 1
F_BUS, T_BUS, BR_X, TAP, BR_STATUS = 0, 1, 3, 8, 10

REF_BUS_TYPE = 3
ISOLATED_BUS_TYPE = 4


def _strip_comments(text: str) -> str:
    """Drop `% ...` comments up to end of line."""
    return re.sub(r"%.*$", "", text, flags=re.MULTILINE)


def _extract_matrix(text: str, name: str) -> np.ndarray:
    """Parse the numeric block `mpc.<name> = [ ... ];` into a 2D float array."""
    m = re.search(
        rf"\bmpc\.{re.escape(name)}\s*=\s*\[(.*?)\]\s*;",
        text,
        flags=re.MULTILINE | re.DOTALL,
    )
    if not m:
        raise ValueError(f"MATPOWER case has no 'mpc.{name}' matrix.")

    body = m.group(1).replace("...", " ").replace(",", " ")
    rows: list[list[float]] = []
    for line in re.split(r"[;\n]", body):
        parts = line.split()
        if not parts:
            continue
        try:
            rows.append([float(x) for x in parts])
        except ValueError as e:
            raise ValueError(f"mpc.{name}: non-numeric row {line.strip()!r}") from e

    if not rows:
        return np.zeros((0, 0), dtype=float)
    width = len(rows[0])
    if any(len(r) != width for r in rows):
        raise ValueError(f"mpc.{name}: rows have different lengths (expected {width}).")
    return np.asarray(rows, dtype=float)


def parse_case_text(text: str) -> dict[str, Any]:
    """Extract the `bus` and `branch` matrices from MATPOWER case text."""
    clean = _strip_comments(text)
    bus = _extract_matrix(clean, "bus")
    branch = _extract_matrix(clean, "branch")
    if bus.size == 0 or branch.size == 0:
        raise ValueError("MATPOWER case must contain non-empty 'bus' and 'branch' matrices.")
    if bus.shape[1] <= BUS_TYPE:
        raise ValueError(f"mpc.bus needs at least {BUS_TYPE + 1} columns; got {bus.shape[1]}.")
    if branch.shape[1] <= BR_X:
        raise ValueError(f"mpc.branch needs at least {BR_X + 1} columns; got {branch.shape[1]}.")
    return {"bus": bus, "branch": branch}


def topology_from_matrices(bus: np.ndarray, branch: np.ndarray) -> tuple[list[Bus], list[Branch]]:
    """
    Convert MATPOWER `bus`/`branch` matrices into topology records.

    - Bus type 3 marks a reference bus; isolated buses (type 4) are skipped.
    - Out-of-service branches (BR_STATUS == 0) and branches touching skipped buses
      are dropped.
    - Branch susceptance is 1 / (x * tap), tap 0 meaning 1.
    - Branch names are "<from>-<to>-<k>", k counting parallel branches from 1.
    """
    buses: list[Bus] = []
    skipped: set[int] = set()
    for row in bus:
        number = int(row[BUS_I])
        btype = int(row[BUS_TYPE])
        if btype == ISOLATED_BUS_TYPE:
            skipped.add(number)
            continue
        buses.append(Bus(number=number, is_reference=btype == REF_BUS_TYPE))
    if skipped:
        logger.warning("Skipped %d isolated bus(es) (type 4): %s", len(skipped), sorted(skipped)[:20])

    branches: list[Branch] = []
    parallel: dict[tuple[int, int], int] = {}
    n_out = 0
    for row in branch:
        status = row[BR_STATUS] if branch.shape[1] > BR_STATUS else 1.0
        fb, tb = int(row[F_BUS]), int(row[T_BUS])
        if status == 0 or fb in skipped or tb in skipped:
            n_out += 1
            continue
        tap = row[TAP] if branch.shape[1] > TAP else 0.0
        k = parallel.get((fb, tb), 0) + 1
        parallel[(fb, tb)] = k
        name = f"{fb}-{tb}-{k}"
        try:
            b = series_susceptance(row[BR_X], tap)
        except TopologyError as e:
            raise TopologyError(f"Branch {name}: {e}") from e
        branches.append(Branch(name=name, from_bus=fb, to_bus=tb, susceptance=b))

    if n_out:
        logger.debug("Dropped %d out-of-service branch(es).", n_out)
    return buses, branches


def load_case(path: str | Path) -> tuple[list[Bus], list[Branch]]:
    """
    Load a MATPOWER `.m` case file as `(buses, branches)`.

    Raises
    ------
    FileNotFoundError:
        If the file does not exist.
    ValueError:
        If the extension is not `.m` or the case cannot be parsed.
    TopologyError:
        For branches with zero reactance.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(p))
    if p.suffix.lower() != ".m":
        raise ValueError(f"Only MATPOWER .m files are supported. Got: {p}")

    try:
        mats = parse_case_text(p.read_text(encoding="utf-8", errors="replace"))
    except ValueError:
        logger.exception("Failed to parse MATPOWER case: %s", str(p))
        raise

    buses, branches = topology_from_matrices(mats["bus"], mats["branch"])
    logger.debug("Case loaded: %s (%d buses, %d branches)", p.name, len(buses), len(branches))
    return buses, branches
