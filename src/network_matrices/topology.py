from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from network_matrices.errors import TopologyError

_X_EPS = 1e-12


@dataclass(frozen=True)
class Bus:
    """
    Bus record consumed by the matrix builders.

    Only `number` is required. `is_reference` marks angle/slack reference buses
    (MATPOWER bus type 3, pandapower ext_grid buses).
    """

    number: int
    name: str = ""
    is_reference: bool = False


@dataclass(frozen=True)
class Branch:
    """
    Branch record consumed by the matrix builders.

    Orientation is from_bus -> to_bus: positive flow leaves `from_bus`.
    `susceptance` is the series susceptance used by the DC model (any consistent unit:
    p.u. or MW/rad). Zero is accepted and yields a branch without sensitivity contribution.
    """

    name: str
    from_bus: int
    to_bus: int
    susceptance: float


def series_susceptance(x: float, tap: float = 1.0) -> float:
    """
    DC series susceptance of a branch, MATPOWER convention: b = 1 / (x * tap).

    A tap of 0 (MATPOWER "no transformer") is treated as 1.

    Raises
    ------
    TopologyError
        If x (or x * tap) is zero or not finite.
    """
    t = float(tap)
    if not math.isfinite(t) or abs(t) <= _X_EPS:
        t = 1.0
    x_eff = float(x) * t
    if not math.isfinite(x_eff) or abs(x_eff) <= _X_EPS:
        raise TopologyError(f"Series reactance must be finite and non-zero; got x={x!r}, tap={tap!r}")
    return 1.0 / x_eff


def bus_numbers(buses: Sequence[Bus]) -> list[int]:
    """Ordered bus numbers; raises TopologyError on duplicates."""
    numbers = [int(b.number) for b in buses]
    if len(set(numbers)) != len(numbers):
        dup = sorted(n for n, c in Counter(numbers).items() if c > 1)
        raise TopologyError(f"Duplicated bus numbers: {dup[:20]}")
    return numbers


def branch_names(branches: Sequence[Branch]) -> list[str]:
    """Ordered branch names; raises TopologyError on duplicates."""
    names = [str(br.name) for br in branches]
    if len(set(names)) != len(names):
        dup = sorted(n for n, c in Counter(names).items() if c > 1)
        raise TopologyError(f"Duplicated branch names: {dup[:20]}")
    return names
