from __future__ import annotations

import logging
from typing import Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from network_matrices.errors import TopologyError
from network_matrices.topology import Branch, Bus, branch_names, bus_numbers

from .base import NetworkMatrix

logger = logging.getLogger(__name__)


def find_slack_positions(buses: Sequence[Bus]) -> frozenset[int]:
    """
    Positions (in bus order) of reference buses.

    If no bus carries `is_reference=True`, the first bus becomes the reference and a
    warning is logged.
    """
    if not buses:
        raise TopologyError("Cannot select a reference bus from an empty bus list.")
    positions = frozenset(i for i, b in enumerate(buses) if bool(b.is_reference))
    if not positions:
        logger.warning(
            "No reference bus flagged; using the first bus (number=%d) as reference.",
            int(buses[0].number),
        )
        return frozenset({0})
    return positions


def calculate_a_matrix(
    buses: Sequence[Bus], branches: Sequence[Branch]
) -> Tuple[sp.csr_matrix, frozenset[int]]:
    """
    Oriented incidence A (branch x bus, int8 CSR).

    Row k has +1 at the from-bus column and -1 at the to-bus column of branch k.

    Returns
    -------
    (A, ref_bus_positions)
    """
    if not buses:
        raise TopologyError("Network has no buses.")
    if not branches:
        raise TopologyError("Network has no branches.")

    numbers = bus_numbers(buses)
    branch_names(branches)
    bus_pos = {n: i for i, n in enumerate(numbers)}

    m = len(branches)
    rows = np.repeat(np.arange(m, dtype=np.int64), 2)
    cols = np.empty(2 * m, dtype=np.int64)
    vals = np.tile(np.array([1, -1], dtype=np.int8), m)

    for k, br in enumerate(branches):
        fb, tb = int(br.from_bus), int(br.to_bus)
        missing = [b for b in (fb, tb) if b not in bus_pos]
        if missing:
            raise TopologyError(
                f"Branch {br.name!r} references unknown bus(es) {missing}."
            )
        if fb == tb:
            raise TopologyError(
                f"Branch {br.name!r} connects bus {fb} to itself."
            )
        cols[2 * k] = bus_pos[fb]
        cols[2 * k + 1] = bus_pos[tb]

    A = sp.csr_matrix((vals, (rows, cols)), shape=(m, len(numbers)), dtype=np.int8)
    return A, find_slack_positions(buses)


def build_incidence_matrix(buses: Sequence[Bus], branches: Sequence[Branch]) -> NetworkMatrix:
    """Build the labelled incidence matrix (axes: branch names x bus numbers)."""
    A, ref_pos = calculate_a_matrix(buses, branches)
    logger.debug(
        "Incidence matrix: branches=%d, buses=%d, reference positions=%s",
        A.shape[0],
        A.shape[1],
        sorted(ref_pos),
    )
    return NetworkMatrix(
        kind="incidence",
        data=A,
        axes=(tuple(branch_names(branches)), tuple(bus_numbers(buses))),
        ref_bus_positions=ref_pos,
    )
