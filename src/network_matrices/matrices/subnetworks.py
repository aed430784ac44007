from __future__ import annotations

import logging
from typing import Dict, Iterable, Set

import numpy as np
import scipy.sparse as sp

from network_matrices.errors import TopologyError

from .base import NetworkMatrix

logger = logging.getLogger(__name__)


def calculate_adjacency(incidence: NetworkMatrix) -> sp.csr_matrix:
    """
    Bus x bus boolean adjacency built from the incidence matrix.

    M[i, j] is True when a branch connects buses i and j. The diagonal is set so every
    bus is adjacent to itself.
    """
    A = sp.csr_matrix(incidence.data, dtype=np.int8)
    absA = abs(A).astype(np.int32)
    M = (absA.T @ absA).astype(bool)
    M = M.tolil()
    M.setdiag(True)
    return M.tocsr()


def find_subnetworks(incidence: NetworkMatrix) -> Dict[int, Set[int]]:
    """
    Connected components (islands) of the network.

    Returns
    -------
    dict
        representative bus number -> set of bus numbers in the island. The representative
        is the first bus of the island in bus order. Buses without branches form their
        own island.
    """
    bus_axis = incidence.column_axis
    n_bus = len(bus_axis)
    parent = np.arange(n_bus, dtype=int)

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra == rb:
            return
        # Smaller position wins so the root is always the first bus of the island.
        if rb < ra:
            ra, rb = rb, ra
        parent[rb] = ra

    M = sp.triu(calculate_adjacency(incidence), k=1).tocoo()
    for i, j in zip(M.row.tolist(), M.col.tolist()):
        union(int(i), int(j))

    islands: Dict[int, Set[int]] = {}
    for pos in range(n_bus):
        root = find(pos)
        islands.setdefault(int(bus_axis[root]), set()).add(int(bus_axis[pos]))

    if len(islands) > 1:
        logger.info(
            "Network is not connected: %d subnetworks (sizes: %s)",
            len(islands),
            [len(v) for v in islands.values()][:20],
        )
    return islands


def _reference_buses_by_island(
    subnetworks: Dict[int, Set[int]], reference_buses: Iterable[int]
) -> Dict[int, list[int]]:
    refs = {int(b) for b in reference_buses}
    return {key: sorted(members & refs) for key, members in subnetworks.items()}


def check_reference_buses(
    subnetworks: Dict[int, Set[int]], reference_buses: Iterable[int]
) -> None:
    """
    Ensure every island contains at least one reference bus.

    Raises
    ------
    TopologyError
        Listing the islands (by representative bus) that have no reference bus.
    """
    by_island = _reference_buses_by_island(subnetworks, reference_buses)
    missing = sorted(key for key, refs in by_island.items() if not refs)
    if missing:
        raise TopologyError(
            f"{len(missing)} subnetwork(s) have no reference bus; "
            f"representative buses (first 20): {missing[:20]}. "
            "Flag a reference bus in each island or enable assign_missing_references."
        )


def assign_reference_buses(
    subnetworks: Dict[int, Set[int]], reference_buses: Iterable[int]
) -> Dict[int, Set[int]]:
    """
    Re-key islands by their lowest-numbered reference bus.

    An island may hold several reference buses; all of them stay references and the
    island is keyed by the first. Islands without a reference bus keep their
    representative bus as key (the picked reference) and the choice is logged.
    """
    by_island = _reference_buses_by_island(subnetworks, reference_buses)
    out: Dict[int, Set[int]] = {}
    for key, members in subnetworks.items():
        refs = by_island[key]
        if len(refs) > 1:
            logger.debug(
                "Subnetwork keyed by bus %d has %d reference buses: %s",
                refs[0],
                len(refs),
                refs[:20],
            )
        if refs:
            out[refs[0]] = set(members)
        else:
            logger.warning(
                "Subnetwork with %d bus(es) has no reference bus; picked bus %d.",
                len(members),
                key,
            )
            out[key] = set(members)
    return out
