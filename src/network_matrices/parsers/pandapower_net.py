from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from network_matrices.errors import TopologyError
from network_matrices.topology import Branch, Bus

logger = logging.getLogger(__name__)

_X_EPS = 1e-12


def _in_service(row: Any) -> bool:
    return bool(row.get("in_service", True))


def _bus_vn_kv(net: Any, bus_id: int) -> float:
    if bus_id in net.bus.index and "vn_kv" in net.bus.columns:
        return float(net.bus.loc[bus_id, "vn_kv"])
    return float("nan")


def line_susceptance(net: Any, idx: Any, row: Any) -> float:
    """DC susceptance of a pandapower line in MW/rad: V_kV^2 / X_ohm (parallel lines combined)."""
    vn_kv = _bus_vn_kv(net, int(row["from_bus"]))
    parallel = float(row.get("parallel", 1.0))
    if not np.isfinite(parallel) or parallel <= 0.0:
        parallel = 1.0
    x_ohm = float(row.get("x_ohm_per_km", np.nan)) * float(row.get("length_km", np.nan)) / parallel
    if not np.isfinite(vn_kv) or vn_kv <= 0.0:
        raise TopologyError(f"Line {idx}: from bus has invalid vn_kv={vn_kv!r}.")
    if not np.isfinite(x_ohm) or abs(x_ohm) <= _X_EPS:
        raise TopologyError(f"Line {idx}: series reactance must be finite and non-zero; got {x_ohm!r} Ohm.")
    return float(vn_kv * vn_kv / x_ohm)


def trafo_tap_ratio(row: Any) -> float:
    """
    Effective tap ratio 1 + (tap_pos - tap_neutral) * tap_step_percent / 100.

    An "lv"-side tap is inverted so the ratio always refers to the hv side. Transformers
    without tap data return 1.0.
    """
    side = str(row.get("tap_side", "") or "").strip().lower()
    if side not in {"hv", "lv"}:
        return 1.0
    step = float(row.get("tap_step_percent", 0.0) or 0.0)
    if not np.isfinite(step) or abs(step) <= _X_EPS:
        return 1.0
    neutral = float(row.get("tap_neutral", 0.0) or 0.0)
    pos = float(row.get("tap_pos", neutral))
    if not np.isfinite(neutral):
        neutral = 0.0
    if not np.isfinite(pos):
        pos = neutral

    tap = 1.0 + (pos - neutral) * step / 100.0
    if not np.isfinite(tap) or tap <= 0.0:
        raise TopologyError(f"Invalid transformer tap ratio {tap!r} (tap_side={side!r}).")
    return float(1.0 / tap) if side == "lv" else float(tap)


def trafo_susceptance(net: Any, idx: Any, row: Any) -> float:
    """
    DC susceptance of a two-winding transformer in MW/rad.

    x_pu = sqrt((vk/100)^2 - (vkr/100)^2), X_ohm = x_pu * V_hv^2 / S_n, b = V_hv^2 / (X_ohm * tap).
    """
    vk = float(row.get("vk_percent", np.nan)) / 100.0
    vkr = float(row.get("vkr_percent", 0.0)) / 100.0
    sn_mva = float(row.get("sn_mva", np.nan))
    vn_hv = float(row.get("vn_hv_kv", np.nan))
    if not np.isfinite(vn_hv) or vn_hv <= 0.0:
        vn_hv = _bus_vn_kv(net, int(row["hv_bus"]))

    if not (np.isfinite(vk) and np.isfinite(sn_mva) and sn_mva > 0.0 and np.isfinite(vn_hv) and vn_hv > 0.0):
        raise TopologyError(
            f"Trafo {idx}: needs finite vk_percent, sn_mva > 0 and vn_hv_kv > 0 "
            f"(got vk={vk!r}, sn_mva={sn_mva!r}, vn_hv_kv={vn_hv!r})."
        )
    x_pu = float(np.sqrt(max(vk * vk - vkr * vkr, 0.0)))
    x_ohm = x_pu * vn_hv * vn_hv / sn_mva
    if abs(x_ohm) <= _X_EPS:
        raise TopologyError(f"Trafo {idx}: series reactance is zero.")
    return float(vn_hv * vn_hv / x_ohm / trafo_tap_ratio(row))


def topology_from_pandapower(net: Any) -> tuple[list[Bus], list[Branch]]:
    """
    Extract `(buses, branches)` from a pandapower network.

    - Buses: in-service rows of net.bus in index order; reference buses are the buses of
      in-service net.ext_grid elements.
    - Branches: in-service net.line ("line:<idx>") then net.trafo ("trafo:<idx>") rows
      whose buses are in service, oriented from_bus -> to_bus and hv_bus -> lv_bus.

    Raises
    ------
    TopologyError
        For elements with invalid voltage or zero reactance.
    """
    bus_df = net.bus
    if "in_service" in bus_df.columns:
        bus_df = bus_df[bus_df["in_service"].astype(bool)]
    bus_ids = [int(b) for b in sorted(bus_df.index)]
    active = set(bus_ids)

    ref_ids: set[int] = set()
    ext_grid = getattr(net, "ext_grid", None)
    if ext_grid is not None and len(ext_grid):
        for _, row in ext_grid.iterrows():
            if _in_service(row) and int(row["bus"]) in active:
                ref_ids.add(int(row["bus"]))
    if not ref_ids:
        logger.warning("pandapower net has no in-service ext_grid; no reference bus flagged.")

    names = bus_df["name"] if "name" in bus_df.columns else None
    buses = [
        Bus(
            number=b,
            name="" if names is None or pd.isna(names.loc[b]) else str(names.loc[b]),
            is_reference=b in ref_ids,
        )
        for b in bus_ids
    ]

    branches: list[Branch] = []
    n_skipped = 0
    for idx in sorted(net.line.index):
        row = net.line.loc[idx]
        fb, tb = int(row["from_bus"]), int(row["to_bus"])
        if not _in_service(row) or fb not in active or tb not in active:
            n_skipped += 1
            continue
        branches.append(Branch(f"line:{idx}", fb, tb, line_susceptance(net, idx, row)))

    trafo = getattr(net, "trafo", None)
    if trafo is not None:
        for idx in sorted(trafo.index):
            row = trafo.loc[idx]
            hv, lv = int(row["hv_bus"]), int(row["lv_bus"])
            if not _in_service(row) or hv not in active or lv not in active:
                n_skipped += 1
                continue
            branches.append(Branch(f"trafo:{idx}", hv, lv, trafo_susceptance(net, idx, row)))

    logger.debug(
        "pandapower topology: %d buses (%d reference), %d branches, %d out of service",
        len(buses),
        len(ref_ids),
        len(branches),
        n_skipped,
    )
    return buses, branches


def load_pandapower_case(path: str | Path) -> tuple[list[Bus], list[Branch]]:
    """
    Load a pandapower network saved with `pandapower.to_json` as `(buses, branches)`.

    Raises
    ------
    FileNotFoundError:
        If the file does not exist.
    ValueError:
        If the file cannot be read as a pandapower network.
    """
    import pandapower as pp

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(str(p))
    try:
        net = pp.from_json(str(p))
    except Exception as e:  # noqa: BLE001 - pandapower/json raise many error types
        logger.exception("Failed to load pandapower network: %s", str(p))
        raise ValueError(f"Failed to load pandapower network: {p}") from e
    return topology_from_pandapower(net)
