from __future__ import annotations

import numpy as np
import pytest

pp = pytest.importorskip("pandapower")


def _make_net():
    net = pp.create_empty_network(sn_mva=100.0)
    b0 = pp.create_bus(net, vn_kv=110.0, name="slack")
    b1 = pp.create_bus(net, vn_kv=110.0)
    b2 = pp.create_bus(net, vn_kv=110.0)
    b3 = pp.create_bus(net, vn_kv=20.0)
    pp.create_ext_grid(net, b0, vm_pu=1.0)

    for f, t, x in ((b0, b1, 0.4), (b1, b2, 0.2), (b0, b2, 0.4)):
        pp.create_line_from_parameters(
            net,
            from_bus=f,
            to_bus=t,
            length_km=1.0,
            r_ohm_per_km=0.01,
            x_ohm_per_km=x,
            c_nf_per_km=0.0,
            max_i_ka=1.0,
        )
    pp.create_transformer_from_parameters(
        net,
        hv_bus=b2,
        lv_bus=b3,
        sn_mva=40.0,
        vn_hv_kv=110.0,
        vn_lv_kv=20.0,
        vkr_percent=0.3,
        vk_percent=10.0,
        pfe_kw=0.0,
        i0_percent=0.0,
    )
    return net


def test_topology_from_pandapower():
    from network_matrices.parsers.pandapower_net import topology_from_pandapower

    buses, branches = topology_from_pandapower(_make_net())

    assert [b.number for b in buses] == [0, 1, 2, 3]
    assert [b.number for b in buses if b.is_reference] == [0]
    assert buses[0].name == "slack"
    assert [br.name for br in branches] == ["line:0", "line:1", "line:2", "trafo:0"]
    assert branches[0].susceptance == pytest.approx(110.0**2 / 0.4)
    assert branches[3].from_bus == 2 and branches[3].to_bus == 3

    x_pu = np.sqrt(0.1**2 - 0.003**2)
    x_ohm = x_pu * 110.0**2 / 40.0
    assert branches[3].susceptance == pytest.approx(110.0**2 / x_ohm)


def test_out_of_service_elements_are_skipped():
    from network_matrices.parsers.pandapower_net import topology_from_pandapower

    net = _make_net()
    net.line.loc[1, "in_service"] = False
    _, branches = topology_from_pandapower(net)
    assert [br.name for br in branches] == ["line:0", "line:2", "trafo:0"]


def test_ptdf_of_pandapower_net_sums_to_one_on_cut():
    from network_matrices.matrices.ptdf import build_ptdf
    from network_matrices.parsers.pandapower_net import topology_from_pandapower

    ptdf = build_ptdf(*topology_from_pandapower(_make_net()))
    # Injection at bus 3 leaves through the transformer, then splits over the lines.
    assert ptdf["trafo:0", 3] == pytest.approx(-1.0)
    assert ptdf["line:2", 3] + ptdf["line:1", 3] == pytest.approx(-1.0)


def test_json_round_trip(tmp_path):
    from network_matrices.parsers.pandapower_net import load_pandapower_case

    path = tmp_path / "net.json"
    pp.to_json(_make_net(), str(path))
    buses, branches = load_pandapower_case(path)
    assert len(buses) == 4
    assert len(branches) == 4


def test_tap_ratio():
    from network_matrices.parsers.pandapower_net import trafo_tap_ratio

    assert trafo_tap_ratio({"tap_side": None}) == 1.0
    row = {"tap_side": "hv", "tap_step_percent": 2.5, "tap_pos": 2, "tap_neutral": 0}
    assert trafo_tap_ratio(row) == pytest.approx(1.05)
    assert trafo_tap_ratio({**row, "tap_side": "lv"}) == pytest.approx(1.0 / 1.05)
