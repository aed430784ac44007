from __future__ import annotations

import logging
import sys
from pathlib import Path

import pytest

# Make `src/` importable when tests are run without installing the package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if SRC.is_dir() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from network_matrices.topology import Branch, Bus  # noqa: E402

# 5-bus test system: bus 4 is the reference bus, susceptance = 1 / x.
FIVE_BUS_REACTANCES = {
    "1": (1, 2, 0.0281),
    "2": (1, 4, 0.0304),
    "3": (1, 5, 0.0064),
    "4": (2, 3, 0.0108),
    "5": (3, 4, 0.0297),
    "6": (4, 5, 0.0297),
}

FIVE_BUS_CASE_M = """function mpc = case5_test
%% 5-bus test system, bus 4 is the reference bus
mpc.version = '2';
mpc.baseMVA = 100;

%% bus data
%	bus_i	type	Pd	Qd	Gs	Bs	area	Vm	Va	baseKV	zone	Vmax	Vmin
mpc.bus = [
	1	2	0	0	0	0	1	1	0	230	1	1.1	0.9;
	2	1	300	98.61	0	0	1	1	0	230	1	1.1	0.9;
	3	2	300	98.61	0	0	1	1	0	230	1	1.1	0.9;
	4	3	400	131.47	0	0	1	1	0	230	1	1.1	0.9;
	5	2	0	0	0	0	1	1	0	230	1	1.1	0.9;
];

%% branch data
%	fbus	tbus	r	x	b	rateA	rateB	rateC	ratio	angle	status	angmin	angmax
mpc.branch = [
	1	2	0.00281	0.0281	0.00712	400	400	400	0	0	1	-360	360;
	1	4	0.00304	0.0304	0.00658	0	0	0	0	0	1	-360	360;
	1	5	0.00064	0.0064	0.03126	0	0	0	0	0	1	-360	360;
	2	3	0.00108	0.0108	0.01852	0	0	0	0	0	1	-360	360;
	3	4	0.00297	0.0297	0.00674	0	0	0	0	0	1	-360	360;
	4	5	0.00297	0.0297	0.00674	240	240	240	0	0	1	-360	360;
];
"""


def make_buses(numbers, reference=()):
    return [Bus(number=n, is_reference=n in set(reference)) for n in numbers]


def make_branches(reactances):
    return [Branch(name, f, t, 1.0 / x) for name, (f, t, x) in reactances.items()]


@pytest.fixture
def five_bus():
    """(buses, branches) of the 5-bus system with reference bus 4."""
    return make_buses([1, 2, 3, 4, 5], reference=[4]), make_branches(FIVE_BUS_REACTANCES)


@pytest.fixture
def two_islands():
    """5-bus system plus a second island (buses 10, 11) without a reference bus."""
    buses = make_buses([1, 2, 3, 4, 5, 10, 11], reference=[4])
    branches = make_branches({**FIVE_BUS_REACTANCES, "a": (10, 11, 0.05)})
    return buses, branches


@pytest.fixture
def case5_file(tmp_path: Path) -> Path:
    p = tmp_path / "case5_test.m"
    p.write_text(FIVE_BUS_CASE_M, encoding="utf-8")
    return p


@pytest.fixture(autouse=True)
def _restore_project_logger():
    """setup_logging() detaches the project logger from the root; undo that after each test."""
    yield
    for name in ("network_matrices", "network_matrices.fileonly"):
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            h.close()
        lg.handlers.clear()
        lg.setLevel(logging.NOTSET)
        lg.propagate = True
