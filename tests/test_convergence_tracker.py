from __future__ import annotations

import itertools
from typing import Dict

import pytest

from rcm.core.collaborators import RoutingStateSource
from rcm.core.convergence import NetworkConvergenceTracker, NodeConvergenceTracker
from rcm.core.errors import ConfigurationError
from rcm.core.scheduler import VirtualTimeScheduler
from rcm.core.types import ReportMode, RoutingStateSnapshot, TrackerState


class TableSource(RoutingStateSource):
    def __init__(self, scheduler: VirtualTimeScheduler, tables: Dict[str, str]) -> None:
        self._scheduler = scheduler
        self.tables = dict(tables)
        self.reads = 0

    def has_routing(self, router: str) -> bool:
        return router in self.tables

    def routing_table_text(self, router: str) -> str:
        self.reads += 1
        return f"Node: {router}, Time: +{self._scheduler.now}s\n{self.tables[router]}"

    def set_at(self, when: float, router: str, text: str) -> None:
        self._scheduler.schedule_at(when, self.tables.__setitem__, router, text)


def _setup(routers=("R1", "R2", "R3")):
    sched = VirtualTimeScheduler()
    source = TableSource(sched, {r: f"{r} connected\n" for r in routers})
    return sched, source


def test_snapshot_strips_time_header_and_is_order_sensitive() -> None:
    a = RoutingStateSnapshot.from_rendered("R1", "Node: R1, Time: +1s\n10.0.0.0 1\n10.0.1.0 2\n")
    b = RoutingStateSnapshot.from_rendered("R1", "Node: R1, Time: +9s\n10.0.0.0 1\n10.0.1.0 2\n")
    c = RoutingStateSnapshot.from_rendered("R1", "Node: R1, Time: +9s\n10.0.1.0 2\n10.0.0.0 1\n")
    assert a == b
    assert a != c


def test_last_change_is_monotonic_and_only_moves_on_change() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched, poll_interval=0.1)
    sched.schedule_at(0.0, tracker.start)
    source.set_at(1.05, "R1", "v2")
    source.set_at(2.0, "R1", "v2")
    source.set_at(3.0, "R1", "v3")

    observed: list[float] = []
    for t in (0.5, 1.5, 2.5, 3.5, 4.5):
        sched.schedule_at(t, lambda: observed.append(tracker.last_change_time))
    sched.run(until=5.0)

    assert observed == sorted(observed)
    assert observed[0] == 0.0
    assert observed[1] == pytest.approx(1.1)
    assert observed[2] == pytest.approx(1.1)
    assert observed[3] == pytest.approx(3.0)
    assert tracker.changes == 2


def test_stop_freezes_last_change_and_cancels_polling() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched, poll_interval=0.1)
    sched.schedule_at(0.0, tracker.start)
    sched.schedule_at(2.0, tracker.stop)
    source.set_at(1.0, "R1", "v2")
    source.set_at(5.0, "R1", "v3")
    reads: list[int] = []
    sched.schedule_at(3.0, lambda: reads.append(source.reads))
    sched.run(until=10.0)

    assert tracker.state is TrackerState.STOPPED
    assert tracker.last_change_time == pytest.approx(1.0)
    assert sched.pending == 0
    assert source.reads == reads[0]


def test_stop_is_idempotent_and_safe_before_start() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched)
    tracker.stop()
    assert tracker.state is TrackerState.CREATED
    assert tracker.last_change_time is None

    net = NetworkConvergenceTracker(["R1"], source, sched)
    net.stop()
    net.stop()
    assert net.start_time is None
    assert net.convergence_duration() is None

    tracker.start()
    tracker.stop()
    tracker.stop()
    assert tracker.state is TrackerState.STOPPED


def test_poll_while_inactive_records_nothing() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched)
    source.tables["R1"] = "changed"
    tracker.poll()
    assert tracker.last_change_time is None
    assert tracker.changes == 0


def test_always_on_tracker_starts_at_construction() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched, always_on=True)
    assert tracker.state is TrackerState.ACTIVE
    assert tracker.last_change_time == 0.0
    source.set_at(4.2, "R1", "v2")
    sched.schedule_at(50.0, tracker.stop)
    source.set_at(60.0, "R1", "v3")
    sched.run(until=100.0)
    assert tracker.last_change_time == pytest.approx(4.2)


def test_unknown_router_is_a_configuration_error() -> None:
    sched, source = _setup(("R1",))
    with pytest.raises(ConfigurationError):
        NodeConvergenceTracker("R9", source, sched)
    with pytest.raises(ConfigurationError):
        NetworkConvergenceTracker(["R1", "R9"], source, sched)


@pytest.mark.parametrize("last", ["R1", "R2", "R3"])
def test_network_duration_is_max_last_change_minus_start(last: str) -> None:
    sched, source = _setup()
    net = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, poll_interval=0.1)
    sched.schedule_at(10.0, net.start)
    others = [r for r in ("R1", "R2", "R3") if r != last]
    times = {others[0]: 11.0, others[1]: 12.0, last: 14.5}
    for router, t in times.items():
        source.set_at(t, router, f"{router} after fault")
    sched.schedule_at(30.0, net.stop)
    sched.run(until=40.0)

    assert net.stabilization_instant() == pytest.approx(14.5)
    assert net.convergence_duration() == pytest.approx(4.5)


@pytest.mark.parametrize("order", list(itertools.permutations(["R1", "R2", "R3"])))
def test_aggregate_independent_of_which_router_changes_last(order) -> None:
    sched, source = _setup()
    net = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, poll_interval=0.1)
    sched.schedule_at(0.0, net.start)
    for i, router in enumerate(order):
        source.set_at(1.0 + i, router, "changed")
    sched.schedule_at(10.0, net.stop)
    sched.run(until=10.0)
    assert net.convergence_duration() == pytest.approx(3.0)


@pytest.mark.parametrize(
    "mode, expected",
    [(ReportMode.RELATIVE, 0.0), (ReportMode.ABSOLUTE, 20.0)],
)
def test_quiescent_network_reports_zero_or_phase_start(mode: ReportMode, expected: float) -> None:
    sched, source = _setup()
    net = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, report_mode=mode)
    sched.schedule_at(20.0, net.start)
    sched.schedule_at(40.0, net.stop)
    sched.run(until=50.0)
    assert net.convergence_duration() == pytest.approx(expected)


def test_fault_triggered_changes_settle_within_one_poll() -> None:
    sched, source = _setup()
    net = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, poll_interval=0.1)
    sched.schedule_at(100.0, net.start)
    source.set_at(100.35, "R1", "R1 rerouted")
    source.set_at(102.0, "R2", "R2 rerouted")
    source.set_at(103.3, "R3", "R3 partial")
    source.set_at(105.3, "R3", "R3 rerouted")
    sched.schedule_at(200.0, net.stop)
    sched.run(until=200.0)
    assert net.convergence_duration() == pytest.approx(5.3, abs=0.1)


def test_reordered_table_counts_as_change() -> None:
    sched, source = _setup(("R1",))
    source.tables["R1"] = "10.0.0.0 1\n10.0.1.0 2\n"
    net = NetworkConvergenceTracker(["R1"], source, sched)
    sched.schedule_at(0.0, net.start)
    source.set_at(7.0, "R1", "10.0.1.0 2\n10.0.0.0 1\n")
    sched.schedule_at(10.0, net.stop)
    sched.run(until=10.0)
    assert net.convergence_duration() == pytest.approx(7.0)


def test_phase_instances_do_not_share_history() -> None:
    sched, source = _setup()
    first = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, name="first")
    second = NetworkConvergenceTracker(["R1", "R2", "R3"], source, sched, name="second")
    sched.schedule_at(0.0, first.start)
    sched.schedule_at(50.0, first.stop)
    sched.schedule_at(50.0, second.start)
    sched.schedule_at(100.0, second.stop)
    source.set_at(3.0, "R2", "early")
    source.set_at(52.5, "R1", "late")
    sched.run(until=100.0)
    assert first.convergence_duration() == pytest.approx(3.0)
    assert second.convergence_duration() == pytest.approx(2.5)
    assert first.route_changes == 1
    assert second.route_changes == 1


class HeaderlessSource(RoutingStateSource):
    def __init__(self, tables: Dict[str, str]) -> None:
        self.tables = dict(tables)

    def has_routing(self, router: str) -> bool:
        return router in self.tables

    def routing_table_text(self, router: str) -> str:
        return self.tables[router]


def test_headerless_tables_keep_their_first_route() -> None:
    sched = VirtualTimeScheduler()
    source = HeaderlessSource({"R1": "10.0.0.0 1\n10.0.1.0 2\n"})
    net = NetworkConvergenceTracker(["R1"], source, sched, strip_header=False)
    sched.schedule_at(0.0, net.start)
    sched.schedule_at(7.0, source.tables.__setitem__, "R1", "10.0.0.0 3\n10.0.1.0 2\n")
    sched.schedule_at(10.0, net.stop)
    sched.run(until=10.0)
    assert net.tracker("R1").strip_header is False
    assert net.convergence_duration() == pytest.approx(7.0)


def test_single_line_headerless_table_change_is_seen() -> None:
    sched = VirtualTimeScheduler()
    source = HeaderlessSource({"R1": "A\n"})
    tracker = NodeConvergenceTracker("R1", source, sched, strip_header=False)
    sched.schedule_at(0.0, tracker.start)
    sched.schedule_at(2.0, source.tables.__setitem__, "R1", "B\n")
    sched.run(until=5.0)
    assert tracker.last_snapshot == RoutingStateSnapshot("R1", "B\n")
    assert tracker.last_change_time == pytest.approx(2.0)
    assert tracker.changes == 1


def test_header_is_stripped_by_default() -> None:
    sched, source = _setup(("R1",))
    tracker = NodeConvergenceTracker("R1", source, sched, always_on=True)
    assert tracker.last_snapshot == RoutingStateSnapshot("R1", "R1 connected\n")
