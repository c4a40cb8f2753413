from __future__ import annotations

from typing import Dict, List

import pytest

from rcm.core.collaborators import RoutingStateSource
from rcm.core.convergence import NetworkConvergenceTracker
from rcm.core.errors import ConfigurationError, SchedulingError
from rcm.core.logging import JsonlLogger
from rcm.core.phases import PhaseScheduler
from rcm.core.scheduler import VirtualTimeScheduler
from rcm.core.types import ReportMode


class Tables(RoutingStateSource):
    def __init__(self, tables: Dict[str, str]) -> None:
        self.tables = tables

    def has_routing(self, router: str) -> bool:
        return router in self.tables

    def routing_table_text(self, router: str) -> str:
        return "header\n" + self.tables[router]


def _factory(sched: VirtualTimeScheduler, source: Tables, events: JsonlLogger, always_on: bool = False):
    def make(name: str) -> NetworkConvergenceTracker:
        return NetworkConvergenceTracker(
            ["R1", "R2"], source, sched, poll_interval=0.1, always_on=always_on, events=events, name=name
        )

    return make


def test_three_phases_measure_independently() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    events = JsonlLogger(path=None, keep=True)
    phases = PhaseScheduler(sched)
    fault_log: List[float] = []
    phases.schedule_at(100.0, lambda: fault_log.append(sched.now))
    phases.plan(["before", "during", "after"], [0.0, 100.0, 200.0, 300.0], _factory(sched, source, events))

    sched.schedule_at(2.5, source.tables.__setitem__, "R1", "b")
    sched.schedule_at(101.2, source.tables.__setitem__, "R2", "b")
    sched.schedule_at(203.4, source.tables.__setitem__, "R1", "c")
    sched.run(until=300.0)

    results = {r.name: r for r in phases.results()}
    assert results["before"].convergence == pytest.approx(2.5)
    assert results["during"].convergence == pytest.approx(1.2)
    assert results["after"].convergence == pytest.approx(3.4)
    assert results["during"].start == 100.0
    assert results["during"].stop == 200.0
    assert fault_log == [100.0]


def test_boundary_stops_previous_phase_before_starting_next() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    events = JsonlLogger(path=None, keep=True)
    phases = PhaseScheduler(sched)
    phases.plan(["p1", "p2"], [0.0, 50.0, 100.0], _factory(sched, source, events))
    # lands on the boundary after both phase callbacks, so only p2 sees it
    sched.schedule_at(50.0, source.tables.__setitem__, "R1", "b")
    sched.run(until=100.0)

    boundary = [(r["event"], r["phase"]) for r in events.records if r.get("t") == 50.0]
    assert boundary == [("phase_stop", "p1"), ("phase_start", "p2")]
    results = {r.name: r for r in phases.results()}
    assert results["p1"].convergence == pytest.approx(0.0)
    assert results["p2"].convergence == pytest.approx(0.1)


def test_always_on_trackers_are_built_when_their_phase_begins() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    events = JsonlLogger(path=None, keep=True)
    phases = PhaseScheduler(sched)
    planned = phases.plan(
        ["only"],
        [10.0, 40.0],
        _factory(sched, source, events, always_on=True),
        report_mode=ReportMode.ABSOLUTE,
        construct_at_start=True,
    )
    assert planned[0].tracker is None
    sched.schedule_at(12.0, source.tables.__setitem__, "R2", "b")
    sched.run(until=60.0)

    result = phases.results()[0]
    assert planned[0].tracker is not None
    assert result.start == 10.0
    assert result.convergence == pytest.approx(12.0)


def test_unscheduled_phase_reports_nothing() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    phases = PhaseScheduler(sched)
    phases.plan(["late"], [500.0, 600.0], _factory(sched, source, JsonlLogger(path=None)))
    sched.run(until=100.0)
    result = phases.results()[0]
    assert result.start is None
    assert result.convergence is None


def test_plan_validates_boundaries() -> None:
    sched = VirtualTimeScheduler()
    phases = PhaseScheduler(sched)
    factory = _factory(sched, Tables({"R1": "a", "R2": "a"}), JsonlLogger(path=None))
    with pytest.raises(ConfigurationError):
        phases.plan(["a", "b"], [0.0, 1.0], factory)
    with pytest.raises(ConfigurationError):
        phases.plan(["a", "b"], [0.0, 5.0, 2.0], factory)


def test_schedule_in_past_fails_fast() -> None:
    sched = VirtualTimeScheduler()
    phases = PhaseScheduler(sched)
    sched.schedule_at(5.0, lambda: None)
    sched.run()
    with pytest.raises(SchedulingError):
        phases.schedule_at(1.0, lambda: None)
    handle = phases.schedule(1.0, lambda: None)
    assert handle.at == 6.0


def test_planned_report_mode_overrides_the_factory_mode() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    phases = PhaseScheduler(sched)
    phases.plan(
        ["only"], [10.0, 40.0], _factory(sched, source, JsonlLogger(path=None)), report_mode=ReportMode.ABSOLUTE
    )
    sched.schedule_at(13.0, source.tables.__setitem__, "R1", "b")
    sched.run(until=40.0)

    result = phases.results()[0]
    assert phases.phases[0].tracker.report_mode is ReportMode.ABSOLUTE
    assert result.report_mode is ReportMode.ABSOLUTE
    assert result.convergence == pytest.approx(13.0)


def test_result_is_labelled_with_the_tracker_mode_when_plan_gives_none() -> None:
    sched = VirtualTimeScheduler()
    source = Tables({"R1": "a", "R2": "a"})
    phases = PhaseScheduler(sched)

    def make(name: str) -> NetworkConvergenceTracker:
        return NetworkConvergenceTracker(["R1", "R2"], source, sched, report_mode=ReportMode.ABSOLUTE, name=name)

    phases.plan(["only"], [10.0, 40.0], make)
    sched.schedule_at(13.0, source.tables.__setitem__, "R1", "b")
    sched.run(until=40.0)

    result = phases.results()[0]
    assert result.report_mode is ReportMode.ABSOLUTE
    assert result.convergence == pytest.approx(13.0)
    assert result.as_dict()["report_mode"] == "absolute"
