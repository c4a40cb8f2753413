from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from rcm.core.convergence import NetworkConvergenceTracker
from rcm.core.errors import ConfigurationError
from rcm.core.scheduler import EventHandle, VirtualTimeScheduler
from rcm.core.types import PhaseResult, ReportMode

_log = logging.getLogger("rcm.phases")

TrackerFactory = Callable[[str], NetworkConvergenceTracker]


@dataclass
class Phase:
    name: str
    start: float
    stop: float
    report_mode: ReportMode
    tracker: Optional[NetworkConvergenceTracker] = None

    def result(self) -> PhaseResult:
        tracker = self.tracker
        return PhaseResult(
            name=self.name,
            start=tracker.start_time if tracker else None,
            stop=tracker.stop_time if tracker else None,
            stabilized_at=tracker.stabilization_instant() if tracker else None,
            convergence=tracker.convergence_duration() if tracker else None,
            report_mode=tracker.report_mode if tracker else self.report_mode,
        )


class PhaseScheduler:
    """Sequences phase trackers and fault callbacks on the virtual clock.

    Callbacks sharing an instant run in the order they were scheduled, so the
    phase ending at a boundary is stopped before the next one starts.
    """

    def __init__(self, scheduler: VirtualTimeScheduler) -> None:
        self._scheduler = scheduler
        self.phases: List[Phase] = []

    def schedule(self, delay: float, action: Callable[..., Any], *args: Any) -> EventHandle:
        return self._scheduler.schedule(delay, action, *args)

    def schedule_at(self, when: float, action: Callable[..., Any], *args: Any) -> EventHandle:
        return self._scheduler.schedule_at(when, action, *args)

    def plan(
        self,
        names: Sequence[str],
        boundaries: Sequence[float],
        factory: TrackerFactory,
        report_mode: Optional[ReportMode] = None,
        construct_at_start: bool = False,
    ) -> List[Phase]:
        """Create one tracker per consecutive pair of ``boundaries``.

        With ``construct_at_start`` the tracker is built inside the start
        callback (for trackers that begin tracking on construction); otherwise
        it is built now and started by the callback. A given ``report_mode`` is
        applied to every tracker the factory returns.
        """
        if len(boundaries) != len(names) + 1:
            raise ConfigurationError(
                f"{len(names)} phases need {len(names) + 1} boundaries, got {len(boundaries)}"
            )
        for left, right in zip(boundaries, boundaries[1:]):
            if right < left:
                raise ConfigurationError(f"Phase boundaries must be non-decreasing: {list(boundaries)}")

        planned: List[Phase] = []
        for name, start, stop in zip(names, boundaries, boundaries[1:]):
            phase = Phase(
                name=name,
                start=float(start),
                stop=float(stop),
                report_mode=ReportMode(report_mode) if report_mode is not None else ReportMode.RELATIVE,
            )
            if construct_at_start:
                self.schedule_at(phase.start, self._construct, phase, factory, report_mode)
            else:
                phase.tracker = _built(factory, name, report_mode)
                self.schedule_at(phase.start, phase.tracker.start)
            self.schedule_at(phase.stop, self._stop, phase)
            planned.append(phase)
        self.phases.extend(planned)
        _log.debug("planned phases %s", [(p.name, p.start, p.stop) for p in planned])
        return planned

    def results(self) -> List[PhaseResult]:
        return [phase.result() for phase in self.phases]

    @staticmethod
    def _construct(phase: Phase, factory: TrackerFactory, report_mode: Optional[ReportMode]) -> None:
        phase.tracker = _built(factory, phase.name, report_mode)
        phase.tracker.start()

    @staticmethod
    def _stop(phase: Phase) -> None:
        if phase.tracker is not None:
            phase.tracker.stop()


def _built(factory: TrackerFactory, name: str, report_mode: Optional[ReportMode]) -> NetworkConvergenceTracker:
    tracker = factory(name)
    if report_mode is not None:
        tracker.report_mode = ReportMode(report_mode)
    return tracker
