"""Plant Maintenance — Breakdown Service.

Append-only breakdown log with recurrence tracking and the reliability
KPIs derived from it.

Definitions:
    Recurrence  1 + number of Closed events on the same machine with the
                same root cause (case-insensitive, surrounding whitespace
                ignored). Fixed when the event is created.
    MTTR        mean downtime of Closed events.
    MTBF        mean gap between consecutive downtime starts of the same
                machine; gaps from all machines are pooled, a gap never
                spans two machines.

Undefined KPIs are None and rendered as "N/A", never 0.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from core.exceptions import InvalidStateError, NotFoundError, ValidationError
from db.store import MaintenanceStore
from logger import get_logger
from schemas.breakdown import (
    BreakdownEvent,
    BreakdownFilter,
    BreakdownKPIs,
    BreakdownStatus,
)
from services.machine_service import MachineService
from services.time_metrics import (
    duration_between,
    format_duration,
    mean_duration,
    to_hours,
    utcnow,
)

logger = get_logger(__name__)


def normalize_root_cause(root_cause: str) -> str:
    return root_cause.strip().casefold()


# =============================================================================
# KPI calculations
# =============================================================================

def compute_mttr(events: Iterable[BreakdownEvent]) -> Optional[timedelta]:
    """Mean time to repair over Closed events; None when none are closed."""
    return mean_duration(
        duration_between(e.downtime_start, e.downtime_end)
        for e in events
        if e.status == BreakdownStatus.CLOSED and e.downtime_end is not None
    )


def _gaps_by_machine(events: Iterable[BreakdownEvent]) -> Dict[str, List[timedelta]]:
    starts: Dict[str, List[datetime]] = defaultdict(list)
    for e in events:
        starts[e.machine_id].append(e.downtime_start)
    gaps: Dict[str, List[timedelta]] = {}
    for machine_id, times in starts.items():
        times.sort()
        gaps[machine_id] = [later - earlier for earlier, later in zip(times, times[1:])]
    return gaps


def compute_mtbf(events: Iterable[BreakdownEvent]) -> Optional[timedelta]:
    """Mean time between failures; None when no machine has two events."""
    pooled = [gap for gaps in _gaps_by_machine(events).values() for gap in gaps]
    return mean_duration(pooled)


def compute_avg_recurrence(events: Iterable[BreakdownEvent]) -> Optional[float]:
    """Mean recurrence over open and closed events; None for an empty log."""
    values = [e.recurrence for e in events]
    if not values:
        return None
    return sum(values) / len(values)


def mttr_by_machine(events: Iterable[BreakdownEvent]) -> Dict[str, Optional[timedelta]]:
    grouped: Dict[str, List[BreakdownEvent]] = defaultdict(list)
    for e in events:
        grouped[e.machine_id].append(e)
    return {machine_id: compute_mttr(items) for machine_id, items in grouped.items()}


def mtbf_by_machine(events: Iterable[BreakdownEvent]) -> Dict[str, Optional[timedelta]]:
    return {machine_id: mean_duration(gaps) for machine_id, gaps in _gaps_by_machine(events).items()}


# =============================================================================
# Service
# =============================================================================

class BreakdownService:
    """Service for the breakdown log.

    Reporting a breakdown moves the machine to Breakdown; closing the
    machine's last open ticket returns it to the status it had before
    (Running, Idle or Maintenance). Machine lock is always taken before
    the log lock.
    """

    def __init__(
        self,
        store: MaintenanceStore,
        machines: MachineService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.machines = machines
        self._clock = clock
        self.logger = logger.bind(service="BreakdownService")

    def _next_id(self, now: datetime) -> str:
        seq = self.store.next_sequence("breakdown")
        return f"BD-{now:%Y%m%d}-{seq:04d}"

    def _recurrence(self, machine_id: str, root_cause: str) -> int:
        key = normalize_root_cause(root_cause)
        prior = sum(
            1
            for e in self.store.list_breakdowns()
            if e.machine_id == machine_id
            and e.status == BreakdownStatus.CLOSED
            and normalize_root_cause(e.root_cause) == key
        )
        return prior + 1

    def report_breakdown(
        self,
        machine_id: str,
        root_cause: str,
        corrective_action: str = "",
        spares_used: Optional[List[str]] = None,
        breakdown_type: Optional[str] = None,
    ) -> BreakdownEvent:
        """Open a breakdown ticket.

        Raises:
            ValidationError: Unknown machine or empty root cause.
        """
        root_cause = (root_cause or "").strip()
        if not root_cause:
            raise ValidationError("root_cause", "must not be empty")
        if not self.store.has_machine(machine_id):
            raise ValidationError("machine_id", f"unknown machine '{machine_id}'")

        with self.machines.machine_lock(machine_id):
            with self.store.breakdown_lock:
                now = self._clock()
                event = BreakdownEvent(
                    id=self._next_id(now),
                    machine_id=machine_id,
                    downtime_start=now,
                    root_cause=root_cause,
                    corrective_action=(corrective_action or "").strip(),
                    spares_used=[s.strip() for s in spares_used or [] if s and s.strip()],
                    breakdown_type=breakdown_type,
                    status=BreakdownStatus.OPEN,
                    recurrence=self._recurrence(machine_id, root_cause),
                )
                self.store.add_breakdown(event)
            self.machines.enter_breakdown(machine_id, event.id)

        self.logger.info(
            "Breakdown reported",
            breakdown_id=event.id,
            machine_id=machine_id,
            root_cause=root_cause,
            recurrence=event.recurrence,
        )
        return event

    def close_ticket(self, breakdown_id: str) -> BreakdownEvent:
        """Close an open ticket; downtime ends now.

        Raises:
            NotFoundError: Unknown ticket.
            InvalidStateError: Ticket already closed (record unchanged).
        """
        event = self.get_breakdown(breakdown_id)

        with self.machines.machine_lock(event.machine_id):
            with self.store.breakdown_lock:
                event = self.get_breakdown(breakdown_id)
                if event.status == BreakdownStatus.CLOSED:
                    self.logger.warning("Close rejected", breakdown_id=breakdown_id, reason="already closed")
                    raise InvalidStateError("BreakdownEvent", breakdown_id, event.status.value, "close")
                end = max(self._clock(), event.downtime_start)
                closed = event.model_copy(update={"downtime_end": end, "status": BreakdownStatus.CLOSED})
                self.store.save_breakdown(closed)
                still_open = any(
                    e.machine_id == event.machine_id and e.status == BreakdownStatus.OPEN
                    for e in self.store.list_breakdowns()
                )
            if not still_open:
                self.machines.leave_breakdown(event.machine_id, breakdown_id)

        self.logger.info(
            "Breakdown closed",
            breakdown_id=breakdown_id,
            machine_id=closed.machine_id,
            downtime_hours=round(to_hours(closed.downtime_end - closed.downtime_start), 3),
            machine_released=not still_open,
        )
        return closed

    def get_breakdown(self, breakdown_id: str) -> BreakdownEvent:
        event = self.store.get_breakdown(breakdown_id)
        if event is None:
            raise NotFoundError("BreakdownEvent", breakdown_id)
        return event

    def list_breakdowns(self, criteria: Optional[BreakdownFilter] = None) -> List[BreakdownEvent]:
        """Breakdown log, newest first."""
        events = self.store.list_breakdowns()
        if criteria is not None:
            if criteria.machine_id is not None:
                events = [e for e in events if e.machine_id == criteria.machine_id]
            if criteria.status is not None:
                events = [e for e in events if e.status == criteria.status]
        return sorted(events, key=lambda e: e.downtime_start, reverse=True)

    # -------------------------------------------------------------------------
    # KPIs
    # -------------------------------------------------------------------------

    def compute_mttr(self, events: Optional[Iterable[BreakdownEvent]] = None) -> Optional[timedelta]:
        return compute_mttr(self.store.list_breakdowns() if events is None else events)

    def compute_mtbf(self, events: Optional[Iterable[BreakdownEvent]] = None) -> Optional[timedelta]:
        return compute_mtbf(self.store.list_breakdowns() if events is None else events)

    def compute_avg_recurrence(self, events: Optional[Iterable[BreakdownEvent]] = None) -> Optional[float]:
        return compute_avg_recurrence(self.store.list_breakdowns() if events is None else events)

    def mttr_by_machine(self) -> Dict[str, Optional[timedelta]]:
        return mttr_by_machine(self.store.list_breakdowns())

    def mtbf_by_machine(self) -> Dict[str, Optional[timedelta]]:
        return mtbf_by_machine(self.store.list_breakdowns())

    def active_count(self) -> int:
        return sum(1 for e in self.store.list_breakdowns() if e.status == BreakdownStatus.OPEN)

    def kpis(self, machine_id: Optional[str] = None) -> BreakdownKPIs:
        """Dashboard KPI cards, fleet-wide or for one machine."""
        events = self.list_breakdowns(BreakdownFilter(machine_id=machine_id))
        mttr = compute_mttr(events)
        mtbf = compute_mtbf(events)
        avg_recurrence = compute_avg_recurrence(events)
        return BreakdownKPIs(
            machine_id=machine_id,
            total_events=len(events),
            active_breakdowns=sum(1 for e in events if e.status == BreakdownStatus.OPEN),
            mttr_hours=to_hours(mttr),
            mttr_display=format_duration(mttr),
            mtbf_hours=to_hours(mtbf),
            mtbf_display=format_duration(mtbf),
            avg_recurrence=round(avg_recurrence, 2) if avg_recurrence is not None else None,
        )
