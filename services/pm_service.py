"""Plant Maintenance — Preventive Maintenance Service.

Schedules PM tasks and tracks their lifecycle:

    Scheduled/Overdue -> In Progress -> Completed
    any non-Completed -> Completed

The stored status only changes through these explicit actions. What
readers see is the effective status, derived from the due date at read
time: Completed always wins, otherwise a task past its due date reads as
Overdue. Nothing is written back when a task becomes overdue.
"""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterable, List, Optional, Union

from core.exceptions import InvalidStateError, NotFoundError, ValidationError
from db.store import MaintenanceStore
from logger import get_logger
from schemas.pm import (
    DateFilter,
    NoFilter,
    PMFrequency,
    PMStatus,
    PMTask,
    PMTaskView,
    StatusFilter,
    TaskFilter,
    TaskStatusChange,
)
from services.time_metrics import ensure_aware, is_overdue, same_calendar_day, utcnow

logger = get_logger(__name__)

_STARTABLE = frozenset({PMStatus.SCHEDULED, PMStatus.OVERDUE})


def derive_effective_status(task: PMTask, now: datetime) -> PMStatus:
    """Status as presented to readers. Pure."""
    if task.status == PMStatus.COMPLETED:
        return PMStatus.COMPLETED
    if is_overdue(task.due_date, now):
        return PMStatus.OVERDUE
    return task.status


def filter_by_status(tasks: Iterable[PMTask], status: PMStatus, now: datetime) -> List[PMTask]:
    return [t for t in tasks if derive_effective_status(t, now) == status]


def filter_by_date(tasks: Iterable[PMTask], day: Union[date, datetime]) -> List[PMTask]:
    return [t for t in tasks if same_calendar_day(t.due_date, day)]


def normalize_due_date(due_date: Union[date, datetime]) -> datetime:
    """Timezone-aware due timestamp. A bare date means 00:00 UTC of that day.

    Raises:
        ValidationError: For a naive datetime.
    """
    if isinstance(due_date, datetime):
        return ensure_aware(due_date, field="due_date")
    return datetime.combine(due_date, time.min, tzinfo=timezone.utc)


class PMService:
    """Service for PM task scheduling and completion."""

    def __init__(self, store: MaintenanceStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock
        self.logger = logger.bind(service="PMService")

    def _next_ticket_id(self, now: datetime) -> str:
        seq = self.store.next_sequence("pm_task")
        return f"PM-{now:%Y%m%d}-{seq:04d}"

    def view(self, task: PMTask, now: Optional[datetime] = None) -> PMTaskView:
        now = now or self._clock()
        return PMTaskView(**task.model_dump(), effective_status=derive_effective_status(task, now))

    def schedule(
        self,
        machine_id: str,
        activity: str,
        frequency: PMFrequency,
        assignee: str,
        due_date: Union[date, datetime],
        checklist: Optional[List[str]] = None,
        location: Optional[str] = None,
    ) -> PMTask:
        """Create a Scheduled task.

        Raises:
            ValidationError: Unknown machine, blank activity/assignee or a
                naive due timestamp.
        """
        machine = self.store.get_machine(machine_id)
        if machine is None:
            raise ValidationError("machine_id", f"unknown machine '{machine_id}'")
        if not (activity or "").strip():
            raise ValidationError("activity", "must not be empty")
        if not (assignee or "").strip():
            raise ValidationError("assignee", "must not be empty")
        due = normalize_due_date(due_date)

        now = self._clock()
        with self.store.task_lock:
            task = PMTask(
                ticket_id=self._next_ticket_id(now),
                machine_id=machine_id,
                machine_name=machine.name,
                location=location,
                activity=activity.strip(),
                frequency=frequency,
                assignee=assignee.strip(),
                due_date=due,
                status=PMStatus.SCHEDULED,
                checklist=[item.strip() for item in checklist or [] if item and item.strip()],
            )
            self.store.add_task(task)
            self._record(task.ticket_id, None, PMStatus.SCHEDULED, now)

        self.logger.info(
            "PM task scheduled",
            ticket_id=task.ticket_id,
            machine_id=machine_id,
            frequency=frequency.value,
            due_date=due.isoformat(),
        )
        return task

    def get_task(self, ticket_id: str) -> PMTask:
        task = self.store.get_task(ticket_id)
        if task is None:
            raise NotFoundError("PMTask", ticket_id)
        return task

    def start_task(self, ticket_id: str) -> PMTask:
        """Move a Scheduled (or effectively Overdue) task to In Progress.

        Raises:
            NotFoundError: Unknown ticket.
            InvalidStateError: Task already in progress or completed.
        """
        with self.store.task_lock:
            task = self.get_task(ticket_id)
            now = self._clock()
            effective = derive_effective_status(task, now)
            if task.status not in _STARTABLE:
                raise InvalidStateError("PMTask", ticket_id, effective.value, "start")
            previous = task.status
            task.status = PMStatus.IN_PROGRESS
            self.store.save_task(task)
            self._record(ticket_id, previous, PMStatus.IN_PROGRESS, now)

        self.logger.info("PM task started", ticket_id=ticket_id, from_status=effective.value)
        return task

    def mark_completed(self, ticket_id: str) -> PMTask:
        """Complete a task. Completed is terminal.

        Raises:
            NotFoundError: Unknown ticket.
            InvalidStateError: Task already completed.
        """
        with self.store.task_lock:
            task = self.get_task(ticket_id)
            if task.status == PMStatus.COMPLETED:
                self.logger.warning("Completion rejected", ticket_id=ticket_id, reason="already completed")
                raise InvalidStateError("PMTask", ticket_id, task.status.value, "complete")
            now = self._clock()
            previous = task.status
            task.status = PMStatus.COMPLETED
            task.completed_at = now
            self.store.save_task(task)
            self._record(ticket_id, previous, PMStatus.COMPLETED, now)

        self.logger.info(
            "PM task completed",
            ticket_id=ticket_id,
            machine_id=task.machine_id,
            late=is_overdue(task.due_date, now),
        )
        return task

    def _record(self, ticket_id: str, from_status: Optional[PMStatus], to_status: PMStatus, at: datetime) -> None:
        self.store.append_task_change(
            TaskStatusChange(ticket_id=ticket_id, from_status=from_status, to_status=to_status, at=at)
        )

    def task_history(self, ticket_id: str) -> List[TaskStatusChange]:
        self.get_task(ticket_id)
        return self.store.task_history(ticket_id)

    def list_tasks(self, criteria: Optional[TaskFilter] = None, now: Optional[datetime] = None) -> List[PMTaskView]:
        """Tasks matching at most one criterion, ordered by due date."""
        now = now or self._clock()
        tasks = self.store.list_tasks()
        if criteria is None or isinstance(criteria, NoFilter):
            selected = tasks
        elif isinstance(criteria, StatusFilter):
            selected = filter_by_status(tasks, criteria.status, now)
        elif isinstance(criteria, DateFilter):
            selected = filter_by_date(tasks, criteria.on)
        else:
            raise ValidationError("filter", f"unsupported task filter {type(criteria).__name__}")
        selected.sort(key=lambda t: t.due_date)
        return [self.view(t, now) for t in selected]

    def status_counts(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Effective-status histogram for the PM status chart."""
        now = now or self._clock()
        counts = Counter(derive_effective_status(t, now) for t in self.store.list_tasks())
        return {status.value: counts.get(status, 0) for status in PMStatus}
