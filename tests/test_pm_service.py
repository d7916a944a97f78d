"""Tests for PM scheduling, effective status and task filters."""

from datetime import date, datetime, timedelta, timezone

import pytest

from core.exceptions import InvalidStateError, NotFoundError, ValidationError
from schemas.pm import (
    DateFilter,
    NoFilter,
    PMFrequency,
    PMStatus,
    PMTask,
    StatusFilter,
)
from services.pm_service import (
    derive_effective_status,
    filter_by_date,
    filter_by_status,
    normalize_due_date,
)

UTC = timezone.utc


def _task(status=PMStatus.SCHEDULED, due=None, ticket_id="PM-1"):
    return PMTask(
        ticket_id=ticket_id,
        machine_id="MC-100",
        activity="Lubrication",
        frequency=PMFrequency.MONTHLY,
        assignee="John Doe",
        due_date=due or datetime(2024, 7, 15, tzinfo=UTC),
        status=status,
    )


@pytest.fixture
def schedule(services, register):
    register("MC-100", name="Moulding Machine 1")

    def _schedule(due, **kwargs):
        return services.pm.schedule(
            kwargs.pop("machine_id", "MC-100"),
            kwargs.pop("activity", "Monthly Lubrication"),
            kwargs.pop("frequency", PMFrequency.MONTHLY),
            kwargs.pop("assignee", "John Doe"),
            due,
            **kwargs,
        )

    return _schedule


class TestEffectiveStatus:
    def test_past_due_scheduled_reads_overdue(self):
        now = datetime(2024, 7, 20, tzinfo=UTC)
        assert derive_effective_status(_task(), now) == PMStatus.OVERDUE

    def test_completed_wins(self):
        now = datetime(2024, 7, 20, tzinfo=UTC)
        assert derive_effective_status(_task(PMStatus.COMPLETED), now) == PMStatus.COMPLETED

    def test_in_progress_past_due_reads_overdue(self):
        now = datetime(2024, 7, 20, tzinfo=UTC)
        assert derive_effective_status(_task(PMStatus.IN_PROGRESS), now) == PMStatus.OVERDUE

    def test_future_keeps_stored_status(self):
        now = datetime(2024, 7, 1, tzinfo=UTC)
        assert derive_effective_status(_task(PMStatus.IN_PROGRESS), now) == PMStatus.IN_PROGRESS

    def test_derivation_does_not_write_back(self):
        task = _task()
        derive_effective_status(task, datetime(2030, 1, 1, tzinfo=UTC))
        assert task.status == PMStatus.SCHEDULED


class TestFilters:
    def test_filter_by_status_uses_effective_status(self):
        now = datetime(2024, 7, 20, tzinfo=UTC)
        tasks = [
            _task(ticket_id="a", due=datetime(2024, 7, 10, tzinfo=UTC)),
            _task(ticket_id="b", due=datetime(2024, 7, 30, tzinfo=UTC)),
        ]
        assert [t.ticket_id for t in filter_by_status(tasks, PMStatus.OVERDUE, now)] == ["a"]
        assert [t.ticket_id for t in filter_by_status(tasks, PMStatus.SCHEDULED, now)] == ["b"]

    def test_filter_by_date_uses_utc_day(self):
        tasks = [
            _task(ticket_id="a", due=datetime(2024, 7, 15, 23, 59, tzinfo=UTC)),
            _task(ticket_id="b", due=datetime(2024, 7, 16, 0, 0, tzinfo=UTC)),
        ]
        assert [t.ticket_id for t in filter_by_date(tasks, date(2024, 7, 15))] == ["a"]

    def test_bare_date_is_utc_midnight(self):
        assert normalize_due_date(date(2024, 7, 25)) == datetime(2024, 7, 25, tzinfo=UTC)

    def test_naive_datetime_rejected(self):
        with pytest.raises(ValidationError):
            normalize_due_date(datetime(2024, 7, 25, 8, 0))


class TestSchedule:
    def test_schedule_creates_scheduled_task(self, services, schedule, clock):
        task = schedule(
            datetime(2024, 7, 25, 8, 0, tzinfo=UTC),
            checklist=["Check levels", "  ", "Grease fittings"],
            location="Shop Floor A",
        )
        assert task.status == PMStatus.SCHEDULED
        assert task.ticket_id == "PM-20240720-0001"
        assert task.machine_name == "Moulding Machine 1"
        assert task.checklist == ["Check levels", "Grease fittings"]
        history = services.pm.task_history(task.ticket_id)
        assert [(h.from_status, h.to_status) for h in history] == [(None, PMStatus.SCHEDULED)]

    def test_ticket_ids_are_monotonic(self, schedule):
        first = schedule(date(2024, 7, 25))
        second = schedule(date(2024, 7, 26))
        assert first.ticket_id < second.ticket_id

    def test_unknown_machine_rejected(self, schedule):
        with pytest.raises(ValidationError):
            schedule(date(2024, 7, 25), machine_id="NOPE")

    def test_naive_due_rejected(self, schedule, services):
        with pytest.raises(ValidationError):
            schedule(datetime(2024, 7, 25, 8, 0))
        assert services.pm.list_tasks() == []


class TestCompletion:
    def test_e2e_overdue_then_completed(self, services, schedule, clock):
        yesterday = (clock.now - timedelta(days=1)).date()
        task = schedule(yesterday)

        listed = services.pm.list_tasks(NoFilter())
        assert listed[0].effective_status == PMStatus.OVERDUE
        assert listed[0].status == PMStatus.SCHEDULED

        done = services.pm.mark_completed(task.ticket_id)
        assert done.status == PMStatus.COMPLETED
        assert done.completed_at == clock.now

        clock.advance(days=365)
        assert services.pm.view(services.pm.get_task(task.ticket_id)).effective_status == PMStatus.COMPLETED

    def test_completed_is_terminal(self, services, schedule):
        task = schedule(date(2024, 7, 25))
        services.pm.mark_completed(task.ticket_id)
        with pytest.raises(InvalidStateError):
            services.pm.mark_completed(task.ticket_id)
        with pytest.raises(InvalidStateError):
            services.pm.start_task(task.ticket_id)

    def test_unknown_ticket(self, services):
        with pytest.raises(NotFoundError):
            services.pm.mark_completed("PM-NOPE")

    def test_start_then_complete_history(self, services, schedule):
        task = schedule(date(2024, 7, 25))
        services.pm.start_task(task.ticket_id)
        with pytest.raises(InvalidStateError):
            services.pm.start_task(task.ticket_id)
        services.pm.mark_completed(task.ticket_id)

        statuses = [h.to_status for h in services.pm.task_history(task.ticket_id)]
        assert statuses == [PMStatus.SCHEDULED, PMStatus.IN_PROGRESS, PMStatus.COMPLETED]

    def test_overdue_task_can_be_started(self, services, schedule):
        task = schedule(date(2024, 7, 1))
        assert services.pm.start_task(task.ticket_id).status == PMStatus.IN_PROGRESS


class TestListTasks:
    def test_list_by_status_and_date(self, services, schedule):
        overdue = schedule(date(2024, 7, 10))
        upcoming = schedule(date(2024, 7, 25))

        by_status = services.pm.list_tasks(StatusFilter(status=PMStatus.OVERDUE))
        assert [t.ticket_id for t in by_status] == [overdue.ticket_id]

        by_date = services.pm.list_tasks(DateFilter(on=date(2024, 7, 25)))
        assert [t.ticket_id for t in by_date] == [upcoming.ticket_id]

        assert [t.ticket_id for t in services.pm.list_tasks()] == [overdue.ticket_id, upcoming.ticket_id]

    def test_status_counts(self, services, schedule):
        schedule(date(2024, 7, 10))
        schedule(date(2024, 7, 25))
        done = schedule(date(2024, 7, 5))
        services.pm.mark_completed(done.ticket_id)

        counts = services.pm.status_counts()
        assert counts == {"Scheduled": 1, "In Progress": 0, "Overdue": 1, "Completed": 1}
