"""Tests for the demo seed data and the fleet summary cards."""

from db.seed import DEMO_BREAKDOWNS, DEMO_MACHINES, DEMO_TASKS, seed_demo_fleet
from schemas.machine import MachineStatus
from tests.conftest import T0


def test_seed_is_idempotent(services):
    assert seed_demo_fleet(services.store) == len(DEMO_MACHINES)
    assert seed_demo_fleet(services.store) == 0
    assert len(services.breakdowns.list_breakdowns()) == len(DEMO_BREAKDOWNS)
    assert len(services.pm.list_tasks()) == len(DEMO_TASKS)


def test_seeded_records_do_not_notify(services):
    seed_demo_fleet(services.store)
    assert services.notifications.list_notifications() == []


def test_fleet_summary_on_demo_fleet(services):
    seed_demo_fleet(services.store)
    summary = services.dashboard.fleet_summary(now=T0)

    assert (summary.running, summary.breakdown, summary.maintenance, summary.idle) == (3, 1, 1, 1)
    # MC-002 at 98.5% and MC-006 at 97.5%
    assert summary.near_threshold == 2
    assert summary.misconfigured == 0
    assert summary.pending_pm == 4
    assert summary.overdue_pm == 3
    assert summary.active_breakdowns == 1
    assert summary.generated_at == T0


def test_summary_counts_misconfigured_separately(services, register):
    register("MC-100", utilization_limit=0, stroke_count=99_999)
    register("MC-101", status=MachineStatus.IDLE, stroke_count=99_000)

    summary = services.dashboard.fleet_summary()
    assert summary.misconfigured == 1
    assert summary.near_threshold == 0
    assert summary.running == 1
    assert summary.idle == 1


def test_empty_fleet(services):
    summary = services.dashboard.fleet_summary()
    assert summary.running == 0
    assert summary.pending_pm == 0
    assert summary.active_breakdowns == 0
