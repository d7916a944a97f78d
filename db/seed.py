"""Demo fleet used by the dashboard when SEED_DEMO_DATA is enabled.

Records are written straight into the store: they describe history, so
no lifecycle rules or notifications are replayed for them.
"""

from __future__ import annotations

from datetime import datetime, timezone

from db.store import MaintenanceStore
from logger import get_logger
from schemas.breakdown import BreakdownEvent, BreakdownStatus
from schemas.machine import Machine, MachineStatus
from schemas.pm import PMFrequency, PMStatus, PMTask, TaskStatusChange

logger = get_logger(__name__)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


DEMO_MACHINES = [
    Machine(id="MC-001", name="Moulding Machine 1", model="M-100A", status=MachineStatus.RUNNING,
            stroke_count=85000, utilization_limit=100000, health_score=92, oil_level=80,
            last_serviced=_utc(2023, 10, 15), cycle_time=12.5),
    Machine(id="MC-002", name="Moulding Machine 2", model="M-100B", status=MachineStatus.RUNNING,
            stroke_count=98500, utilization_limit=100000, health_score=78, oil_level=65,
            last_serviced=_utc(2023, 9, 20), cycle_time=13.1),
    Machine(id="MC-003", name="Moulding Machine 3", model="M-200X", status=MachineStatus.BREAKDOWN,
            stroke_count=150200, utilization_limit=200000, health_score=45, oil_level=20,
            last_serviced=_utc(2023, 8, 1)),
    Machine(id="MC-004", name="Moulding Machine 4", model="M-100A", status=MachineStatus.MAINTENANCE,
            stroke_count=45000, utilization_limit=100000, health_score=88, oil_level=95,
            last_serviced=_utc(2023, 11, 1)),
    Machine(id="MC-005", name="Moulding Machine 5", model="M-300P", status=MachineStatus.IDLE,
            stroke_count=10500, utilization_limit=150000, health_score=99, oil_level=75,
            last_serviced=_utc(2023, 10, 25)),
    Machine(id="MC-006", name="Moulding Machine 6", model="M-200X", status=MachineStatus.RUNNING,
            stroke_count=195000, utilization_limit=200000, health_score=62, oil_level=40,
            last_serviced=_utc(2023, 9, 10), cycle_time=14.2),
]

DEMO_BREAKDOWNS = [
    BreakdownEvent(id="BD-001", machine_id="MC-003",
                   downtime_start=_utc(2023, 10, 26, 10, 0), downtime_end=_utc(2023, 10, 26, 14, 30),
                   root_cause="Hydraulic pump failure", corrective_action="Replaced hydraulic pump",
                   spares_used=["Hydraulic pump HP-20"], breakdown_type="Mechanical",
                   status=BreakdownStatus.CLOSED, recurrence=3),
    BreakdownEvent(id="BD-002", machine_id="MC-006",
                   downtime_start=_utc(2023, 10, 27, 8, 15),
                   root_cause="Cooling system leak", breakdown_type="Mechanical",
                   status=BreakdownStatus.OPEN, recurrence=1),
    BreakdownEvent(id="BD-003", machine_id="MC-001",
                   downtime_start=_utc(2023, 9, 15, 14, 0), downtime_end=_utc(2023, 9, 15, 15, 0),
                   root_cause="Sensor malfunction", corrective_action="Recalibrated proximity sensor",
                   breakdown_type="Electrical", status=BreakdownStatus.CLOSED, recurrence=1),
]

DEMO_TASKS = [
    PMTask(ticket_id="PM-001", machine_id="MC-001", machine_name="Moulding Machine 1",
           location="Shop Floor A", activity="Monthly Lubrication", frequency=PMFrequency.MONTHLY,
           assignee="John Doe", due_date=_utc(2024, 7, 15), status=PMStatus.COMPLETED,
           checklist=["Check lubrication levels", "Grease all fittings", "Inspect for leaks"],
           completed_at=_utc(2024, 7, 15, 16, 0)),
    PMTask(ticket_id="PM-002", machine_id="MC-002", machine_name="Moulding Machine 2",
           location="Shop Floor A", activity="Quarterly Hydraulic Check", frequency=PMFrequency.QUARTERLY,
           assignee="Jane Smith", due_date=_utc(2024, 7, 20), status=PMStatus.IN_PROGRESS),
    PMTask(ticket_id="PM-003", machine_id="MC-004", machine_name="Moulding Machine 4",
           location="Shop Floor B", activity="Weekly Electrical Check", frequency=PMFrequency.WEEKLY,
           assignee="Mike Brown", due_date=_utc(2024, 7, 10), status=PMStatus.OVERDUE),
    PMTask(ticket_id="PM-004", machine_id="MC-005", machine_name="Moulding Machine 5",
           location="Shop Floor C", activity="Annual Calibration", frequency=PMFrequency.ANNUALLY,
           assignee="Sara Wilson", due_date=_utc(2024, 7, 25), status=PMStatus.SCHEDULED),
    PMTask(ticket_id="PM-005", machine_id="MC-006", machine_name="Moulding Machine 6",
           location="Shop Floor C", activity="Monthly Filter Replacement", frequency=PMFrequency.MONTHLY,
           assignee="Chris Green", due_date=_utc(2024, 7, 18), status=PMStatus.SCHEDULED),
    PMTask(ticket_id="PM-006", machine_id="MC-001", machine_name="Moulding Machine 1",
           location="Shop Floor A", activity="Weekly Cleaning", frequency=PMFrequency.WEEKLY,
           assignee="John Doe", due_date=_utc(2024, 7, 25), status=PMStatus.COMPLETED,
           completed_at=_utc(2024, 7, 25, 11, 30)),
]


def seed_demo_fleet(store: MaintenanceStore) -> int:
    """Load the demo fleet into an empty store.

    Returns:
        Number of machines inserted (already present ids are skipped).
    """
    inserted = sum(1 for machine in DEMO_MACHINES if store.add_machine(machine))
    for event in DEMO_BREAKDOWNS:
        if store.get_breakdown(event.id) is None:
            store.add_breakdown(event)
    for task in DEMO_TASKS:
        if store.get_task(task.ticket_id) is None:
            store.add_task(task)
            store.append_task_change(TaskStatusChange(
                ticket_id=task.ticket_id,
                from_status=None,
                to_status=task.status,
                at=task.completed_at or task.due_date,
            ))

    logger.info(
        "Demo fleet seeded",
        machines=inserted,
        breakdowns=len(DEMO_BREAKDOWNS),
        pm_tasks=len(DEMO_TASKS),
    )
    return inserted
