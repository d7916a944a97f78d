"""Plant Maintenance — Dashboard Service.

Read-only aggregates for the dashboard cards.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from schemas.machine import FleetSummary, MachineStatus
from schemas.pm import PMStatus
from services.breakdown_service import BreakdownService
from services.machine_service import MachineService
from services.pm_service import PMService, derive_effective_status
from services.time_metrics import utcnow


class DashboardService:
    def __init__(
        self,
        machines: MachineService,
        breakdowns: BreakdownService,
        pm: PMService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.machines = machines
        self.breakdowns = breakdowns
        self.pm = pm
        self._clock = clock

    def fleet_summary(self, now: Optional[datetime] = None) -> FleetSummary:
        """Status counts plus PM, breakdown and utilization alerts.

        near_threshold counts Running machines at or above the warning
        watermark; machines without a usable utilization limit are
        counted as misconfigured instead.
        """
        now = now or self._clock()
        summary = FleetSummary(generated_at=now)
        model = self.machines.model

        for machine in self.machines.list_machines():
            if machine.status == MachineStatus.RUNNING:
                summary.running += 1
            elif machine.status == MachineStatus.BREAKDOWN:
                summary.breakdown += 1
            elif machine.status == MachineStatus.MAINTENANCE:
                summary.maintenance += 1
            else:
                summary.idle += 1

            ratio = machine.utilization
            if ratio is None:
                summary.misconfigured += 1
            elif machine.status == MachineStatus.RUNNING and model.warning_crossed(ratio):
                summary.near_threshold += 1

        for task in self.pm.store.list_tasks():
            effective = derive_effective_status(task, now)
            if effective != PMStatus.COMPLETED:
                summary.pending_pm += 1
            if effective == PMStatus.OVERDUE:
                summary.overdue_pm += 1

        summary.active_breakdowns = self.breakdowns.active_count()
        return summary
