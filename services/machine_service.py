"""Plant Maintenance — Machine Service.

Encapsulates the machine registry and the machine lifecycle state
machine: counter updates, utilization watermarks, operator overrides
and the status changes driven by breakdown tickets.

Transitions:
    Running     -> Maintenance   utilization reaches the maintenance watermark
    any         -> Breakdown     a breakdown is reported
    Breakdown   -> prior status  the last open breakdown ticket is closed
    Maintenance -> Running/Idle  maintenance completed, or operator
    Running     -> Idle/Maintenance, Idle -> Running   operator
    Breakdown   -> any           operator, only while no ticket is open

Status is never re-derived from utilization outside a counter update.
Every change is made under the machine's lock and recorded as a
StatusTransition.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from core.exceptions import (
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from db.store import MaintenanceStore
from logger import get_logger
from schemas.breakdown import BreakdownStatus
from schemas.machine import (
    Machine,
    MachineCreate,
    MachineStatus,
    StatusTransition,
    TransitionReason,
)
from schemas.notification import NotificationKind
from services.notification_service import NotificationService
from services.time_metrics import utcnow
from services.utilization import UtilizationModel

logger = get_logger(__name__)

# Status changes an operator may request directly. Leaving Breakdown also
# requires that no ticket is open for the machine.
OPERATOR_TRANSITIONS: Dict[MachineStatus, FrozenSet[MachineStatus]] = {
    MachineStatus.RUNNING: frozenset({MachineStatus.IDLE, MachineStatus.MAINTENANCE}),
    MachineStatus.IDLE: frozenset({MachineStatus.RUNNING}),
    MachineStatus.MAINTENANCE: frozenset({MachineStatus.RUNNING, MachineStatus.IDLE}),
    MachineStatus.BREAKDOWN: frozenset({MachineStatus.RUNNING, MachineStatus.IDLE, MachineStatus.MAINTENANCE}),
}


class MachineService:
    """Service for the machine registry and lifecycle.

    This service encapsulates:
    - Machine registration and lookup
    - Counter updates with watermark evaluation
    - Operator status overrides and maintenance completion
    - Breakdown-driven transitions (called by BreakdownService)
    """

    def __init__(
        self,
        store: MaintenanceStore,
        notifier: NotificationService,
        model: Optional[UtilizationModel] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.model = model or UtilizationModel()
        self._clock = clock
        # Machines inside a continuous Running interval above the warning watermark
        self._warned: Set[str] = set()
        # Machines whose configuration defect has already been reported
        self._misconfigured: Set[str] = set()
        self._flag_lock = threading.Lock()
        self.logger = logger.bind(service="MachineService")

    # =========================================================================
    # Registry
    # =========================================================================

    def register_machine(self, data: MachineCreate) -> Machine:
        """Add a machine to the machine master.

        A non-positive utilization limit is accepted but reported once as
        a configuration error; threshold evaluation stays disabled for
        that machine.

        Raises:
            ValidationError: If the id is already registered.
        """
        machine = Machine(**data.model_dump())
        if not self.store.add_machine(machine):
            raise ValidationError("id", f"machine '{machine.id}' is already registered")

        self.logger.info(
            "Machine registered",
            machine_id=machine.id,
            status=machine.status.value,
            utilization_limit=machine.utilization_limit,
        )
        if machine.utilization_limit <= 0:
            self._report_misconfigured(
                machine,
                ConfigurationError(
                    "utilization_limit",
                    machine.utilization_limit,
                    "must be a positive stroke count",
                    machine_id=machine.id,
                ),
            )
        return machine

    def get_machine(self, machine_id: str) -> Machine:
        machine = self.store.get_machine(machine_id)
        if machine is None:
            raise NotFoundError("Machine", machine_id)
        return machine

    def list_machines(self, status: Optional[MachineStatus] = None) -> List[Machine]:
        machines = self.store.list_machines()
        if status is not None:
            machines = [m for m in machines if m.status == status]
        return machines

    def utilization_of(self, machine_id: str) -> float:
        """Current utilization ratio.

        Raises:
            NotFoundError: Unknown machine.
            ConfigurationError: The machine's utilization limit is not positive.
        """
        machine = self.get_machine(machine_id)
        return self.model.ratio(machine.stroke_count, machine.utilization_limit, machine_id=machine.id)

    def transitions(self, machine_id: Optional[str] = None) -> List[StatusTransition]:
        if machine_id is not None and not self.store.has_machine(machine_id):
            raise NotFoundError("Machine", machine_id)
        return self.store.list_transitions(machine_id)

    def misconfigured_machines(self) -> List[str]:
        with self._flag_lock:
            return sorted(self._misconfigured)

    def _lock_for(self, machine_id: str) -> threading.RLock:
        try:
            return self.store.machine_lock(machine_id)
        except KeyError:
            raise NotFoundError("Machine", machine_id) from None

    # =========================================================================
    # Counter updates
    # =========================================================================

    def update_counters(
        self,
        machine_id: str,
        stroke_count: int,
        cycle_time: Optional[float] = None,
    ) -> Machine:
        """Apply a new counter reading and evaluate the watermarks.

        Raises:
            NotFoundError: Unknown machine.
            ValidationError: Negative count, non-positive cycle time, or a
                decreasing count while the machine is Running.
        """
        if stroke_count < 0:
            raise ValidationError("stroke_count", "must not be negative")
        if cycle_time is not None and cycle_time <= 0:
            raise ValidationError("cycle_time", "must be positive")

        with self._lock_for(machine_id):
            machine = self.get_machine(machine_id)
            if machine.status == MachineStatus.RUNNING and stroke_count < machine.stroke_count:
                self.logger.warning(
                    "Counter update rejected",
                    machine_id=machine_id,
                    current=machine.stroke_count,
                    requested=stroke_count,
                )
                raise ValidationError(
                    "stroke_count",
                    f"cannot decrease from {machine.stroke_count} to {stroke_count} while Running",
                )

            machine.stroke_count = stroke_count
            if cycle_time is not None:
                machine.cycle_time = cycle_time
            self._evaluate_thresholds(machine)
            self.store.save_machine(machine)
            return machine

    def _evaluate_thresholds(self, machine: Machine) -> None:
        """Apply the watermark rules to a machine held under its lock."""
        try:
            ratio = self.model.ratio(machine.stroke_count, machine.utilization_limit, machine_id=machine.id)
        except ConfigurationError as e:
            self._report_misconfigured(machine, e)
            return

        if machine.status != MachineStatus.RUNNING or not self.model.warning_crossed(ratio):
            self._clear_warning(machine.id)
            return

        with self._flag_lock:
            first_crossing = machine.id not in self._warned
            self._warned.add(machine.id)
        if first_crossing:
            self.notifier.notify(
                NotificationKind.MAINTENANCE_WARNING,
                f"{machine.name} is at {ratio:.1%} of its utilization limit",
                machine_id=machine.id,
                payload={"utilization": ratio, "watermark": self.model.warning_watermark},
            )

        if self.model.maintenance_crossed(ratio):
            self._transition(machine, MachineStatus.MAINTENANCE, TransitionReason.UTILIZATION_THRESHOLD)
            self._clear_warning(machine.id)
            self.notifier.notify(
                NotificationKind.MAINTENANCE_DUE,
                f"{machine.name} reached {ratio:.1%} of its utilization limit and was moved to Maintenance",
                machine_id=machine.id,
                payload={"utilization": ratio, "watermark": self.model.maintenance_watermark},
            )

    def _clear_warning(self, machine_id: str) -> None:
        with self._flag_lock:
            self._warned.discard(machine_id)

    def _report_misconfigured(self, machine: Machine, error: ConfigurationError) -> None:
        with self._flag_lock:
            if machine.id in self._misconfigured:
                return
            self._misconfigured.add(machine.id)
        self.logger.warning(
            "Threshold evaluation disabled",
            machine_id=machine.id,
            utilization_limit=machine.utilization_limit,
            error=error.message,
        )
        self.notifier.notify(
            NotificationKind.CONFIGURATION_ERROR,
            error.message,
            machine_id=machine.id,
            payload=error.details,
        )

    # =========================================================================
    # Status changes
    # =========================================================================

    def _transition(
        self,
        machine: Machine,
        to_status: MachineStatus,
        reason: TransitionReason,
        note: Optional[str] = None,
    ) -> StatusTransition:
        """Change the status of a machine held under its lock and record it."""
        transition = StatusTransition(
            machine_id=machine.id,
            from_status=machine.status,
            to_status=to_status,
            reason=reason,
            at=self._clock(),
            note=note,
        )
        machine.status = to_status
        if to_status != MachineStatus.RUNNING:
            self._clear_warning(machine.id)
        self.store.append_transition(transition)
        self.logger.info(
            "Machine status changed",
            machine_id=machine.id,
            from_status=transition.from_status.value,
            to_status=to_status.value,
            reason=reason.value,
        )
        return transition

    def set_status(self, machine_id: str, status: MachineStatus, note: Optional[str] = None) -> Machine:
        """Operator override of a machine's status.

        Requesting the current status is a no-op.

        Raises:
            NotFoundError: Unknown machine.
            InvalidStateError: The change is not an operator transition
                (entering Breakdown, Idle -> Maintenance), or the machine
                has an open breakdown ticket.
        """
        with self._lock_for(machine_id):
            machine = self.get_machine(machine_id)
            if machine.status == status:
                return machine
            if status not in OPERATOR_TRANSITIONS[machine.status] or (
                machine.status == MachineStatus.BREAKDOWN and self._has_open_ticket(machine_id)
            ):
                self.logger.warning(
                    "Status change rejected",
                    machine_id=machine_id,
                    current=machine.status.value,
                    requested=status.value,
                )
                raise InvalidStateError("Machine", machine_id, machine.status.value, f"set status to {status.value}")
            self._transition(machine, status, TransitionReason.OPERATOR, note=note)
            self.store.save_machine(machine)
            return machine

    def complete_maintenance(
        self,
        machine_id: str,
        next_status: MachineStatus = MachineStatus.RUNNING,
        reset_counter: bool = True,
    ) -> Machine:
        """Close out maintenance on a machine.

        Sets last_serviced to now and, by default, resets the stroke
        counter so utilization restarts from zero.

        Raises:
            NotFoundError: Unknown machine.
            ValidationError: next_status is not Running or Idle.
            InvalidStateError: The machine is not in Maintenance.
        """
        if next_status not in (MachineStatus.RUNNING, MachineStatus.IDLE):
            raise ValidationError("next_status", "must be Running or Idle")

        with self._lock_for(machine_id):
            machine = self.get_machine(machine_id)
            if machine.status != MachineStatus.MAINTENANCE:
                raise InvalidStateError("Machine", machine_id, machine.status.value, "complete maintenance on")
            if reset_counter:
                machine.stroke_count = 0
            machine.last_serviced = self._clock()
            self._transition(machine, next_status, TransitionReason.MAINTENANCE_COMPLETED)
            self.store.save_machine(machine)
            return machine

    # -------------------------------------------------------------------------
    # Breakdown hooks (caller holds the machine lock)
    # -------------------------------------------------------------------------

    def enter_breakdown(self, machine_id: str, breakdown_id: str) -> Machine:
        machine = self.get_machine(machine_id)
        if machine.status != MachineStatus.BREAKDOWN:
            self._transition(machine, MachineStatus.BREAKDOWN, TransitionReason.BREAKDOWN_REPORTED, note=breakdown_id)
            self.store.save_machine(machine)
        return machine

    def leave_breakdown(self, machine_id: str, breakdown_id: str) -> Machine:
        """Return a machine to the status it had when the breakdown was reported.

        A machine that broke down during maintenance goes back to
        Maintenance; only maintenance completion releases it from there.
        """
        machine = self.get_machine(machine_id)
        if machine.status == MachineStatus.BREAKDOWN:
            resume = self._status_before_breakdown(machine_id)
            self._transition(machine, resume, TransitionReason.BREAKDOWN_CLOSED, note=breakdown_id)
            self.store.save_machine(machine)
        return machine

    def _status_before_breakdown(self, machine_id: str) -> MachineStatus:
        for transition in reversed(self.store.list_transitions(machine_id)):
            if transition.to_status == MachineStatus.BREAKDOWN:
                return transition.from_status
        # Registered or seeded in Breakdown
        return MachineStatus.RUNNING

    def _has_open_ticket(self, machine_id: str) -> bool:
        return any(
            e.machine_id == machine_id and e.status == BreakdownStatus.OPEN
            for e in self.store.list_breakdowns()
        )

    def machine_lock(self, machine_id: str) -> threading.RLock:
        """Lock to hold around enter_breakdown/leave_breakdown."""
        return self._lock_for(machine_id)
