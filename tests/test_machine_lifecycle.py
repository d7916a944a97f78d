"""Tests for the machine registry and lifecycle state machine."""

from datetime import datetime

import pytest
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import (
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from db.seed import seed_demo_fleet
from schemas.breakdown import BreakdownFilter, BreakdownStatus
from schemas.machine import MachineCreate, MachineStatus, TransitionReason
from schemas.notification import NotificationKind


def _kinds(services, machine_id):
    return [n.kind for n in reversed(services.notifications.list_notifications(machine_id=machine_id))]


class TestRegistry:
    def test_register_and_get(self, services, register):
        register("MC-100", stroke_count=500)
        machine = services.machines.get_machine("MC-100")
        assert machine.stroke_count == 500
        assert machine.utilization == pytest.approx(0.005)

    def test_duplicate_id_rejected(self, register):
        register("MC-100")
        with pytest.raises(ValidationError):
            register("MC-100")

    def test_unknown_machine(self, services):
        with pytest.raises(NotFoundError):
            services.machines.get_machine("NOPE")

    def test_list_by_status(self, services, register):
        register("MC-100", status=MachineStatus.RUNNING)
        register("MC-101", status=MachineStatus.IDLE)
        assert [m.id for m in services.machines.list_machines(MachineStatus.IDLE)] == ["MC-101"]

    def test_returned_machine_is_a_copy(self, services, register):
        register("MC-100", stroke_count=10)
        machine = services.machines.get_machine("MC-100")
        machine.stroke_count = 99_999
        assert services.machines.get_machine("MC-100").stroke_count == 10


class TestCounterUpdates:
    def test_threshold_transition_fires_once(self, services, register):
        register("MC-100", stroke_count=97_000)

        machine = services.machines.update_counters("MC-100", 98_000, 13.2)
        assert machine.status == MachineStatus.MAINTENANCE
        assert machine.cycle_time == pytest.approx(13.2)

        # A later reading above the watermark must not record a second transition
        services.machines.update_counters("MC-100", 99_000)
        transitions = services.machines.transitions("MC-100")
        assert [t.to_status for t in transitions] == [MachineStatus.MAINTENANCE]
        assert transitions[0].reason == TransitionReason.UTILIZATION_THRESHOLD
        assert services.machines.get_machine("MC-100").status == MachineStatus.MAINTENANCE

    def test_e2e_97k_plus_2k_then_1k(self, services, register):
        register("MC-100", stroke_count=97_000, utilization_limit=100_000)
        assert services.machines.update_counters("MC-100", 99_000).status == MachineStatus.MAINTENANCE
        assert services.machines.update_counters("MC-100", 100_000).status == MachineStatus.MAINTENANCE

    def test_below_watermark_stays_running(self, services, register):
        register("MC-100", stroke_count=90_000)
        assert services.machines.update_counters("MC-100", 97_999).status == MachineStatus.RUNNING

    def test_negative_count_rejected(self, services, register):
        register("MC-100")
        with pytest.raises(ValidationError):
            services.machines.update_counters("MC-100", -1)

    def test_decreasing_count_rejected_while_running(self, services, register):
        register("MC-100", stroke_count=5_000)
        with pytest.raises(ValidationError):
            services.machines.update_counters("MC-100", 4_999)
        assert services.machines.get_machine("MC-100").stroke_count == 5_000

    def test_decreasing_count_allowed_when_not_running(self, services, register):
        register("MC-100", status=MachineStatus.IDLE, stroke_count=5_000)
        assert services.machines.update_counters("MC-100", 0).stroke_count == 0

    def test_non_running_machine_never_auto_transitions(self, services, register):
        register("MC-100", status=MachineStatus.IDLE, stroke_count=99_000)
        assert services.machines.update_counters("MC-100", 99_500).status == MachineStatus.IDLE
        assert services.machines.transitions("MC-100") == []


class TestWarnings:
    def test_warning_once_per_interval(self, services, register):
        register("MC-100", stroke_count=94_000)
        services.machines.update_counters("MC-100", 95_000)
        services.machines.update_counters("MC-100", 96_000)
        services.machines.update_counters("MC-100", 97_000)
        assert _kinds(services, "MC-100") == [NotificationKind.MAINTENANCE_WARNING]

    def test_warning_resets_after_leaving_running(self, services, register):
        register("MC-100", stroke_count=95_500)
        services.machines.update_counters("MC-100", 95_600)
        services.machines.set_status("MC-100", MachineStatus.IDLE)
        services.machines.set_status("MC-100", MachineStatus.RUNNING)
        services.machines.update_counters("MC-100", 95_700)
        assert _kinds(services, "MC-100") == [
            NotificationKind.MAINTENANCE_WARNING,
            NotificationKind.MAINTENANCE_WARNING,
        ]

    def test_crossing_maintenance_emits_due(self, services, register):
        register("MC-100", stroke_count=97_900)
        services.machines.update_counters("MC-100", 98_000)
        assert _kinds(services, "MC-100") == [
            NotificationKind.MAINTENANCE_WARNING,
            NotificationKind.MAINTENANCE_DUE,
        ]


class TestMisconfiguredLimit:
    @pytest.mark.parametrize("limit", [0, -100])
    def test_registration_reports_once(self, services, register, limit):
        register("MC-100", utilization_limit=limit)
        services.machines.update_counters("MC-100", 10)
        services.machines.update_counters("MC-100", 20)

        machine = services.machines.get_machine("MC-100")
        assert machine.status == MachineStatus.RUNNING
        assert machine.utilization is None
        assert _kinds(services, "MC-100") == [NotificationKind.CONFIGURATION_ERROR]
        assert services.machines.misconfigured_machines() == ["MC-100"]

    def test_utilization_of_raises(self, services, register):
        register("MC-100", utilization_limit=0)
        with pytest.raises(ConfigurationError):
            services.machines.utilization_of("MC-100")

    def test_other_machines_unaffected(self, services, register):
        register("MC-100", utilization_limit=0)
        register("MC-101", stroke_count=97_999)
        assert services.machines.update_counters("MC-101", 98_000).status == MachineStatus.MAINTENANCE


class TestOperatorActions:
    @pytest.mark.parametrize(
        "start,target",
        [
            (MachineStatus.RUNNING, MachineStatus.IDLE),
            (MachineStatus.RUNNING, MachineStatus.MAINTENANCE),
            (MachineStatus.IDLE, MachineStatus.RUNNING),
            (MachineStatus.MAINTENANCE, MachineStatus.RUNNING),
            (MachineStatus.MAINTENANCE, MachineStatus.IDLE),
        ],
    )
    def test_allowed(self, services, register, start, target):
        register("MC-100", status=start)
        machine = services.machines.set_status("MC-100", target, note="shift change")
        assert machine.status == target
        last = services.machines.transitions("MC-100")[-1]
        assert last.reason == TransitionReason.OPERATOR
        assert last.note == "shift change"

    @pytest.mark.parametrize("target", [MachineStatus.RUNNING, MachineStatus.IDLE, MachineStatus.MAINTENANCE])
    def test_leave_breakdown_without_open_ticket(self, services, register, target):
        register("MC-100", status=MachineStatus.BREAKDOWN)
        machine = services.machines.set_status("MC-100", target)
        assert machine.status == target
        assert services.machines.transitions("MC-100")[-1].reason == TransitionReason.OPERATOR

    def test_cannot_leave_breakdown_while_ticket_open(self, services, register):
        register("MC-100")
        services.breakdowns.report_breakdown("MC-100", "Hydraulic leak")
        with pytest.raises(InvalidStateError):
            services.machines.set_status("MC-100", MachineStatus.RUNNING)
        assert services.machines.get_machine("MC-100").status == MachineStatus.BREAKDOWN

    def test_seeded_breakdown_machine_can_be_released(self, services):
        # MC-003's only demo ticket is already Closed
        seed_demo_fleet(services.store)
        open_tickets = BreakdownFilter(machine_id="MC-003", status=BreakdownStatus.OPEN)
        assert services.breakdowns.list_breakdowns(open_tickets) == []

        services.machines.set_status("MC-003", MachineStatus.RUNNING, note="repair verified")
        assert services.machines.get_machine("MC-003").status == MachineStatus.RUNNING
        assert services.breakdowns.kpis("MC-003").total_events == 1

    def test_cannot_enter_breakdown_by_override(self, services, register):
        register("MC-100")
        with pytest.raises(InvalidStateError):
            services.machines.set_status("MC-100", MachineStatus.BREAKDOWN)

    def test_idle_to_maintenance_rejected(self, services, register):
        register("MC-100", status=MachineStatus.IDLE)
        with pytest.raises(InvalidStateError):
            services.machines.set_status("MC-100", MachineStatus.MAINTENANCE)

    def test_same_status_is_noop(self, services, register):
        register("MC-100")
        services.machines.set_status("MC-100", MachineStatus.RUNNING)
        assert services.machines.transitions("MC-100") == []


class TestMaintenanceCompletion:
    def test_resets_counter_and_services(self, services, register, clock):
        register("MC-100", stroke_count=97_500)
        services.machines.update_counters("MC-100", 98_500)
        clock.advance(hours=3)

        machine = services.machines.complete_maintenance("MC-100")
        assert machine.status == MachineStatus.RUNNING
        assert machine.stroke_count == 0
        assert machine.last_serviced == clock.now
        assert services.machines.transitions("MC-100")[-1].reason == TransitionReason.MAINTENANCE_COMPLETED

    def test_keep_counter_and_go_idle(self, services, register):
        register("MC-100", status=MachineStatus.MAINTENANCE, stroke_count=40_000)
        machine = services.machines.complete_maintenance("MC-100", next_status=MachineStatus.IDLE, reset_counter=False)
        assert machine.status == MachineStatus.IDLE
        assert machine.stroke_count == 40_000

    def test_only_from_maintenance(self, services, register):
        register("MC-100")
        with pytest.raises(InvalidStateError):
            services.machines.complete_maintenance("MC-100")

    def test_warning_rearms_after_reset(self, services, register):
        register("MC-100", stroke_count=97_000)
        services.machines.update_counters("MC-100", 98_000)
        services.machines.complete_maintenance("MC-100")
        services.machines.update_counters("MC-100", 96_000)
        warnings = services.notifications.list_notifications(
            kind=NotificationKind.MAINTENANCE_WARNING, machine_id="MC-100"
        )
        assert len(warnings) == 2


class TestMachineSchema:
    def test_id_pattern(self):
        with pytest.raises(PydanticValidationError):
            MachineCreate(id="bad id!", name="x", model="m", utilization_limit=10)

    def test_naive_last_serviced_read_as_utc(self):
        m = MachineCreate(id="MC-1", name="x", model="m", utilization_limit=10, last_serviced=datetime(2023, 10, 15))
        assert m.last_serviced.tzinfo is not None
