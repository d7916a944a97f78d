"""Plant Maintenance — Machine Schemas.

Pydantic models for machines, their status transitions and the
dashboard fleet summary.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field


class MachineStatus(str, Enum):
    """Lifecycle status of a machine."""
    RUNNING = "Running"
    BREAKDOWN = "Breakdown"
    MAINTENANCE = "Maintenance"
    IDLE = "Idle"


class TransitionReason(str, Enum):
    """Why a machine changed status."""
    UTILIZATION_THRESHOLD = "utilization_threshold"
    BREAKDOWN_REPORTED = "breakdown_reported"
    BREAKDOWN_CLOSED = "breakdown_closed"
    MAINTENANCE_COMPLETED = "maintenance_completed"
    OPERATOR = "operator"


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is not None and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class MachineBase(BaseModel):
    """Shared properties for Machine models."""
    name: str = Field(..., min_length=1, max_length=255)
    model: str = Field(..., min_length=1, max_length=50)
    status: MachineStatus = MachineStatus.IDLE
    stroke_count: int = Field(0, ge=0)
    # Not constrained here: a non-positive limit is a configuration defect
    # reported by the lifecycle, not a rejected registration.
    utilization_limit: int
    health_score: int = Field(100, ge=0, le=100)
    oil_level: int = Field(100, ge=0, le=100)
    last_serviced: Optional[UtcDatetime] = None


class MachineCreate(MachineBase):
    """Payload for registering a machine in the machine master."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        max_length=50,
        pattern=r"^[A-Za-z0-9_-]+$",
        description="Machine identifier (alphanumeric, underscores, hyphens only)",
    )


class Machine(MachineCreate):
    """Full Machine resource."""
    cycle_time: Optional[float] = Field(None, gt=0, description="Last cycle time in seconds")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def utilization(self) -> Optional[float]:
        """stroke_count / utilization_limit, None while the limit is not positive."""
        if self.utilization_limit <= 0:
            return None
        return self.stroke_count / self.utilization_limit


class CounterUpdate(BaseModel):
    """Payload for pushing a new counter reading."""
    stroke_count: int = Field(..., ge=0)
    cycle_time: Optional[float] = Field(None, gt=0)


class StatusChange(BaseModel):
    """Operator override of a machine's status."""
    status: MachineStatus
    note: Optional[str] = Field(None, max_length=500)


class MaintenanceCompletion(BaseModel):
    """Operator confirmation that maintenance on a machine is finished."""
    next_status: Literal[MachineStatus.RUNNING, MachineStatus.IDLE] = MachineStatus.RUNNING
    reset_counter: bool = True


class StatusTransition(BaseModel):
    """One recorded machine status change."""
    model_config = ConfigDict(frozen=True)

    machine_id: str
    from_status: MachineStatus
    to_status: MachineStatus
    reason: TransitionReason
    at: datetime
    note: Optional[str] = None


class FleetSummary(BaseModel):
    """Counts shown on the dashboard cards."""
    running: int = 0
    breakdown: int = 0
    maintenance: int = 0
    idle: int = 0
    near_threshold: int = 0
    misconfigured: int = 0
    pending_pm: int = 0
    overdue_pm: int = 0
    active_breakdowns: int = 0
    generated_at: datetime
