"""Plant Maintenance — Preventive Maintenance Schemas.

Pydantic models for PM tasks. Stored status and effective status are
separate: the stored value only changes through explicit actions, the
effective value is derived at read time from the due date.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PMFrequency(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    ANNUALLY = "Annually"


class PMStatus(str, Enum):
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "In Progress"
    OVERDUE = "Overdue"
    COMPLETED = "Completed"


class PMTaskCreate(BaseModel):
    """Payload for scheduling a PM task."""
    model_config = ConfigDict(str_strip_whitespace=True)

    machine_id: str = Field(..., min_length=1, max_length=50)
    activity: str = Field(..., min_length=1, max_length=200)
    frequency: PMFrequency
    assignee: str = Field(..., min_length=1, max_length=100)
    due_date: Union[datetime, date]
    checklist: List[str] = Field(default_factory=list, max_length=100)
    location: Optional[str] = Field(None, max_length=100)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_calendar_date(cls, v):
        """Keep 'YYYY-MM-DD' as a calendar date instead of a naive midnight."""
        if isinstance(v, str) and len(v) == 10:
            return date.fromisoformat(v)
        return v

    @field_validator("checklist")
    @classmethod
    def drop_blank_items(cls, v: List[str]) -> List[str]:
        return [item.strip() for item in v if item and item.strip()]


class PMTask(BaseModel):
    """Stored PM task record."""
    ticket_id: str
    machine_id: str
    machine_name: str = ""
    location: Optional[str] = None
    activity: str
    frequency: PMFrequency
    assignee: str
    due_date: datetime
    status: PMStatus = PMStatus.SCHEDULED
    checklist: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


class PMTaskView(PMTask):
    """PM task as presented to readers, with its effective status."""
    effective_status: PMStatus


class TaskStatusChange(BaseModel):
    """Append-only history entry for a ticket."""
    model_config = ConfigDict(frozen=True)

    ticket_id: str
    from_status: Optional[PMStatus] = None
    to_status: PMStatus
    at: datetime


# =============================================================================
# Task filters: at most one criterion is active at a time
# =============================================================================

class NoFilter(BaseModel):
    kind: Literal["none"] = "none"


class StatusFilter(BaseModel):
    kind: Literal["status"] = "status"
    status: PMStatus


class DateFilter(BaseModel):
    kind: Literal["date"] = "date"
    on: date


TaskFilter = Annotated[Union[NoFilter, StatusFilter, DateFilter], Field(discriminator="kind")]
