"""Plant Maintenance — Breakdown Schemas.

Pydantic models for breakdown reports, the append-only breakdown log
and the reliability KPIs derived from it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BreakdownStatus(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"


class BreakdownReport(BaseModel):
    """Payload submitted by an operator when a machine breaks down.

    Empty root causes are rejected by the ledger, not here, so the HTTP
    and in-process paths fail with the same error.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    machine_id: str = Field(..., max_length=50)
    root_cause: str = Field("", max_length=500)
    corrective_action: str = Field("", max_length=2000)
    spares_used: List[str] = Field(default_factory=list, max_length=100)
    breakdown_type: Optional[str] = Field(None, max_length=100, description="e.g. Mechanical, Electrical")

    @field_validator("spares_used")
    @classmethod
    def drop_blank_spares(cls, v: List[str]) -> List[str]:
        return [s.strip() for s in v if s and s.strip()]


class BreakdownEvent(BaseModel):
    """One entry of the breakdown log. Immutable once closed."""
    model_config = ConfigDict(frozen=True)

    id: str
    machine_id: str
    downtime_start: datetime
    downtime_end: Optional[datetime] = None
    root_cause: str
    corrective_action: str = ""
    spares_used: List[str] = Field(default_factory=list)
    breakdown_type: Optional[str] = None
    status: BreakdownStatus = BreakdownStatus.OPEN
    recurrence: int = Field(1, ge=1)


class BreakdownFilter(BaseModel):
    """Optional narrowing of the breakdown log."""
    machine_id: Optional[str] = None
    status: Optional[BreakdownStatus] = None


class BreakdownKPIs(BaseModel):
    """Reliability figures for the breakdown dashboard cards.

    Durations are None (displayed as "N/A") when they are undefined,
    never zero.
    """
    machine_id: Optional[str] = None
    total_events: int = 0
    active_breakdowns: int = 0
    mttr_hours: Optional[float] = None
    mttr_display: str = "N/A"
    mtbf_hours: Optional[float] = None
    mtbf_display: str = "N/A"
    avg_recurrence: Optional[float] = None
