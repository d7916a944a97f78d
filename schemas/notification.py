"""Plant Maintenance — Notification Schemas."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationKind(str, Enum):
    MAINTENANCE_WARNING = "maintenance_warning"
    MAINTENANCE_DUE = "maintenance_due"
    CONFIGURATION_ERROR = "configuration_error"


class Notification(BaseModel):
    """A non-blocking alert raised by the machine lifecycle."""
    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    machine_id: Optional[str] = None
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
