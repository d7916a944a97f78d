"""
Pydantic schemas for the maintenance engine
===========================================
Entities, request payloads and response wrappers shared by the
service layer and the HTTP API.
"""

from .breakdown import (
    BreakdownEvent,
    BreakdownFilter,
    BreakdownKPIs,
    BreakdownReport,
    BreakdownStatus,
)
from .machine import (
    CounterUpdate,
    FleetSummary,
    Machine,
    MachineCreate,
    MachineStatus,
    MaintenanceCompletion,
    StatusChange,
    StatusTransition,
    TransitionReason,
)
from .notification import Notification, NotificationKind
from .pm import (
    DateFilter,
    NoFilter,
    PMFrequency,
    PMStatus,
    PMTask,
    PMTaskCreate,
    PMTaskView,
    StatusFilter,
    TaskFilter,
    TaskStatusChange,
)
from .recommendation import RecommendationRequest, RecommendationResult
from .response import APIResponse, ErrorBody, ResponseMeta

__all__ = [
    # Machines
    'Machine',
    'MachineCreate',
    'MachineStatus',
    'CounterUpdate',
    'StatusChange',
    'MaintenanceCompletion',
    'StatusTransition',
    'TransitionReason',
    'FleetSummary',

    # Breakdowns
    'BreakdownEvent',
    'BreakdownFilter',
    'BreakdownKPIs',
    'BreakdownReport',
    'BreakdownStatus',

    # Preventive maintenance
    'PMFrequency',
    'PMStatus',
    'PMTask',
    'PMTaskCreate',
    'PMTaskView',
    'TaskStatusChange',
    'TaskFilter',
    'NoFilter',
    'StatusFilter',
    'DateFilter',

    # Notifications
    'Notification',
    'NotificationKind',

    # AI recommendations
    'RecommendationRequest',
    'RecommendationResult',

    # Envelope
    'APIResponse',
    'ResponseMeta',
    'ErrorBody',
]
