"""Plant Maintenance — Service Layer.

This package contains business logic services that encapsulate
domain operations and keep API routes thin.

Services:
    - MachineService: Machine registry and lifecycle state machine
    - BreakdownService: Breakdown log, recurrence, MTTR/MTBF
    - PMService: Preventive maintenance scheduling and effective status
    - LiveMonitorSimulator: Periodic simulated counter readings
    - NotificationService: Maintenance warnings and webhook delivery
    - DashboardService: Fleet summary aggregates
    - RecommendationService: AI maintenance recommendations

Usage:
    from dependencies import build_services

    services = build_services(get_settings())
    services.machines.update_counters("MC-001", 85_010, 12.4)
"""

from services.breakdown_service import BreakdownService
from services.dashboard_service import DashboardService
from services.machine_service import MachineService
from services.monitor_simulator import LiveMonitorSimulator
from services.notification_service import NotificationService
from services.pm_service import PMService
from services.recommendation_service import RecommendationService
from services.utilization import UtilizationModel

__all__ = [
    "BreakdownService",
    "DashboardService",
    "LiveMonitorSimulator",
    "MachineService",
    "NotificationService",
    "PMService",
    "RecommendationService",
    "UtilizationModel",
]
