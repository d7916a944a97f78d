"""Plant Maintenance — Service Composition and FastAPI Dependencies.

The store and every service are built once, at application startup,
and hung off ``app.state``. Routes receive them through ``get_services``.

Usage:
    from dependencies import Services, get_services

    @app.get("/api/machines")
    async def list_machines(services: Services):
        return APIResponse.success(services.machines.list_machines())
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Callable, Optional

from fastapi import Depends, Request

from config import Settings
from db.store import MaintenanceStore
from logger import get_logger
from services.breakdown_service import BreakdownService
from services.dashboard_service import DashboardService
from services.machine_service import MachineService
from services.monitor_simulator import LiveMonitorSimulator
from services.notification_service import NotificationService
from services.pm_service import PMService
from services.recommendation_service import (
    LLMProvider,
    RecommendationService,
    get_llm_provider,
)
from services.time_metrics import utcnow
from services.utilization import UtilizationModel

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Everything a request handler may need."""
    settings: Settings
    store: MaintenanceStore
    notifications: NotificationService
    machines: MachineService
    breakdowns: BreakdownService
    pm: PMService
    monitor: LiveMonitorSimulator
    dashboard: DashboardService
    recommendations: RecommendationService

    def close(self) -> None:
        """Stop background work and release HTTP clients."""
        self.monitor.stop()
        self.notifications.close()
        self.recommendations.provider.close()


def build_services(
    settings: Settings,
    store: Optional[MaintenanceStore] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = utcnow,
    provider: Optional[LLMProvider] = None,
) -> ServiceContainer:
    """Wire the store and services together.

    Args:
        settings: Application settings.
        store: Existing store to reuse; a fresh one is created if omitted.
        rng: Random source for the simulator; seeded from MONITOR_SEED if omitted.
        clock: Time source shared by all services.
        provider: LLM provider; chosen from LLM_PROVIDER if omitted.
    """
    if store is None:
        store = MaintenanceStore()
    notifications = NotificationService(settings.notify, clock=clock)
    machines = MachineService(store, notifications, UtilizationModel(settings.thresholds), clock=clock)
    breakdowns = BreakdownService(store, machines, clock=clock)
    pm = PMService(store, clock=clock)
    monitor = LiveMonitorSimulator(
        machines,
        settings.monitor,
        rng=rng or random.Random(settings.monitor.seed),
        clock=clock,
    )
    dashboard = DashboardService(machines, breakdowns, pm, clock=clock)
    recommendations = RecommendationService(
        provider or get_llm_provider(settings.llm),
        machines,
        breakdowns,
        pm,
    )
    logger.debug("Services built", llm_provider=recommendations.provider.name)
    return ServiceContainer(
        settings=settings,
        store=store,
        notifications=notifications,
        machines=machines,
        breakdowns=breakdowns,
        pm=pm,
        monitor=monitor,
        dashboard=dashboard,
        recommendations=recommendations,
    )


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container built at startup."""
    return request.app.state.services


Services = Annotated[ServiceContainer, Depends(get_services)]
