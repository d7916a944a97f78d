#!/usr/bin/env python3
"""
Plant Maintenance FastAPI Server

Endpoints:
- /health                         : liveness and simulator state
- /api/machines                   : machine registry and lifecycle actions
- /api/breakdowns                 : breakdown log, ticket closure, KPIs
- /api/pm-tasks                   : preventive maintenance scheduling
- /api/dashboard/summary          : fleet summary cards
- /api/notifications              : maintenance warnings
- /api/recommendations            : AI maintenance recommendations
- /api/monitor                    : live monitor simulator control
- /docs                           : Swagger UI (auto-generated)

Run:
    uvicorn api_server:app --reload
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import Body, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from config import get_settings
from core.exceptions import MaintenanceError, ValidationError
from core.monitoring import capture_exception, init_sentry
from db.seed import seed_demo_fleet
from dependencies import ServiceContainer, Services, build_services
from logger import RequestContextMiddleware, configure_logging, get_logger, request_id_var
from schemas.breakdown import BreakdownFilter, BreakdownReport, BreakdownStatus
from schemas.machine import (
    CounterUpdate,
    MachineCreate,
    MachineStatus,
    MaintenanceCompletion,
    StatusChange,
)
from schemas.notification import NotificationKind
from schemas.pm import DateFilter, NoFilter, PMStatus, PMTaskCreate, StatusFilter
from schemas.recommendation import RecommendationRequest
from schemas.response import ERROR_RESPONSES, APIResponse, ORJSONResponse

logger = get_logger("maintenance.api")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup, stop background work on shutdown."""
    owned = getattr(app.state, "services", None) is None
    if owned:
        settings = get_settings()
        configure_logging(
            environment=settings.environment,
            log_level=settings.log.level,
            json_format=None if settings.environment == "development" else settings.log.format == "json",
            app=settings.app_name,
            version=settings.app_version,
        )
        init_sentry(
            settings.sentry_dsn.get_secret_value() if settings.sentry_dsn else None,
            environment=settings.environment,
            release=settings.app_version,
        )
        services = build_services(settings)
        if settings.seed_demo_data:
            seed_demo_fleet(services.store)
        if settings.monitor.enabled:
            services.monitor.start()
        app.state.services = services
        logger.info(
            "Server ready",
            app=settings.app_name,
            version=settings.app_version,
            environment=settings.environment,
            machines=len(services.machines.list_machines()),
        )

    yield  # Server runs here

    if owned:
        app.state.services.close()
        logger.info("Server stopped")


# =============================================================================
# GLOBAL EXCEPTION HANDLERS
# =============================================================================
async def maintenance_error_handler(request: Request, exc: MaintenanceError):
    """Domain errors: status code from the exception class, body from to_dict()."""
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors: capture with a reference id, return a clean 500."""
    error_id = str(uuid.uuid4())
    capture_exception(exc, {"error_id": error_id, "path": request.url.path, "method": request.method})
    body = APIResponse.failure(
        f"An internal error occurred. Reference ID: {error_id}",
        request_id=request.headers.get("X-Request-ID"),
    )
    return ORJSONResponse(status_code=500, content=body)


def _ok(data, **extra_meta):
    return APIResponse.success(data, request_id=request_id_var.get(), **extra_meta)


# =============================================================================
# APP FACTORY
# =============================================================================
def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        services: Pre-built container (tests). When omitted, the lifespan
            builds one from settings, seeds demo data and starts the simulator.
    """
    app = FastAPI(
        title="Plant Maintenance API",
        description="Machine lifecycle, breakdown log and preventive maintenance for moulding shop floors.",
        version="1.0.0",
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        responses=ERROR_RESPONSES,
    )
    if services is not None:
        app.state.services = services

    app.add_exception_handler(MaintenanceError, maintenance_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_system_routes(app)
    _register_machine_routes(app)
    _register_breakdown_routes(app)
    _register_pm_routes(app)
    _register_dashboard_routes(app)
    return app


# =============================================================================
# SYSTEM
# =============================================================================
def _register_system_routes(app: FastAPI) -> None:

    @app.get("/health", tags=["System"])
    async def health_check(services: Services):
        return {
            "status": "ok",
            "version": services.settings.app_version,
            "monitor_running": services.monitor.is_running,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/monitor", tags=["Monitor"])
    async def monitor_state(services: Services):
        return _ok(services.monitor.state())

    @app.post("/api/monitor/start", tags=["Monitor"])
    async def start_monitor(services: Services):
        services.monitor.start()
        return _ok(services.monitor.state())

    @app.post("/api/monitor/stop", tags=["Monitor"])
    async def stop_monitor(services: Services):
        await run_in_threadpool(services.monitor.stop)
        return _ok(services.monitor.state())

    @app.post("/api/monitor/tick", tags=["Monitor"])
    async def tick_monitor(services: Services):
        return _ok(await run_in_threadpool(services.monitor.tick))


# =============================================================================
# MACHINES
# =============================================================================
def _register_machine_routes(app: FastAPI) -> None:
    # Calls that take a machine lock run in the threadpool: the simulator
    # thread may be holding it.

    @app.get("/api/machines", tags=["Machines"])
    async def list_machines(
        services: Services,
        status_filter: Optional[MachineStatus] = Query(None, alias="status", description="Filter by status"),
    ):
        return _ok(services.machines.list_machines(status_filter))

    @app.post("/api/machines", status_code=status.HTTP_201_CREATED, tags=["Machines"])
    async def register_machine(payload: MachineCreate, services: Services):
        return _ok(await run_in_threadpool(services.machines.register_machine, payload))

    @app.get("/api/machines/{machine_id}", tags=["Machines"])
    async def get_machine(machine_id: str, services: Services):
        return _ok(services.machines.get_machine(machine_id))

    @app.put("/api/machines/{machine_id}/counters", tags=["Machines"])
    async def update_counters(machine_id: str, payload: CounterUpdate, services: Services):
        machine = await run_in_threadpool(
            services.machines.update_counters, machine_id, payload.stroke_count, payload.cycle_time
        )
        return _ok(machine)

    @app.post("/api/machines/{machine_id}/status", tags=["Machines"])
    async def set_status(machine_id: str, payload: StatusChange, services: Services):
        return _ok(await run_in_threadpool(services.machines.set_status, machine_id, payload.status, payload.note))

    @app.post("/api/machines/{machine_id}/maintenance/complete", tags=["Machines"])
    async def complete_maintenance(
        machine_id: str,
        services: Services,
        payload: Optional[MaintenanceCompletion] = Body(None),
    ):
        payload = payload or MaintenanceCompletion()
        machine = await run_in_threadpool(
            services.machines.complete_maintenance,
            machine_id,
            next_status=payload.next_status,
            reset_counter=payload.reset_counter,
        )
        return _ok(machine)

    @app.get("/api/machines/{machine_id}/transitions", tags=["Machines"])
    async def machine_transitions(machine_id: str, services: Services):
        return _ok(services.machines.transitions(machine_id))


# =============================================================================
# BREAKDOWNS
# =============================================================================
def _register_breakdown_routes(app: FastAPI) -> None:

    @app.get("/api/breakdowns", tags=["Breakdowns"])
    async def list_breakdowns(
        services: Services,
        machine_id: Optional[str] = Query(None, description="Filter by machine ID"),
        status_filter: Optional[BreakdownStatus] = Query(None, alias="status", description="Open or Closed"),
    ):
        criteria = BreakdownFilter(machine_id=machine_id, status=status_filter)
        return _ok(services.breakdowns.list_breakdowns(criteria))

    @app.post("/api/breakdowns", status_code=status.HTTP_201_CREATED, tags=["Breakdowns"])
    async def report_breakdown(payload: BreakdownReport, services: Services):
        event = await run_in_threadpool(
            services.breakdowns.report_breakdown,
            payload.machine_id,
            payload.root_cause,
            corrective_action=payload.corrective_action,
            spares_used=payload.spares_used,
            breakdown_type=payload.breakdown_type,
        )
        return _ok(event)

    @app.get("/api/breakdowns/kpis", tags=["Breakdowns"])
    async def breakdown_kpis(
        services: Services,
        machine_id: Optional[str] = Query(None, description="Restrict KPIs to one machine"),
    ):
        return _ok(await run_in_threadpool(services.breakdowns.kpis, machine_id))

    @app.get("/api/breakdowns/{breakdown_id}", tags=["Breakdowns"])
    async def get_breakdown(breakdown_id: str, services: Services):
        return _ok(services.breakdowns.get_breakdown(breakdown_id))

    @app.post("/api/breakdowns/{breakdown_id}/close", tags=["Breakdowns"])
    async def close_ticket(breakdown_id: str, services: Services):
        return _ok(await run_in_threadpool(services.breakdowns.close_ticket, breakdown_id))


# =============================================================================
# PREVENTIVE MAINTENANCE
# =============================================================================
def _register_pm_routes(app: FastAPI) -> None:

    @app.get("/api/pm-tasks", tags=["Preventive Maintenance"])
    async def list_pm_tasks(
        services: Services,
        status_filter: Optional[PMStatus] = Query(None, alias="status", description="Effective status"),
        on: Optional[date] = Query(None, alias="date", description="Due date (UTC calendar day)"),
    ):
        if status_filter is not None and on is not None:
            raise ValidationError("filter", "status and date filters cannot be combined")
        if status_filter is not None:
            criteria = StatusFilter(status=status_filter)
        elif on is not None:
            criteria = DateFilter(on=on)
        else:
            criteria = NoFilter()
        return _ok(services.pm.list_tasks(criteria))

    @app.post("/api/pm-tasks", status_code=status.HTTP_201_CREATED, tags=["Preventive Maintenance"])
    async def schedule_pm_task(payload: PMTaskCreate, services: Services):
        task = await run_in_threadpool(
            services.pm.schedule,
            payload.machine_id,
            payload.activity,
            payload.frequency,
            payload.assignee,
            payload.due_date,
            checklist=payload.checklist,
            location=payload.location,
        )
        return _ok(services.pm.view(task))

    @app.get("/api/pm-tasks/status-counts", tags=["Preventive Maintenance"])
    async def pm_status_counts(services: Services):
        return _ok(services.pm.status_counts())

    @app.get("/api/pm-tasks/{ticket_id}", tags=["Preventive Maintenance"])
    async def get_pm_task(ticket_id: str, services: Services):
        return _ok(services.pm.view(services.pm.get_task(ticket_id)))

    @app.get("/api/pm-tasks/{ticket_id}/history", tags=["Preventive Maintenance"])
    async def pm_task_history(ticket_id: str, services: Services):
        return _ok(services.pm.task_history(ticket_id))

    @app.post("/api/pm-tasks/{ticket_id}/start", tags=["Preventive Maintenance"])
    async def start_pm_task(ticket_id: str, services: Services):
        return _ok(services.pm.view(await run_in_threadpool(services.pm.start_task, ticket_id)))

    @app.post("/api/pm-tasks/{ticket_id}/complete", tags=["Preventive Maintenance"])
    async def complete_pm_task(ticket_id: str, services: Services):
        return _ok(services.pm.view(await run_in_threadpool(services.pm.mark_completed, ticket_id)))


# =============================================================================
# DASHBOARD, NOTIFICATIONS, AI
# =============================================================================
def _register_dashboard_routes(app: FastAPI) -> None:

    @app.get("/api/dashboard/summary", tags=["Dashboard"])
    async def fleet_summary(services: Services):
        return _ok(await run_in_threadpool(services.dashboard.fleet_summary))

    @app.get("/api/notifications", tags=["Dashboard"])
    async def list_notifications(
        services: Services,
        kind: Optional[NotificationKind] = Query(None),
        machine_id: Optional[str] = Query(None),
        limit: int = Query(50, ge=1, le=500),
    ):
        return _ok(services.notifications.list_notifications(kind=kind, machine_id=machine_id, limit=limit))

    @app.post("/api/recommendations", tags=["AI"])
    async def generate_recommendations(payload: RecommendationRequest, services: Services):
        # The provider call blocks; keep it off the event loop
        result = await run_in_threadpool(services.recommendations.recommend, payload)
        return _ok(result)


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api_server:app", host="0.0.0.0", port=8000, reload=False)
