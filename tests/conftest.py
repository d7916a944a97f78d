"""Plant Maintenance — Pytest Configuration & Fixtures.

Provides a deterministic testing environment with:
1. A controllable clock shared by every service.
2. A fresh in-memory store and service container per test.
3. A scripted LLM provider (no network).
4. AsyncClient for testing FastAPI endpoints.

Usage:
    def test_something(services, register):
        register("MC-100", stroke_count=97_000)
        services.machines.update_counters("MC-100", 99_000)
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from config import Settings
from db.store import MaintenanceStore
from dependencies import ServiceContainer, build_services
from schemas.machine import Machine, MachineCreate, MachineStatus
from services.recommendation_service import LLMProvider

T0 = datetime(2024, 7, 20, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedProvider(LLMProvider):
    """LLM provider returning a canned answer, or raising a canned error."""

    name = "scripted"

    def __init__(self, answer: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.answer = answer if answer is not None else {
            "predictedFailures": "Hydraulic pump wear within 30 days.",
            "recommendedActions": "Replace pump seals during the next planned stop.",
            "potentialCostSavings": "Roughly 4 hours of downtime avoided.",
        }
        self.error = error
        self.calls: List[Dict[str, str]] = []

    def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        self.calls.append({"system": system_prompt, "user": user_prompt})
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(seed_demo_data=False)


@pytest.fixture
def store() -> MaintenanceStore:
    return MaintenanceStore()


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def services(settings, store, clock, provider) -> ServiceContainer:
    container = build_services(settings, store=store, rng=random.Random(7), clock=clock, provider=provider)
    yield container
    container.close()


@pytest.fixture
def register(services) -> Callable[..., Machine]:
    """Factory registering a machine with sensible defaults."""

    def _register(
        machine_id: str = "MC-100",
        status: MachineStatus = MachineStatus.RUNNING,
        stroke_count: int = 0,
        utilization_limit: int = 100_000,
        **overrides: Any,
    ) -> Machine:
        data = {
            "id": machine_id,
            "name": overrides.pop("name", f"Moulding Machine {machine_id}"),
            "model": overrides.pop("model", "M-100A"),
            "status": status,
            "stroke_count": stroke_count,
            "utilization_limit": utilization_limit,
            **overrides,
        }
        return services.machines.register_machine(MachineCreate(**data))

    return _register


@pytest.fixture
async def client(services):
    """Async test client bound to the per-test service container."""
    from api_server import create_app

    app = create_app(services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
