"""
Live monitor simulator.

Stands in for real counter telemetry: every tick, each Running machine
gets a random stroke increment and a random cycle time, pushed through
MachineService.update_counters so the lifecycle rules apply exactly as
for a real reading. Machines in any other status are left untouched.

tick() can be driven synchronously (tests, scripts); start()/stop() run
it on a background thread.
"""

from __future__ import annotations

import random
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from config import MonitorSettings
from core.exceptions import MaintenanceError
from core.monitoring import capture_exception
from logger import get_logger
from schemas.machine import MachineStatus
from services.machine_service import MachineService
from services.time_metrics import utcnow

logger = get_logger(__name__)


class TickResult(BaseModel):
    """Outcome of one simulator tick."""
    at: datetime
    updated: List[str] = []
    transitioned: Dict[str, MachineStatus] = {}
    errors: Dict[str, str] = {}


class MonitorState(BaseModel):
    running: bool
    interval_seconds: float
    ticks: int
    last_tick_at: Optional[datetime] = None


class LiveMonitorSimulator:
    """Periodic driver of simulated counter readings."""

    def __init__(
        self,
        machines: MachineService,
        settings: Optional[MonitorSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._machines = machines
        self.settings = settings or MonitorSettings()
        self._rng = rng or random.Random(self.settings.seed)
        self._clock = clock
        self._interval = self.settings.tick_interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._started = False
        self._lock = threading.Lock()
        # Held for the whole tick so stop() can wait for an in-flight tick
        self._tick_lock = threading.Lock()
        self._ticks = 0
        self._last_tick_at: Optional[datetime] = None
        self.logger = logger.bind(service="LiveMonitorSimulator")

    @property
    def is_running(self) -> bool:
        return self._started

    def state(self) -> MonitorState:
        return MonitorState(
            running=self._started,
            interval_seconds=self._interval,
            ticks=self._ticks,
            last_tick_at=self._last_tick_at,
        )

    def tick(self) -> TickResult:
        """Advance every Running machine by one simulated reading."""
        with self._tick_lock:
            result = TickResult(at=self._clock())
            for machine_id in self._machines.store.machine_ids():
                self._advance(machine_id, result)
            self._ticks += 1
            self._last_tick_at = result.at

        if result.transitioned or result.errors:
            self.logger.info(
                "Simulator tick",
                updated=len(result.updated),
                transitioned={k: v.value for k, v in result.transitioned.items()},
                errors=len(result.errors),
            )
        return result

    def _advance(self, machine_id: str, result: TickResult) -> None:
        try:
            with self._machines.machine_lock(machine_id):
                machine = self._machines.get_machine(machine_id)
                if machine.status != MachineStatus.RUNNING:
                    return
                increment = self._rng.randint(self.settings.increment_min, self.settings.increment_max)
                cycle_time = self._rng.uniform(self.settings.cycle_time_min, self.settings.cycle_time_max)
                updated = self._machines.update_counters(
                    machine_id,
                    machine.stroke_count + increment,
                    round(cycle_time, 2),
                )
            result.updated.append(machine_id)
            if updated.status != MachineStatus.RUNNING:
                result.transitioned[machine_id] = updated.status
        except MaintenanceError as e:
            result.errors[machine_id] = e.message
            self.logger.warning("Simulator update failed", machine_id=machine_id, error=e.message)
        except Exception as e:
            result.errors[machine_id] = str(e) or type(e).__name__
            capture_exception(e, {"machine_id": machine_id, "component": "monitor_simulator"})

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                capture_exception(e, {"component": "monitor_simulator"})
            if self._stop_event.wait(timeout=self._interval):
                break

    def start(self, interval_seconds: float | None = None) -> None:
        """Start the background tick loop. Idempotent."""
        if interval_seconds is not None:
            self._interval = interval_seconds
        with self._lock:
            if self._started:
                return
            self._started = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="monitor-simulator", daemon=True)
        self._thread.start()
        self.logger.info("Simulator started", interval_seconds=self._interval)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to exit and wait for an in-flight tick to finish.

        If the loop thread outlives the timeout the simulator stays marked
        as running, so start() cannot spawn a second loop beside it; call
        stop() again to finish the shutdown.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=self._interval * 2 + 5 if timeout is None else timeout)
            if thread.is_alive():
                self.logger.warning("Simulator thread still running after stop", ticks=self._ticks)
                return
            self._thread = None
        with self._lock:
            was_started = self._started
            self._started = False
        if was_started:
            self.logger.info("Simulator stopped", ticks=self._ticks)
