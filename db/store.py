"""Plant Maintenance — In-Memory Store.

Owns every entity of the maintenance engine: machines, the breakdown
log, PM tasks and the status histories. One store is constructed at
process start and handed to the services; there is no module-level
instance.

Locking:
    - One re-entrant lock per machine serializes every status-changing
      operation on that machine (simulator tick, counter update,
      breakdown report/close, operator action).
    - Collection locks guard the breakdown log, the task table, the
      histories and the id sequences.

Readers always receive copies. Stored records change only through
``save_*`` calls made by the services.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Dict, List, Optional

from schemas.breakdown import BreakdownEvent
from schemas.machine import Machine, StatusTransition
from schemas.pm import PMTask, TaskStatusChange


class MaintenanceStore:
    """Thread-safe container for machines, breakdowns and PM tasks."""

    def __init__(self) -> None:
        self._machines: Dict[str, Machine] = {}
        self._machine_locks: Dict[str, threading.RLock] = {}
        self._breakdowns: Dict[str, BreakdownEvent] = {}
        self._tasks: Dict[str, PMTask] = {}
        self._transitions: List[StatusTransition] = []
        self._task_history: Dict[str, List[TaskStatusChange]] = defaultdict(list)
        self._sequences: Dict[str, int] = defaultdict(int)

        self._registry_lock = threading.Lock()
        self._breakdown_lock = threading.RLock()
        self._task_lock = threading.RLock()
        self._history_lock = threading.Lock()
        self._sequence_lock = threading.Lock()

    # =========================================================================
    # Machines
    # =========================================================================

    def add_machine(self, machine: Machine) -> bool:
        """Insert a machine. Returns False if the id is already taken."""
        with self._registry_lock:
            if machine.id in self._machines:
                return False
            self._machines[machine.id] = machine.model_copy(deep=True)
            self._machine_locks[machine.id] = threading.RLock()
            return True

    def save_machine(self, machine: Machine) -> None:
        with self._registry_lock:
            if machine.id not in self._machines:
                raise KeyError(machine.id)
            self._machines[machine.id] = machine.model_copy(deep=True)

    def get_machine(self, machine_id: str) -> Optional[Machine]:
        with self._registry_lock:
            machine = self._machines.get(machine_id)
            return machine.model_copy(deep=True) if machine is not None else None

    def has_machine(self, machine_id: str) -> bool:
        with self._registry_lock:
            return machine_id in self._machines

    def list_machines(self) -> List[Machine]:
        with self._registry_lock:
            return [m.model_copy(deep=True) for m in self._machines.values()]

    def machine_ids(self) -> List[str]:
        with self._registry_lock:
            return list(self._machines)

    def machine_lock(self, machine_id: str) -> threading.RLock:
        """Lock serializing status changes of one machine.

        Raises:
            KeyError: If the machine is not registered.
        """
        with self._registry_lock:
            return self._machine_locks[machine_id]

    # =========================================================================
    # Status transitions
    # =========================================================================

    def append_transition(self, transition: StatusTransition) -> None:
        with self._history_lock:
            self._transitions.append(transition)

    def list_transitions(self, machine_id: Optional[str] = None) -> List[StatusTransition]:
        with self._history_lock:
            if machine_id is None:
                return list(self._transitions)
            return [t for t in self._transitions if t.machine_id == machine_id]

    # =========================================================================
    # Breakdown log
    # =========================================================================

    @property
    def breakdown_lock(self) -> threading.RLock:
        return self._breakdown_lock

    def add_breakdown(self, event: BreakdownEvent) -> None:
        with self._breakdown_lock:
            self._breakdowns[event.id] = event

    def save_breakdown(self, event: BreakdownEvent) -> None:
        with self._breakdown_lock:
            if event.id not in self._breakdowns:
                raise KeyError(event.id)
            self._breakdowns[event.id] = event

    def get_breakdown(self, breakdown_id: str) -> Optional[BreakdownEvent]:
        # Events are frozen models; no copy needed.
        with self._breakdown_lock:
            return self._breakdowns.get(breakdown_id)

    def list_breakdowns(self) -> List[BreakdownEvent]:
        with self._breakdown_lock:
            return list(self._breakdowns.values())

    # =========================================================================
    # PM tasks
    # =========================================================================

    @property
    def task_lock(self) -> threading.RLock:
        return self._task_lock

    def add_task(self, task: PMTask) -> None:
        with self._task_lock:
            self._tasks[task.ticket_id] = task.model_copy(deep=True)

    def save_task(self, task: PMTask) -> None:
        with self._task_lock:
            if task.ticket_id not in self._tasks:
                raise KeyError(task.ticket_id)
            self._tasks[task.ticket_id] = task.model_copy(deep=True)

    def get_task(self, ticket_id: str) -> Optional[PMTask]:
        with self._task_lock:
            task = self._tasks.get(ticket_id)
            return task.model_copy(deep=True) if task is not None else None

    def list_tasks(self) -> List[PMTask]:
        with self._task_lock:
            return [t.model_copy(deep=True) for t in self._tasks.values()]

    def append_task_change(self, change: TaskStatusChange) -> None:
        with self._history_lock:
            self._task_history[change.ticket_id].append(change)

    def task_history(self, ticket_id: str) -> List[TaskStatusChange]:
        with self._history_lock:
            return list(self._task_history.get(ticket_id, []))

    # =========================================================================
    # Id sequences
    # =========================================================================

    def next_sequence(self, name: str) -> int:
        """Next value of a process-monotonic counter, starting at 1."""
        with self._sequence_lock:
            self._sequences[name] += 1
            return self._sequences[name]
