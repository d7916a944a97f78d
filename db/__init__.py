"""In-memory storage for the maintenance engine."""

from db.store import MaintenanceStore
from db.seed import seed_demo_fleet

__all__ = ["MaintenanceStore", "seed_demo_fleet"]
