"""
Plant Maintenance — Notifications for maintenance warnings and configuration defects.

Logs at WARNING level, keeps a bounded in-memory history for the
dashboard, and optionally POSTs to a webhook (NOTIFY_WEBHOOK_URL).
Webhook delivery runs on a single worker thread so a slow receiver
never blocks a lifecycle operation.
"""

from __future__ import annotations

import queue
import threading
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

import httpx

from config import NotificationSettings
from logger import get_logger, log_external_call
from schemas.notification import Notification, NotificationKind
from services.time_metrics import utcnow

logger = get_logger(__name__)

_STOP = object()


class NotificationService:
    """Publishes lifecycle notifications."""

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        client: Optional[httpx.Client] = None,
    ):
        self.settings = settings or NotificationSettings()
        self._clock = clock
        self._history: Deque[Notification] = deque(maxlen=self.settings.history_size)
        self._lock = threading.Lock()
        self._client = client
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self.logger = logger.bind(service="NotificationService")

    def notify(
        self,
        kind: NotificationKind,
        message: str,
        machine_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        """Record a notification, log it and queue it for the webhook."""
        notification = Notification(
            kind=kind,
            machine_id=machine_id,
            message=message,
            payload=payload or {},
            created_at=self._clock(),
        )
        with self._lock:
            self._history.append(notification)

        self.logger.warning(
            "Maintenance notification",
            kind=kind.value,
            machine_id=machine_id,
            message=message,
            payload_keys=list(notification.payload.keys()),
        )

        if self.settings.webhook_url:
            self._ensure_worker()
            self._queue.put(notification)
        return notification

    def list_notifications(
        self,
        kind: Optional[NotificationKind] = None,
        machine_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Notification]:
        """Newest first."""
        with self._lock:
            items = list(reversed(self._history))
        if kind is not None:
            items = [n for n in items if n.kind == kind]
        if machine_id is not None:
            items = [n for n in items if n.machine_id == machine_id]
        if limit is not None:
            items = items[:limit]
        return items

    # -------------------------------------------------------------------------
    # Webhook delivery
    # -------------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            if self._client is None:
                self._client = httpx.Client(timeout=self.settings.timeout_seconds)
            self._worker = threading.Thread(target=self._drain, name="notification-webhook", daemon=True)
            self._worker.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._post(item)
            finally:
                self._queue.task_done()

    def _post(self, notification: Notification) -> None:
        url = str(self.settings.webhook_url)
        body = notification.model_dump(mode="json")
        start = time.perf_counter()
        try:
            response = self._client.post(url, json=body)
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            if response.status_code >= 400:
                log_external_call("webhook", "POST", url, response.status_code, duration_ms,
                                  error=f"HTTP {response.status_code}")
            else:
                log_external_call("webhook", "POST", url, response.status_code, duration_ms)
        except httpx.HTTPError as e:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            log_external_call("webhook", "POST", url, duration_ms=duration_ms, error=str(e) or type(e).__name__)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until queued webhook posts are delivered. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks:
            if time.monotonic() >= deadline:
                return False
            time.sleep(0.01)
        return True

    def close(self) -> None:
        """Stop the webhook worker and release the HTTP client."""
        worker = self._worker
        if worker is not None and worker.is_alive():
            self._queue.put(_STOP)
            worker.join(timeout=self.settings.timeout_seconds + 1)
        self._worker = None
        if self._client is not None:
            self._client.close()
            self._client = None
