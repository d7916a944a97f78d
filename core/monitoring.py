"""Plant Maintenance — Error Monitoring.

Unexpected exceptions from the simulator loop and the API's global
handler go through capture_exception: always logged, and forwarded to
Sentry when a DSN is configured (SENTRY_DSN).

Usage:
    from core.monitoring import capture_exception

    except Exception as e:
        capture_exception(e, {"machine_id": machine_id, "component": "monitor_simulator"})
"""

from __future__ import annotations

from typing import Any

import sentry_sdk

from logger import get_logger

logger = get_logger("maintenance.monitoring")

_sentry_enabled = False


def init_sentry(dsn: str | None, environment: str = "development", release: str | None = None) -> bool:
    """Initialize the Sentry SDK once. Returns True when events will be sent."""
    global _sentry_enabled

    if _sentry_enabled:
        return True
    if not dsn:
        logger.debug("Sentry disabled", reason="no DSN configured")
        return False

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        release=release,
        traces_sample_rate=0.0,
        send_default_pii=False,
    )
    _sentry_enabled = True
    logger.info("Sentry enabled", environment=environment, release=release)
    return True


def capture_exception(exception: BaseException, context: dict[str, Any] | None = None) -> None:
    """Log an unexpected exception and forward it to Sentry when enabled.

    A machine_id or component in the context becomes a Sentry tag, so
    events can be grouped per machine.
    """
    context = context or {}
    logger.error(
        "Unhandled exception",
        error_type=type(exception).__name__,
        error=str(exception),
        exc_info=exception,
        **context,
    )
    if not _sentry_enabled:
        return

    with sentry_sdk.new_scope() as scope:
        for key in ("machine_id", "component"):
            if key in context:
                scope.set_tag(key, str(context[key]))
        scope.set_context("maintenance", context)
        sentry_sdk.capture_exception(exception)
