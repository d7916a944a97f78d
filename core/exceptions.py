"""Plant Maintenance — Core Exceptions.

Domain-specific exceptions for the service layer.
These exceptions are caught by API routes and converted to HTTP responses.

Every error is scoped to the single operation or entity that raised it;
none of them is fatal to the process.

Usage:
    from core.exceptions import NotFoundError, InvalidStateError

    class BreakdownService:
        def close_ticket(self, breakdown_id: str):
            event = self.store.get_breakdown(breakdown_id)
            if event is None:
                raise NotFoundError("BreakdownEvent", breakdown_id)
            if event.status == BreakdownStatus.CLOSED:
                raise InvalidStateError("BreakdownEvent", breakdown_id, "Closed", "close")
"""

from __future__ import annotations

from typing import Any


class MaintenanceError(Exception):
    """Base exception for all maintenance domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(MaintenanceError):
    """Raised when input is missing or malformed.

    Maps to HTTP 400 Bad Request. Rejected before any state mutation,
    so the caller may simply resubmit corrected input.

    Attributes:
        field: Name of the offending input field.
    """

    status_code = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error on '{field}': {message}", {"field": field})


class NotFoundError(MaintenanceError):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404 Not Found.

    Attributes:
        resource_type: Type of resource (e.g., "Machine", "PMTask").
        resource_id: Identifier of the missing resource.
    """

    status_code = 404

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class InvalidStateError(MaintenanceError):
    """Raised when an operation is not allowed from the current state.

    Maps to HTTP 409 Conflict. Never coerced into a silent no-op.

    Examples:
        - Closing an already-closed breakdown ticket
        - Completing an already-completed PM task
        - Completing maintenance on a machine that is not in Maintenance
    """

    status_code = 409

    def __init__(self, resource_type: str, resource_id: Any, current_state: str, action: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} {resource_type} '{resource_id}' in state '{current_state}'",
            {
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "current_state": current_state,
                "action": action,
            },
        )


class ConfigurationError(MaintenanceError):
    """Raised when a machine is configured in a way that disables evaluation.

    Maps to HTTP 422 Unprocessable Entity. Degrades threshold evaluation
    for the affected machine only.
    """

    status_code = 422

    def __init__(self, setting: str, value: Any, message: str, machine_id: str | None = None):
        self.setting = setting
        self.value = value
        self.machine_id = machine_id
        details: dict[str, Any] = {"setting": setting, "value": value}
        if machine_id:
            details["machine_id"] = machine_id
        super().__init__(f"Configuration error on '{setting}': {message}", details)


class ExternalServiceError(MaintenanceError):
    """Raised when an external service call fails.

    Maps to HTTP 502 Bad Gateway.

    Attributes:
        service_name: Name of the external service.
        original_error: The underlying error message.
    """

    status_code = 502

    def __init__(self, service_name: str, original_error: str):
        self.service_name = service_name
        self.original_error = original_error or "unknown"
        super().__init__(
            f"External service '{service_name}' failed: {self.original_error}",
            {"service": service_name, "error": self.original_error},
        )
