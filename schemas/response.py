"""Plant Maintenance — API Envelope and ORJSON Rendering.

Successful responses are wrapped as:

    {
        "data": <payload>,
        "meta": {"timestamp": "...Z", "request_id": "...", "version": "1.0.0", "count": 6},
        "error": null
    }

Domain errors use the flat MaintenanceError.to_dict() body instead
(see ErrorBody); unexpected failures use the envelope with data=null.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

import orjson
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

API_VERSION = "1.0.0"


class ResponseMeta(BaseModel):
    """Envelope metadata. Extra keys passed to APIResponse.success are kept."""

    model_config = ConfigDict(extra="allow")

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str | None = None
    version: str = API_VERSION
    count: int | None = Field(None, description="Item count when data is a list")


class APIResponse(BaseModel, Generic[T]):
    data: T | None = None
    meta: ResponseMeta = Field(default_factory=ResponseMeta)
    error: str | None = None

    @classmethod
    def success(cls, data: T, request_id: str | None = None, **extra_meta: Any) -> "APIResponse[T]":
        meta = ResponseMeta(request_id=request_id, **extra_meta)
        if isinstance(data, (list, tuple)):
            meta.count = len(data)
        return cls(data=data, meta=meta)

    @classmethod
    def failure(cls, message: str, request_id: str | None = None) -> "APIResponse[None]":
        return cls(data=None, meta=ResponseMeta(request_id=request_id), error=message)


class ErrorBody(BaseModel):
    """Body of a 400/404/409/422/502 raised from the service layer."""

    error: str = Field(..., description="Exception class, e.g. InvalidStateError")
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


# Shared OpenAPI declaration for routes that surface domain errors
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorBody} for code in (400, 404, 409, 502)
}


def _dumps(obj: Any) -> bytes:
    return orjson.dumps(
        obj,
        option=orjson.OPT_UTC_Z | orjson.OPT_NAIVE_UTC | orjson.OPT_NON_STR_KEYS,
    )


class ORJSONResponse(JSONResponse):
    """JSONResponse rendered with orjson; models are dumped by alias."""

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json", by_alias=True)
        return _dumps(content)
