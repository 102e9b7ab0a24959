"""Pydantic models shared across API responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class ErrorResponse(BaseModel):
    """Error envelope returned for every failed request."""

    model_config = ConfigDict(extra="forbid")

    success: bool = False
    code: str
    message: str
    details: dict[str, Any] | list[Any] | str | None = None
    trace_id: str
