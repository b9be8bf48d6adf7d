"""Pydantic schemas for the error response wire contract (schema version 1).

Body: {"code", "message", "correlationId", "details": [{"field", "message"}]}
status and headers travel on the HTTP response, not in the body.
diagnostics is only present when a mapping rule allow-lists internals.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

SCHEMA_VERSION = "1"


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class CauseSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    message: str


class Diagnostics(BaseModel):
    model_config = ConfigDict(frozen=True)

    internal_message: str | None = Field(default=None, serialization_alias="internalMessage")
    exception_type: str | None = Field(default=None, serialization_alias="exceptionType")
    causes: list[CauseSummary] | None = None
    stack_trace: list[str] | None = Field(default=None, serialization_alias="stackTrace")


class ErrorResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    status: int = Field(ge=100, le=599, exclude=True)
    correlation_id: str = Field(serialization_alias="correlationId")
    details: list[ErrorDetail] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict, exclude=True)
    diagnostics: Diagnostics | None = None

    def body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
