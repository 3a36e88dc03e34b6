"""Shared Pydantic base models for the HTTP surface."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class HealthCoreBase(BaseModel):
    """Base model with shared config for all healthcore API schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Error envelope ----------


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail
