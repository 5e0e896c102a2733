"""Request/response schemas for license endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ValidateLicenseRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=255)


class ValidateLicenseResponse(BaseModel):
    valid: bool
    max_users: int
    expiry_date: datetime


class MyLicenseResponse(BaseModel):
    id: int
    license_key: str
    max_users: int
    expiration_date: datetime | None = None
    members: int
    seats_remaining: int
