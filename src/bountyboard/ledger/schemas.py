"""Request/response schemas for bounty/ledger endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class AdjustBalanceRequest(BaseModel):
    user_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=500)


class AdjustBalanceResponse(BaseModel):
    user_id: int
    balance_before: Decimal
    balance_after: Decimal
    adjustment: Decimal


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    task_id: int | None = None
    task_title: str | None = None
    type: str
    amount: Decimal
    description: str | None = None
    balance_before: Decimal
    balance_after: Decimal
    created_by: int | None = None
    created_at: datetime


class BountyStatisticsResponse(BaseModel):
    total_bounties_paid: str
    total_penalties: str
    bounty_count: int
    penalty_count: int
    average_bounty: str
