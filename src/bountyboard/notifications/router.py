"""Notification endpoints for the authenticated user."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from bountyboard.auth.dependencies import get_current_user
from bountyboard.database import get_session
from bountyboard.db.models import User
from bountyboard.notifications import service

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    title: str
    message: str
    related_task_id: int | None = None
    read: bool
    created_at: datetime


class UnreadCountResponse(BaseModel):
    unread: int


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    unread_only: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> list[NotificationResponse]:
    """Latest 50 notifications, newest first."""
    items = await service.get_notifications(db, user.id, unread_only=unread_only)
    return [NotificationResponse.model_validate(n) for n in items]


@router.get("/unread", response_model=UnreadCountResponse)
async def unread_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await service.get_unread_count(db, user.id))


@router.put("/mark-all-read")
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, int]:
    count = await service.mark_all_as_read(db, user.id)
    await db.commit()
    return {"updated": count}


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationResponse:
    notification = await service.mark_as_read(db, user.id, notification_id)
    await db.commit()
    return NotificationResponse.model_validate(notification)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    await service.delete_notification(db, user.id, notification_id)
    await db.commit()
    return {"status": "notification_deleted"}
