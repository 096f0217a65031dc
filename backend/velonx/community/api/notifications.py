"""Notification inbox and per-category preference endpoints for the signed-in user."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import ConfigDict

from velonx.api.responses import ApiModel, ok
from velonx.community.domain.container import get_notification_service, get_preference_gate
from velonx.community.domain.models import NotificationType
from velonx.community.domain.notifications_service import NotificationService
from velonx.community.domain.preferences import NotificationPreferenceGate
from velonx.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationOut(ApiModel):
    id: str
    user_id: str
    title: str
    description: str
    type: NotificationType
    action_url: Optional[str] = None
    metadata: dict[str, Any]
    read: bool
    created_at: datetime


class PreferencesOut(ApiModel):
    community_comments: bool
    community_reactions: bool
    community_mentions: bool
    community_group_updates: bool
    community_moderation: bool


class PreferencesIn(ApiModel):
    community_comments: Optional[bool] = None
    community_reactions: Optional[bool] = None
    community_mentions: Optional[bool] = None
    community_group_updates: Optional[bool] = None
    community_moderation: Optional[bool] = None

    model_config = ConfigDict(extra="forbid")


@router.get("")
async def list_notifications(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    read: Optional[bool] = Query(default=None),
    type: Optional[NotificationType] = Query(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    result = await service.list_notifications(user.id, page=page, page_size=page_size, read=read, type=type)
    return ok(
        {
            "notifications": [NotificationOut.model_validate(item).model_dump(mode="json", by_alias=True) for item in result.notifications],
            "unreadCount": result.unread_count,
            "pagination": {
                "page": result.pagination.page,
                "pageSize": result.pagination.page_size,
                "totalCount": result.pagination.total_count,
                "totalPages": result.pagination.total_pages,
            },
        }
    )


@router.get("/unread-count")
async def unread_count(
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    return ok({"count": await service.get_unread_count(user.id)})


@router.post("/mark-all-read")
async def mark_all_read(
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    updated = await service.mark_all_as_read(user.id)
    return ok({"count": updated}, message="All notifications marked as read")


@router.get("/preferences")
async def get_preferences(
    user: AuthenticatedUser = Depends(get_current_user),
    gate: NotificationPreferenceGate = Depends(get_preference_gate),
) -> dict[str, Any]:
    prefs = await gate.get_preferences(user.id)
    return ok(PreferencesOut.model_validate(prefs))


@router.patch("/preferences")
async def update_preferences(
    payload: PreferencesIn,
    user: AuthenticatedUser = Depends(get_current_user),
    gate: NotificationPreferenceGate = Depends(get_preference_gate),
) -> dict[str, Any]:
    prefs = await gate.update_preferences(user.id, **payload.model_dump(exclude_none=True))
    return ok(PreferencesOut.model_validate(prefs), message="Preferences updated")


@router.patch("/{notification_id}")
async def mark_read(
    notification_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    notification = await service.mark_as_read(notification_id, user.id)
    return ok(NotificationOut.model_validate(notification), message="Notification marked as read")


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    await service.delete_notification(notification_id, user.id)
    return ok(message="Notification deleted successfully")


@router.delete("")
async def delete_all_notifications(
    user: AuthenticatedUser = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    removed = await service.delete_all_notifications(user.id)
    return ok({"count": removed}, message="All notifications deleted")


__all__ = ["router"]
