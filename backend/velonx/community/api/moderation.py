"""Moderator endpoints: content flags, scoped mutes and the moderation log."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field

from velonx.api.responses import ApiModel, ok
from velonx.community.domain.container import get_audit_logger, get_moderation_service
from velonx.community.domain.exceptions import AuthorizationError
from velonx.community.domain.moderation_service import MAX_MUTE_MINUTES, ModerationService
from velonx.community.domain.models import ContentType, ModerationType
from velonx.infra.auth import AuthenticatedUser, get_current_user
from velonx.security.audit import AuditLogger

router = APIRouter(prefix="/community/moderation", tags=["community-moderation"])


class FlagContentIn(ApiModel):
    content_id: str = Field(min_length=1)
    content_type: ContentType
    reason: Optional[str] = Field(default=None, max_length=500)


class MuteUserIn(ApiModel):
    user_id: str = Field(min_length=1)
    room_id: Optional[str] = None
    group_id: Optional[str] = None
    duration: int = Field(ge=1, le=MAX_MUTE_MINUTES)
    reason: Optional[str] = Field(default=None, max_length=500)


class ModerationLogOut(ApiModel):
    id: str
    moderator_id: str
    target_id: str
    type: ModerationType
    reason: Optional[str] = None
    metadata: dict[str, Any]
    created_at: datetime


class MuteOut(ApiModel):
    id: str
    user_id: str
    room_id: Optional[str] = None
    group_id: Optional[str] = None
    muted_by: str
    reason: Optional[str] = None
    expires_at: datetime
    created_at: datetime


@asynccontextmanager
async def _audited(
    audit: AuditLogger,
    request: Request,
    user: AuthenticatedUser,
    action: str,
    resource: str,
) -> AsyncIterator[None]:
    try:
        yield
    except AuthorizationError:
        await audit.log_authorization_failure(request, action, resource, user.id)
        raise


@router.post("/flag")
async def flag_content(
    payload: FlagContentIn,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    async with _audited(audit, request, user, "FLAG_CONTENT", payload.content_type.value):
        log = await service.flag_content(payload.content_id, payload.content_type, user.id, payload.reason)
    return ok(ModerationLogOut.model_validate(log), message="Content flagged successfully")


@router.post("/mute")
async def mute_user(
    payload: MuteUserIn,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    async with _audited(audit, request, user, "MUTE_USER", "USER_MUTE"):
        mute = await service.mute_user(
            payload.user_id,
            room_id=payload.room_id,
            group_id=payload.group_id,
            moderator_id=user.id,
            duration_minutes=payload.duration,
            reason=payload.reason,
        )
    return ok(MuteOut.model_validate(mute), message="User muted successfully")


@router.get("/mute/status")
async def mute_status(
    user_id: str = Query(..., alias="userId", min_length=1),
    room_id: Optional[str] = Query(default=None, alias="roomId"),
    group_id: Optional[str] = Query(default=None, alias="groupId"),
    _: AuthenticatedUser = Depends(get_current_user),
    service: ModerationService = Depends(get_moderation_service),
) -> dict[str, Any]:
    muted = await service.is_user_muted(user_id, room_id=room_id, group_id=group_id)
    return ok({"userId": user_id, "roomId": room_id, "groupId": group_id, "isMuted": muted})


@router.delete("/mute/{mute_id}")
async def unmute_user(
    mute_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: ModerationService = Depends(get_moderation_service),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    async with _audited(audit, request, user, "UNMUTE_USER", "USER_MUTE"):
        mute = await service.unmute_user(mute_id, user.id)
    return ok(MuteOut.model_validate(mute), message="User unmuted successfully")


@router.get("/logs")
async def list_logs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
    type: Optional[ModerationType] = Query(default=None),
    moderator_id: Optional[str] = Query(default=None, alias="moderatorId"),
    _: AuthenticatedUser = Depends(get_current_user),
    service: ModerationService = Depends(get_moderation_service),
) -> dict[str, Any]:
    result = await service.list_moderation_logs(
        page=page,
        page_size=page_size,
        type=type,
        moderator_id=moderator_id,
    )
    return ok(
        [ModerationLogOut.model_validate(log) for log in result.logs],
        pagination={
            "page": result.pagination.page,
            "pageSize": result.pagination.page_size,
            "total": result.pagination.total_count,
            "totalPages": result.pagination.total_pages,
        },
    )


__all__ = ["router"]
