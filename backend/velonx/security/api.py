"""Admin endpoints for browsing, summarising and pruning the audit trail."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import Field

from velonx.api.responses import ApiModel, ok
from velonx.community.domain.container import get_audit_logger
from velonx.infra.auth import AuthenticatedUser, get_admin_user
from velonx.security.audit import AuditLogFilters, AuditLogger, AuditResult
from velonx.settings import settings

router = APIRouter(prefix="/admin/audit-logs", tags=["admin-audit"])


class AuditLogOut(ApiModel):
    id: str
    user_id: Optional[str] = None
    action: str
    resource: str
    ip_address: str
    user_agent: str
    result: AuditResult
    metadata: dict[str, Any]
    timestamp: Optional[datetime] = None


class CleanupIn(ApiModel):
    older_than_days: Optional[int] = Field(default=None, ge=1)


@router.get("")
async def list_audit_logs(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    action: Optional[str] = Query(default=None),
    resource: Optional[str] = Query(default=None),
    result: Optional[AuditResult] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200, alias="pageSize"),
    _: AuthenticatedUser = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    filters = AuditLogFilters(
        user_id=user_id,
        action=action,
        resource=resource,
        result=result,
        start_date=start_date,
        end_date=end_date,
        page=page,
        page_size=page_size,
    )
    result_page = await audit.query(filters)
    return ok(
        [AuditLogOut.model_validate(entry) for entry in result_page.logs],
        pagination={
            "page": result_page.pagination.page,
            "pageSize": result_page.pagination.page_size,
            "total": result_page.pagination.total,
            "totalPages": result_page.pagination.total_pages,
        },
    )


@router.get("/stats")
async def audit_stats(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    _: AuthenticatedUser = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    stats = await audit.get_stats(start_date, end_date)
    return ok(
        {
            "totalEvents": stats.total_events,
            "successfulEvents": stats.successful_events,
            "failedEvents": stats.failed_events,
            "uniqueUsers": stats.unique_users,
            "topActions": [item.model_dump() for item in stats.top_actions],
            "topResources": [item.model_dump() for item in stats.top_resources],
        }
    )


@router.post("/cleanup")
async def cleanup_audit_logs(
    request: Request,
    payload: Optional[CleanupIn] = None,
    admin: AuthenticatedUser = Depends(get_admin_user),
    audit: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    days = (payload.older_than_days if payload else None) or settings.audit_retention_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    removed = await audit.cleanup(cutoff)
    await audit.log_data_modification(
        request,
        "DELETE",
        "AUDIT_LOG",
        f"older-than-{days}d",
        AuditResult.SUCCESS,
        admin.id,
        {"removed": removed, "cutoff": cutoff.isoformat()},
    )
    return ok({"removed": removed, "cutoff": cutoff.isoformat()})


__all__ = ["router"]
