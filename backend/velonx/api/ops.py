"""Operations endpoints: health check and Prometheus metrics."""

from __future__ import annotations

import time
from typing import Optional

from fastapi import APIRouter, Depends, Header, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from velonx.community.domain.exceptions import AuthorizationError
from velonx.infra.postgres import get_pool
from velonx.obs import metrics as obs_metrics
from velonx.settings import settings

router = APIRouter(prefix="", tags=["ops"])


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_metrics_access(
	x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	token = settings.obs_admin_token
	# fail closed when no token is configured
	if not token or _resolve_token(x_admin_token, authorization) != token:
		raise AuthorizationError("Metrics access denied")


async def _ping_postgres() -> bool:
	start = time.perf_counter()
	try:
		pool = await get_pool()
		async with pool.acquire() as conn:
			await conn.execute("SELECT 1")
	except Exception:
		obs_metrics.mark_postgres(False)
		return False
	obs_metrics.mark_postgres(True, latency_seconds=time.perf_counter() - start)
	return True


@router.get("/health")
async def health() -> Response:
	checks: dict[str, str] = {}
	if settings.storage_backend == "postgres":
		checks["postgres"] = "ok" if await _ping_postgres() else "down"
	healthy = all(value == "ok" for value in checks.values())
	payload = {
		"status": "ok" if healthy else "degraded",
		"service": settings.service_name,
		"version": settings.git_commit,
		"checks": checks,
	}
	return JSONResponse(
		content=payload,
		status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
	)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = ["router"]
