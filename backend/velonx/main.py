"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from velonx.api import ops
from velonx.api.errors import install_error_handlers
from velonx.community import api as community_api
from velonx.community.domain import container
from velonx.infra import postgres
from velonx.obs import init as obs_init
from velonx.security import api as audit_api
from velonx.settings import settings

_LOG = logging.getLogger("velonx.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = None
	if settings.storage_backend == "postgres":
		pool = await postgres.init_pool()
		container.configure_postgres(pool)
	_LOG.info("startup", extra={"storage_backend": settings.storage_backend, "version": settings.git_commit})
	try:
		yield
	finally:
		await container.get_error_logger().drain()
		if pool is not None:
			await postgres.close_pool()


def _allowed_origins() -> list[str]:
	allow_origins = list(settings.cors_allow_origins)
	if not allow_origins:
		allow_origins = ["http://localhost:3000"] if settings.is_dev() else []
	# Starlette disallows wildcard '*' with allow_credentials=True
	if "*" in allow_origins:
		allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []
	return allow_origins


def create_app() -> FastAPI:
	app = FastAPI(title="Velonx Community", lifespan=lifespan)
	install_error_handlers(app)
	obs_init(app)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=_allowed_origins(),
		allow_credentials=True,
		allow_methods=["*"],
		allow_headers=["*"],
	)

	api = APIRouter(prefix="/api")
	api.include_router(community_api.router)
	api.include_router(audit_api.router)
	app.include_router(api)
	app.include_router(ops.router)
	return app


app = create_app()
