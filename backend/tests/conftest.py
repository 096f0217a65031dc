import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from velonx.community.domain import container
from velonx.community.domain.repositories import InMemoryCommunityDirectory
from velonx.main import app
from velonx.security.alerts import AlertConfig, AlertService
from velonx.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if sys.platform == "win32" and hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


MODERATOR = "mod-1"
MEMBER = "user-1"
OUTSIDER = "user-2"
ADMIN = "admin-1"
ROOM = "room-1"
GROUP = "group-1"


@dataclass
class FakeClock:
	now: datetime

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **delta: float) -> datetime:
		self.now = self.now + timedelta(**delta)
		return self.now


@pytest.fixture(autouse=True)
def force_test_settings():
	"""API tests authenticate via X-User-Id headers, which are only accepted in development."""
	original_env = settings.environment
	settings.environment = "development"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def directory() -> InMemoryCommunityDirectory:
	directory = InMemoryCommunityDirectory()
	directory.add_user(MODERATOR, name="Mona Moderator", role="MENTOR")
	directory.add_user(MEMBER, name="Sam Student")
	directory.add_user(OUTSIDER, name="Olu Outsider")
	directory.add_user(ADMIN, name="Ada Admin", role="ADMIN")
	directory.add_room(ROOM, members=[MEMBER], moderators=[MODERATOR])
	directory.add_group(GROUP, members=[MEMBER, OUTSIDER], moderators=[MODERATOR])
	directory.add_post("post-1", author_id=MEMBER, group_id=GROUP)
	directory.add_message("msg-room", author_id=MEMBER, room_id=ROOM)
	directory.add_message("msg-group", author_id=MEMBER, group_id=GROUP)
	return directory


@pytest.fixture
def services(directory, clock):
	built = container.build_memory_container(
		directory=directory,
		alerts=AlertService(AlertConfig()),
		clock=clock,
	)
	container.configure(built)
	try:
		yield built
	finally:
		container.reset()


@pytest_asyncio.fixture
async def api_client(services):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
	await services.errors.drain()


@pytest.fixture
def auth_headers():
	def _headers(user_id: str, *roles: str) -> dict[str, str]:
		headers = {"X-User-Id": user_id}
		if roles:
			headers["X-User-Roles"] = ",".join(roles)
		return headers

	return _headers
