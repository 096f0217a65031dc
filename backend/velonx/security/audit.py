"""Append-only audit trail for security-relevant events."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from velonx.obs import metrics as obs_metrics

_LOG = logging.getLogger("velonx.audit")

UNKNOWN = "unknown"
TOP_N = 10


class AuditResult(str, Enum):
	SUCCESS = "success"
	FAILURE = "failure"


class AuditLogEntry(BaseModel):
	id: str = Field(default_factory=lambda: str(uuid4()))
	user_id: Optional[str] = None
	action: str
	resource: str
	ip_address: str = UNKNOWN
	user_agent: str = UNKNOWN
	result: AuditResult
	metadata: dict[str, Any] = Field(default_factory=dict)
	timestamp: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class AuditLogFilters(BaseModel):
	user_id: Optional[str] = None
	action: Optional[str] = None
	resource: Optional[str] = None
	result: Optional[AuditResult] = None
	start_date: Optional[datetime] = None
	end_date: Optional[datetime] = None
	page: int = 1
	page_size: int = 50


class AuditPagination(BaseModel):
	page: int
	page_size: int
	total: int
	total_pages: int


class AuditLogPage(BaseModel):
	logs: list[AuditLogEntry]
	pagination: AuditPagination


class ActionCount(BaseModel):
	action: str
	count: int


class ResourceCount(BaseModel):
	resource: str
	count: int


class AuditStats(BaseModel):
	total_events: int
	successful_events: int
	failed_events: int
	unique_users: int
	top_actions: list[ActionCount]
	top_resources: list[ResourceCount]


class AuditRepository(Protocol):
	async def insert(self, entry: AuditLogEntry) -> None:
		...

	async def query(self, filters: AuditLogFilters, *, offset: int, limit: int) -> Tuple[Sequence[AuditLogEntry], int]:
		...

	async def stats(self, start_date: Optional[datetime], end_date: Optional[datetime], *, top_n: int) -> AuditStats:
		...

	async def delete_older_than(self, cutoff: datetime) -> int:
		...


def _in_window(entry: AuditLogEntry, start: Optional[datetime], end: Optional[datetime]) -> bool:
	if entry.timestamp is None:
		return start is None and end is None
	if start is not None and entry.timestamp < start:
		return False
	if end is not None and entry.timestamp > end:
		return False
	return True


class InMemoryAuditRepository(AuditRepository):
	"""Simple repository implementation for development and tests."""

	def __init__(self) -> None:
		self.entries: list[AuditLogEntry] = []

	async def insert(self, entry: AuditLogEntry) -> None:
		self.entries.append(entry)

	async def query(self, filters: AuditLogFilters, *, offset: int, limit: int) -> Tuple[Sequence[AuditLogEntry], int]:
		items = [
			entry
			for entry in self.entries
			if (filters.user_id is None or entry.user_id == filters.user_id)
			and (filters.action is None or entry.action == filters.action)
			and (filters.resource is None or entry.resource == filters.resource)
			and (filters.result is None or entry.result == filters.result)
			and _in_window(entry, filters.start_date, filters.end_date)
		]
		items.sort(key=lambda entry: entry.timestamp or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
		return items[offset : offset + limit], len(items)

	async def stats(self, start_date: Optional[datetime], end_date: Optional[datetime], *, top_n: int) -> AuditStats:
		window = [entry for entry in self.entries if _in_window(entry, start_date, end_date)]
		actions = Counter(entry.action for entry in window)
		resources = Counter(entry.resource for entry in window)
		return AuditStats(
			total_events=len(window),
			successful_events=sum(1 for entry in window if entry.result is AuditResult.SUCCESS),
			failed_events=sum(1 for entry in window if entry.result is AuditResult.FAILURE),
			unique_users=len({entry.user_id for entry in window if entry.user_id is not None}),
			top_actions=[ActionCount(action=name, count=count) for name, count in actions.most_common(top_n)],
			top_resources=[ResourceCount(resource=name, count=count) for name, count in resources.most_common(top_n)],
		)

	async def delete_older_than(self, cutoff: datetime) -> int:
		kept = [entry for entry in self.entries if entry.timestamp is None or entry.timestamp >= cutoff]
		removed = len(self.entries) - len(kept)
		self.entries = kept
		return removed


def _headers_of(request: Any) -> Mapping[str, str]:
	headers = getattr(request, "headers", None)
	return headers if headers is not None else {}


def client_ip(request: Any) -> str:
	"""Resolve the caller address from proxy headers: x-forwarded-for, x-real-ip, cf-connecting-ip."""
	headers = _headers_of(request)
	forwarded_for = headers.get("x-forwarded-for")
	if forwarded_for:
		first = forwarded_for.split(",")[0].strip()
		if first:
			return first
	real_ip = headers.get("x-real-ip")
	if real_ip:
		return real_ip
	cf_ip = headers.get("cf-connecting-ip")
	if cf_ip:
		return cf_ip
	return UNKNOWN


def user_agent(request: Any) -> str:
	return _headers_of(request).get("user-agent") or UNKNOWN


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class AuditLogger:
	"""Writes and queries audit entries; a failed write never reaches the caller."""

	def __init__(self, repository: AuditRepository, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self.repo = repository
		self._clock = clock

	async def log(self, entry: AuditLogEntry) -> None:
		if entry.timestamp is None:
			entry = entry.model_copy(update={"timestamp": self._clock()})
		try:
			await self.repo.insert(entry)
		except Exception:
			obs_metrics.inc_audit_write("failure")
			_LOG.error("audit_write_failed", extra={"entry": entry.model_dump(mode="json")}, exc_info=True)
			return
		obs_metrics.inc_audit_write("success")

	async def log_from_request(
		self,
		request: Any,
		action: str,
		resource: str,
		result: AuditResult | str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		await self.log(
			AuditLogEntry(
				user_id=user_id,
				action=action,
				resource=resource,
				ip_address=client_ip(request),
				user_agent=user_agent(request),
				result=AuditResult(result),
				metadata=metadata or {},
			)
		)

	async def log_auth(
		self,
		request: Any,
		action: str,
		result: AuditResult | str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		"""Record LOGIN, LOGOUT, SIGNUP or PASSWORD_RESET against the AUTH resource."""
		await self.log_from_request(request, action, "AUTH", result, user_id, metadata)

	async def log_authorization_failure(
		self,
		request: Any,
		action: str,
		resource: str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		await self.log_from_request(
			request,
			action,
			resource,
			AuditResult.FAILURE,
			user_id,
			{**(metadata or {}), "reason": "UNAUTHORIZED"},
		)

	async def log_data_access(
		self,
		request: Any,
		resource: str,
		resource_id: str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		await self.log_from_request(
			request,
			"ACCESS",
			resource,
			AuditResult.SUCCESS,
			user_id,
			{**(metadata or {}), "resourceId": resource_id},
		)

	async def log_data_modification(
		self,
		request: Any,
		action: str,
		resource: str,
		resource_id: str,
		result: AuditResult | str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		"""Record CREATE, UPDATE or DELETE of a resource."""
		await self.log_from_request(
			request,
			action,
			resource,
			result,
			user_id,
			{**(metadata or {}), "resourceId": resource_id},
		)

	async def log_security_event(
		self,
		request: Any,
		event: str,
		user_id: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> None:
		await self.log_from_request(request, event, "SECURITY", AuditResult.FAILURE, user_id, metadata)

	async def query(self, filters: Optional[AuditLogFilters] = None) -> AuditLogPage:
		filters = filters or AuditLogFilters()
		page = max(1, filters.page)
		page_size = max(1, filters.page_size)
		items, total = await self.repo.query(filters, offset=(page - 1) * page_size, limit=page_size)
		return AuditLogPage(
			logs=list(items),
			pagination=AuditPagination(
				page=page,
				page_size=page_size,
				total=total,
				total_pages=(total + page_size - 1) // page_size,
			),
		)

	async def get_stats(
		self,
		start_date: Optional[datetime] = None,
		end_date: Optional[datetime] = None,
	) -> AuditStats:
		return await self.repo.stats(start_date, end_date, top_n=TOP_N)

	async def cleanup(self, older_than: datetime) -> int:
		try:
			removed = await self.repo.delete_older_than(older_than)
		except Exception:
			_LOG.error("audit_cleanup_failed", extra={"older_than": older_than.isoformat()}, exc_info=True)
			return 0
		_LOG.info("audit_cleanup", extra={"removed": removed})
		return removed


async def log_successful_login(audit: AuditLogger, request: Any, user_id: str, email: str) -> None:
	await audit.log_auth(request, "LOGIN", AuditResult.SUCCESS, user_id, {"email": email})


async def log_failed_login(audit: AuditLogger, request: Any, email: str, reason: str) -> None:
	await audit.log_auth(request, "LOGIN", AuditResult.FAILURE, None, {"email": email, "reason": reason})


async def log_signup(audit: AuditLogger, request: Any, user_id: str, email: str) -> None:
	await audit.log_auth(request, "SIGNUP", AuditResult.SUCCESS, user_id, {"email": email})


async def log_logout(audit: AuditLogger, request: Any, user_id: str) -> None:
	await audit.log_auth(request, "LOGOUT", AuditResult.SUCCESS, user_id)


async def log_unauthorized_access(
	audit: AuditLogger,
	request: Any,
	resource: str,
	action: str,
	user_id: Optional[str] = None,
) -> None:
	await audit.log_authorization_failure(request, action, resource, user_id)


async def log_csrf_failure(audit: AuditLogger, request: Any, user_id: Optional[str] = None) -> None:
	await audit.log_security_event(request, "CSRF_FAILURE", user_id)


async def log_rate_limit_exceeded(audit: AuditLogger, request: Any, user_id: Optional[str] = None) -> None:
	await audit.log_security_event(request, "RATE_LIMIT_EXCEEDED", user_id)


async def log_brute_force_detected(
	audit: AuditLogger,
	request: Any,
	user_id: Optional[str] = None,
	metadata: Optional[dict[str, Any]] = None,
) -> None:
	await audit.log_security_event(request, "BRUTE_FORCE_DETECTED", user_id, metadata)
