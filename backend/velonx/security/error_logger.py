"""Structured error logging with severity tiers and critical-error escalation."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from velonx.infra.best_effort import run_best_effort
from velonx.obs import logging as obs_logging
from velonx.obs import metrics as obs_metrics
from velonx.security.alerts import AlertService
from velonx.security.audit import AuditLogEntry, AuditLogger, AuditResult, client_ip, user_agent
from velonx.security.entries import ErrorLogEntry, Severity

__all__ = ["ErrorLogger", "Severity", "ErrorLogEntry"]

_LOG = logging.getLogger("velonx.errors")

_LEVELS = {
	Severity.INFO: logging.INFO,
	Severity.WARNING: logging.WARNING,
	Severity.ERROR: logging.ERROR,
	Severity.CRITICAL: logging.CRITICAL,
}

_QUERY_PREVIEW = 200


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _request_path(request: Any) -> str:
	url = getattr(request, "url", None)
	path = getattr(url, "path", None)
	return str(path) if path else "unknown"


def _request_id_of(request: Any) -> Optional[str]:
	state = getattr(request, "state", None)
	return getattr(state, "request_id", None) if state is not None else None


class ErrorLogger:
	"""Classifies errors by severity; critical ones are mirrored to the audit trail and alerted.

	The critical-path side effects run as background tasks and never raise
	into the caller. ``drain()`` awaits whatever is still in flight.
	"""

	def __init__(
		self,
		*,
		alerts: AlertService,
		audit: Optional[AuditLogger] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.alerts = alerts
		self.audit = audit
		self._clock = clock
		self._pending: set[asyncio.Task] = set()

	def log(
		self,
		code: str,
		message: str,
		error: Optional[BaseException] = None,
		*,
		severity: Severity = Severity.ERROR,
		context: Optional[dict[str, Any]] = None,
		request_id: Optional[str] = None,
		user_id: Optional[str] = None,
		request: Any = None,
	) -> ErrorLogEntry:
		entry = ErrorLogEntry(
			severity=severity,
			code=code,
			message=message,
			error=error,
			context=dict(context or {}),
			request_id=request_id or (_request_id_of(request) if request is not None else None) or obs_logging.current_request_id(),
			user_id=user_id,
			timestamp=self._clock(),
		)
		if request is not None:
			entry.ip_address = client_ip(request)
			entry.user_agent = user_agent(request)
			entry.endpoint = _request_path(request)
			entry.method = getattr(request, "method", None)

		self._write(entry)
		obs_metrics.inc_error_log(severity.value)

		if severity is Severity.CRITICAL:
			if self.audit is not None:
				self._spawn("errors.audit_mirror", self._mirror_to_audit(self.audit, entry, request))
			self._spawn("errors.alert", self.alerts.send_alert(entry))
		return entry

	def info(self, code: str, message: str, **options: Any) -> ErrorLogEntry:
		return self.log(code, message, None, severity=Severity.INFO, **options)

	def warning(self, code: str, message: str, error: Optional[BaseException] = None, **options: Any) -> ErrorLogEntry:
		return self.log(code, message, error, severity=Severity.WARNING, **options)

	def error(self, code: str, message: str, error: Optional[BaseException] = None, **options: Any) -> ErrorLogEntry:
		return self.log(code, message, error, severity=Severity.ERROR, **options)

	def critical(self, code: str, message: str, error: Optional[BaseException] = None, **options: Any) -> ErrorLogEntry:
		return self.log(code, message, error, severity=Severity.CRITICAL, **options)

	async def drain(self) -> None:
		while self._pending:
			await asyncio.gather(*list(self._pending), return_exceptions=True)

	def _write(self, entry: ErrorLogEntry) -> None:
		extra: dict[str, Any] = {
			"severity": entry.severity.value,
			"error_code": entry.code,
		}
		if entry.request_id:
			extra["request_id"] = entry.request_id
		if entry.user_id:
			extra["user_id"] = entry.user_id
		if entry.context:
			extra["context"] = entry.context
		if entry.endpoint:
			extra["endpoint"] = entry.endpoint
			extra["method"] = entry.method
			extra["ip"] = entry.ip_address
			extra["user_agent"] = entry.user_agent
		exc_info = None
		if entry.error is not None:
			exc_info = (type(entry.error), entry.error, entry.error.__traceback__)
		_LOG.log(_LEVELS[entry.severity], "[%s] %s", entry.code, entry.message, extra=extra, exc_info=exc_info)

	def _spawn(self, label: str, awaitable: Awaitable[Any]) -> None:
		guarded = run_best_effort(label, awaitable, logger=_LOG)
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			asyncio.run(guarded)
			return
		task = loop.create_task(guarded)
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)

	async def _mirror_to_audit(self, audit: AuditLogger, entry: ErrorLogEntry, request: Any) -> None:
		metadata = {
			"message": entry.message,
			"errorName": entry.error_name,
			"errorMessage": str(entry.error) if entry.error is not None else None,
			"context": entry.context or None,
			"requestId": entry.request_id,
		}
		metadata = {key: value for key, value in metadata.items() if value is not None}
		if request is not None:
			await audit.log_from_request(request, "CRITICAL_ERROR", entry.code, AuditResult.FAILURE, entry.user_id, metadata)
			return
		await audit.log(
			AuditLogEntry(
				user_id=entry.user_id,
				action="CRITICAL_ERROR",
				resource=entry.code,
				result=AuditResult.FAILURE,
				metadata=metadata,
			)
		)

	def log_database_connection_error(self, error: BaseException, **options: Any) -> ErrorLogEntry:
		return self.critical("DATABASE_CONNECTION_ERROR", "Failed to connect to database", error, **options)

	def log_database_query_error(self, query: str, error: BaseException, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "query": query[:_QUERY_PREVIEW]}
		return self.error("DATABASE_QUERY_ERROR", "Database query failed", error, **options)

	def log_authentication_error(self, reason: str, **options: Any) -> ErrorLogEntry:
		return self.warning("AUTHENTICATION_ERROR", f"Authentication failed: {reason}", **options)

	def log_authorization_error(self, resource: str, action: str, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "resource": resource, "action": action}
		return self.warning("AUTHORIZATION_ERROR", f"Unauthorized access attempt to {resource} ({action})", **options)

	def log_validation_error(self, fields: Sequence[str], **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "fields": list(fields)}
		return self.info("VALIDATION_ERROR", f"Validation failed for fields: {', '.join(fields)}", **options)

	def log_rate_limit_exceeded(self, identifier: str, endpoint: str, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "identifier": identifier, "endpoint": endpoint}
		return self.warning("RATE_LIMIT_EXCEEDED", f"Rate limit exceeded for {identifier} on {endpoint}", **options)

	def log_external_service_error(self, service: str, error: BaseException, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "service": service}
		return self.error("EXTERNAL_SERVICE_ERROR", f"External service error: {service}", error, **options)

	def log_file_upload_error(self, filename: str, error: BaseException, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "filename": filename}
		return self.error("FILE_UPLOAD_ERROR", f"File upload failed: {filename}", error, **options)

	def log_cache_error(self, operation: str, key: str, error: BaseException, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "operation": operation, "key": key}
		return self.warning("CACHE_ERROR", f"Cache {operation} failed for key: {key}", error, **options)

	def log_slow_query(self, query: str, duration_ms: float, **options: Any) -> ErrorLogEntry:
		options["context"] = {**(options.get("context") or {}), "query": query[:_QUERY_PREVIEW], "duration": duration_ms}
		return self.warning("SLOW_QUERY", f"Slow query detected ({duration_ms}ms)", **options)

	def log_slow_request(self, endpoint: str, method: str, duration_ms: float, **options: Any) -> ErrorLogEntry:
		options["context"] = {
			**(options.get("context") or {}),
			"endpoint": endpoint,
			"method": method,
			"duration": duration_ms,
		}
		return self.warning("SLOW_REQUEST", f"Slow request detected: {method} {endpoint} ({duration_ms}ms)", **options)
