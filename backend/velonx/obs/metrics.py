"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

REQUEST_COUNTER = Counter(
	"velonx_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"velonx_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

MODERATION_ACTIONS = Counter(
	"velonx_moderation_actions_total",
	"Moderation actions recorded",
	["type"],
)

NOTIFICATIONS = Counter(
	"velonx_notifications_total",
	"Notification writes by outcome",
	["result"],
)

AUDIT_WRITES = Counter(
	"velonx_audit_writes_total",
	"Audit log writes by outcome",
	["result"],
)

ALERTS_SENT = Counter(
	"velonx_alerts_sent_total",
	"Alert deliveries per channel",
	["channel", "result"],
)

BEST_EFFORT_FAILURES = Counter(
	"velonx_best_effort_failures_total",
	"Side effects that failed after the primary write committed",
	["label"],
)

ERROR_LOG_ENTRIES = Counter(
	"velonx_error_log_total",
	"Classified error log entries",
	["severity"],
)

POSTGRES_UP = Gauge("velonx_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("velonx_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_moderation_action(action_type: str) -> None:
	MODERATION_ACTIONS.labels(type=action_type).inc()


def inc_notification(result: str) -> None:
	NOTIFICATIONS.labels(result=result).inc()


def inc_audit_write(result: str) -> None:
	AUDIT_WRITES.labels(result=result).inc()


def inc_alert_sent(channel: str, result: str) -> None:
	ALERTS_SENT.labels(channel=channel, result=result).inc()


def inc_best_effort_failure(label: str) -> None:
	BEST_EFFORT_FAILURES.labels(label=label).inc()


def inc_error_log(severity: str) -> None:
	ERROR_LOG_ENTRIES.labels(severity=severity).inc()


def mark_postgres(up: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if up else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
