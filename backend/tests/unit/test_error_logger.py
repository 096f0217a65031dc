from __future__ import annotations

import logging
from types import SimpleNamespace

import httpx
import pytest

from velonx.obs import logging as obs_logging
from velonx.security.alerts import AlertChannel, AlertConfig, AlertService
from velonx.security.audit import AuditLogger, AuditResult, InMemoryAuditRepository
from velonx.security.entries import Severity
from velonx.security.error_logger import ErrorLogger


class _CountingAlerts(AlertService):
    def __init__(self) -> None:
        super().__init__(AlertConfig(enabled=True), handlers=[])
        self.entries = []

    async def send_alert(self, entry):
        self.entries.append(entry)
        return {}


class _FailingAlerts(AlertService):
    def __init__(self) -> None:
        super().__init__(AlertConfig(enabled=True), handlers=[])

    async def send_alert(self, entry):
        raise RuntimeError("alert fan-out exploded")


def _request() -> SimpleNamespace:
    return SimpleNamespace(
        headers={"x-forwarded-for": "203.0.113.9", "user-agent": "pytest"},
        url=SimpleNamespace(path="/api/community/moderation/mute"),
        method="POST",
        state=SimpleNamespace(request_id="req-from-state"),
    )


@pytest.fixture
def audit(clock) -> AuditLogger:
    return AuditLogger(InMemoryAuditRepository(), clock=clock)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method,level",
    [("info", logging.INFO), ("warning", logging.WARNING), ("error", logging.ERROR)],
)
async def test_non_critical_levels_only_log(method, level, audit, clock, caplog):
    alerts = _CountingAlerts()
    errors = ErrorLogger(alerts=alerts, audit=audit, clock=clock)

    with caplog.at_level(logging.INFO, logger="velonx.errors"):
        entry = getattr(errors, method)("SOMETHING_HAPPENED", "details here")
    await errors.drain()

    assert entry.severity is Severity(method)
    [record] = [r for r in caplog.records if r.name == "velonx.errors"]
    assert record.levelno == level
    assert record.getMessage() == "[SOMETHING_HAPPENED] details here"
    assert alerts.entries == []
    assert audit.repo.entries == []


@pytest.mark.asyncio
async def test_critical_mirrors_to_audit_and_alerts(audit, clock):
    alerts = _CountingAlerts()
    errors = ErrorLogger(alerts=alerts, audit=audit, clock=clock)

    entry = errors.log_database_connection_error(ConnectionRefusedError("refused"), request=_request(), user_id="user-1")
    await errors.drain()

    assert entry.severity is Severity.CRITICAL
    assert entry.request_id == "req-from-state"
    assert entry.ip_address == "203.0.113.9"
    assert entry.endpoint == "/api/community/moderation/mute"
    assert entry.method == "POST"
    assert alerts.entries == [entry]

    [row] = audit.repo.entries
    assert row.action == "CRITICAL_ERROR"
    assert row.resource == "DATABASE_CONNECTION_ERROR"
    assert row.result is AuditResult.FAILURE
    assert row.user_id == "user-1"
    assert row.ip_address == "203.0.113.9"
    assert row.metadata["errorName"] == "ConnectionRefusedError"


@pytest.mark.asyncio
async def test_critical_without_request_still_audited(audit, clock):
    errors = ErrorLogger(alerts=_CountingAlerts(), audit=audit, clock=clock)

    errors.critical("CONFIG_MISSING", "Secret key not configured")
    await errors.drain()

    [row] = audit.repo.entries
    assert row.ip_address == "unknown"
    assert row.resource == "CONFIG_MISSING"


@pytest.mark.asyncio
async def test_critical_without_audit_only_alerts(clock):
    alerts = _CountingAlerts()
    errors = ErrorLogger(alerts=alerts, clock=clock)

    entry = errors.critical("CONFIG_MISSING", "Secret key not configured")
    await errors.drain()

    assert alerts.entries == [entry]


@pytest.mark.asyncio
async def test_side_effect_failures_never_reach_caller(audit, clock, caplog):
    errors = ErrorLogger(alerts=_FailingAlerts(), audit=audit, clock=clock)

    with caplog.at_level(logging.WARNING, logger="velonx.errors"):
        entry = errors.critical("PAYMENT_GATEWAY_DOWN", "Gateway timed out")
        await errors.drain()

    assert entry.code == "PAYMENT_GATEWAY_DOWN"
    assert any(r.getMessage() == "best_effort_failed" for r in caplog.records)
    assert len(audit.repo.entries) == 1


def test_critical_outside_event_loop_runs_inline(audit, clock):
    alerts = _CountingAlerts()
    errors = ErrorLogger(alerts=alerts, audit=audit, clock=clock)

    errors.critical("STARTUP_FAILED", "Could not bind port")

    assert len(alerts.entries) == 1
    assert len(audit.repo.entries) == 1


@pytest.mark.asyncio
async def test_request_id_falls_back_to_bound_context(audit, clock):
    errors = ErrorLogger(alerts=_CountingAlerts(), audit=audit, clock=clock)
    tokens = obs_logging.bind_context(request_id="req-ctx")
    try:
        entry = errors.warning("SLOW", "slow")
    finally:
        obs_logging.reset_context(tokens)

    assert entry.request_id == "req-ctx"


@pytest.mark.asyncio
async def test_domain_helpers_attach_context(audit, clock):
    errors = ErrorLogger(alerts=_CountingAlerts(), audit=audit, clock=clock)

    query_entry = errors.log_database_query_error("SELECT " + "x" * 500, RuntimeError("boom"))
    validation_entry = errors.log_validation_error(["duration", "userId"])
    slow_entry = errors.log_slow_request("/api/notifications", "GET", 1250.0)

    assert len(query_entry.context["query"]) == 200
    assert query_entry.severity is Severity.ERROR
    assert validation_entry.severity is Severity.INFO
    assert validation_entry.context == {"fields": ["duration", "userId"]}
    assert slow_entry.severity is Severity.WARNING
    assert slow_entry.context["duration"] == 1250.0


@pytest.mark.asyncio
async def test_unreachable_webhook_with_console_channel(audit, clock, capsys, caplog):
    def _unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    alerts = AlertService(
        AlertConfig(
            enabled=True,
            channels=(AlertChannel.CONSOLE, AlertChannel.WEBHOOK),
            webhook_url="https://hooks.invalid/alert",
        ),
        webhook_transport=httpx.MockTransport(_unreachable),
    )
    errors = ErrorLogger(alerts=alerts, audit=audit, clock=clock)

    with caplog.at_level(logging.ERROR, logger="velonx.alerts"):
        entry = errors.critical("DATABASE_CONNECTION_ERROR", "Failed to connect to database")
        await errors.drain()

    assert entry.severity is Severity.CRITICAL
    assert "Code: DATABASE_CONNECTION_ERROR" in capsys.readouterr().out
    assert any(r.getMessage() == "alert_webhook_failed" for r in caplog.records)
