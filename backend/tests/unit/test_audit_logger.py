from __future__ import annotations

import logging
from datetime import timedelta
from types import SimpleNamespace

import pytest

from velonx.security import audit as audit_module
from velonx.security.audit import (
    AuditLogEntry,
    AuditLogFilters,
    AuditLogger,
    AuditResult,
    InMemoryAuditRepository,
    client_ip,
    user_agent,
)


def _request(**headers: str) -> SimpleNamespace:
    return SimpleNamespace(headers={key.replace("_", "-"): value for key, value in headers.items()})


class _BrokenRepository(InMemoryAuditRepository):
    async def insert(self, entry):
        raise ConnectionError("audit table unavailable")

    async def delete_older_than(self, cutoff):
        raise ConnectionError("audit table unavailable")


@pytest.fixture
def audit(clock) -> AuditLogger:
    return AuditLogger(InMemoryAuditRepository(), clock=clock)


@pytest.mark.parametrize(
    "headers,expected",
    [
        ({"x_forwarded_for": "203.0.113.7, 10.0.0.1", "x_real_ip": "10.0.0.2"}, "203.0.113.7"),
        ({"x_real_ip": "10.0.0.2", "cf_connecting_ip": "198.51.100.4"}, "10.0.0.2"),
        ({"cf_connecting_ip": "198.51.100.4"}, "198.51.100.4"),
        ({}, "unknown"),
    ],
)
def test_client_ip_header_precedence(headers, expected):
    assert client_ip(_request(**headers)) == expected


def test_user_agent_defaults_to_unknown():
    assert user_agent(_request()) == "unknown"
    assert user_agent(_request(user_agent="curl/8.5")) == "curl/8.5"


@pytest.mark.asyncio
async def test_log_from_request_captures_caller(audit, clock):
    request = _request(x_forwarded_for="203.0.113.7", user_agent="pytest")
    await audit.log_data_access(request, "PROJECT", "proj-9", user_id="user-1")

    [entry] = audit.repo.entries
    assert entry.action == "ACCESS"
    assert entry.resource == "PROJECT"
    assert entry.ip_address == "203.0.113.7"
    assert entry.user_agent == "pytest"
    assert entry.result is AuditResult.SUCCESS
    assert entry.metadata == {"resourceId": "proj-9"}
    assert entry.timestamp == clock.now


@pytest.mark.asyncio
async def test_wrappers_shape_entries(audit):
    request = _request()
    await audit_module.log_successful_login(audit, request, "user-1", "sam@example.edu")
    await audit_module.log_failed_login(audit, request, "sam@example.edu", "bad password")
    await audit.log_authorization_failure(request, "MUTE_USER", "USER_MUTE", "user-2")
    await audit_module.log_csrf_failure(audit, request)
    await audit.log_data_modification(request, "DELETE", "POST", "post-1", AuditResult.SUCCESS, "user-1")

    login_ok, login_bad, denied, csrf, deleted = audit.repo.entries
    assert (login_ok.action, login_ok.resource, login_ok.result) == ("LOGIN", "AUTH", AuditResult.SUCCESS)
    assert login_bad.result is AuditResult.FAILURE
    assert login_bad.metadata == {"email": "sam@example.edu", "reason": "bad password"}
    assert denied.metadata == {"reason": "UNAUTHORIZED"}
    assert denied.result is AuditResult.FAILURE
    assert (csrf.action, csrf.resource, csrf.result) == ("CSRF_FAILURE", "SECURITY", AuditResult.FAILURE)
    assert deleted.metadata == {"resourceId": "post-1"}


@pytest.mark.asyncio
async def test_storage_failure_is_swallowed_and_logged(clock, caplog):
    audit = AuditLogger(_BrokenRepository(), clock=clock)

    with caplog.at_level(logging.ERROR, logger="velonx.audit"):
        await audit.log_security_event(_request(), "INVALID_TOKEN", "user-1")

    assert any(record.getMessage() == "audit_write_failed" for record in caplog.records)
    assert await audit.cleanup(clock.now) == 0


@pytest.mark.asyncio
async def test_query_filters_and_paginates(audit, clock):
    request = _request()
    for index in range(7):
        await audit.log_auth(request, "LOGIN", AuditResult.SUCCESS if index % 2 else AuditResult.FAILURE, f"user-{index % 3}")
        clock.advance(minutes=1)

    page = await audit.query(AuditLogFilters(page=2, page_size=3))
    assert page.pagination.total == 7
    assert page.pagination.total_pages == 3
    assert page.pagination.page == 2
    assert len(page.logs) == 3
    assert page.logs[0].timestamp > page.logs[1].timestamp

    failures = await audit.query(AuditLogFilters(result=AuditResult.FAILURE))
    assert failures.pagination.total == 4

    defaults = await audit.query()
    assert defaults.pagination.page_size == 50


@pytest.mark.asyncio
async def test_stats_counts_distinct_users_and_tops(audit, clock):
    request = _request()
    await audit.log_auth(request, "LOGIN", AuditResult.SUCCESS, "user-1")
    await audit.log_auth(request, "LOGIN", AuditResult.SUCCESS, "user-2")
    await audit.log_auth(request, "LOGIN", AuditResult.FAILURE, None)
    await audit.log_security_event(request, "RATE_LIMIT_EXCEEDED", "user-1")

    stats = await audit.get_stats()

    assert stats.total_events == 4
    assert stats.successful_events == 2
    assert stats.failed_events == 2
    assert stats.unique_users == 2
    assert stats.top_actions[0].action == "LOGIN"
    assert stats.top_actions[0].count == 3
    assert {item.resource for item in stats.top_resources} == {"AUTH", "SECURITY"}


@pytest.mark.asyncio
async def test_cleanup_removes_only_old_rows(audit, clock):
    await audit.log(AuditLogEntry(action="LOGIN", resource="AUTH", result=AuditResult.SUCCESS))
    clock.advance(days=400)
    await audit.log(AuditLogEntry(action="LOGOUT", resource="AUTH", result=AuditResult.SUCCESS))

    removed = await audit.cleanup(clock.now - timedelta(days=365))

    assert removed == 1
    assert [entry.action for entry in audit.repo.entries] == ["LOGOUT"]


@pytest.mark.asyncio
async def test_logging_never_rewrites_existing_rows(audit):
    request = _request()
    await audit.log_auth(request, "LOGIN", AuditResult.SUCCESS, "user-1")
    first = audit.repo.entries[0].model_copy(deep=True)

    await audit.log_auth(request, "LOGOUT", AuditResult.SUCCESS, "user-1")
    await audit.log_security_event(request, "BRUTE_FORCE_DETECTED", "user-1")

    assert len(audit.repo.entries) == 3
    assert audit.repo.entries[0] == first
    assert len({entry.id for entry in audit.repo.entries}) == 3
