from __future__ import annotations

import pytest

from velonx.security.audit import AuditLogEntry, AuditResult


async def _seed(services, clock):
	for user_id, action, result in (
		("user-1", "LOGIN", AuditResult.SUCCESS),
		("user-1", "LOGIN", AuditResult.FAILURE),
		("user-2", "MUTE_USER", AuditResult.FAILURE),
	):
		await services.audit.log(
			AuditLogEntry(user_id=user_id, action=action, resource="AUTH" if action == "LOGIN" else "USER_MUTE", result=result)
		)
		clock.advance(minutes=1)


@pytest.mark.asyncio
async def test_requires_admin_role(api_client, auth_headers):
	response = await api_client.get("/api/admin/audit-logs", headers=auth_headers("user-1"))

	assert response.status_code == 403
	assert response.json()["error"]["message"] == "Admin role required"


@pytest.mark.asyncio
async def test_list_with_filters(api_client, services, clock, auth_headers):
	await _seed(services, clock)

	response = await api_client.get(
		"/api/admin/audit-logs",
		params={"result": "failure", "pageSize": 1},
		headers=auth_headers("admin-1", "admin"),
	)

	assert response.status_code == 200
	body = response.json()
	assert [entry["action"] for entry in body["data"]] == ["MUTE_USER"]
	assert body["data"][0]["userId"] == "user-2"
	assert body["pagination"] == {"page": 1, "pageSize": 1, "total": 2, "totalPages": 2}


@pytest.mark.asyncio
async def test_stats(api_client, services, clock, auth_headers):
	await _seed(services, clock)

	response = await api_client.get("/api/admin/audit-logs/stats", headers=auth_headers("admin-1", "admin"))

	data = response.json()["data"]
	assert data["totalEvents"] == 3
	assert data["successfulEvents"] == 1
	assert data["failedEvents"] == 2
	assert data["uniqueUsers"] == 2
	assert data["topActions"][0] == {"action": "LOGIN", "count": 2}


@pytest.mark.asyncio
async def test_cleanup_records_its_own_entry(api_client, services, clock, auth_headers):
	await _seed(services, clock)

	response = await api_client.post(
		"/api/admin/audit-logs/cleanup",
		json={"olderThanDays": 1},
		headers=auth_headers("admin-1", "admin"),
	)

	assert response.status_code == 200
	assert response.json()["data"]["removed"] == 3
	[entry] = services.audit_repository.entries
	assert entry.action == "DELETE"
	assert entry.resource == "AUDIT_LOG"
	assert entry.user_id == "admin-1"
	assert entry.metadata["removed"] == 3
