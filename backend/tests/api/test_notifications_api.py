from __future__ import annotations

import pytest

from velonx.community.domain.models import NotificationType


async def _notify(services, clock, user_id="user-1", count=1):
    created = []
    for index in range(count):
        created.append(
            await services.notifications.create_notification(
                user_id=user_id, title=f"Note {index}", description="body", type=NotificationType.INFO
            )
        )
        clock.advance(seconds=1)
    return created


@pytest.mark.asyncio
async def test_list_and_count(api_client, services, clock, auth_headers):
    await _notify(services, clock, count=3)
    await _notify(services, clock, user_id="user-2")

    response = await api_client.get("/api/notifications", params={"pageSize": 2}, headers=auth_headers("user-1"))

    assert response.status_code == 200
    data = response.json()["data"]
    assert [n["title"] for n in data["notifications"]] == ["Note 2", "Note 1"]
    assert data["unreadCount"] == 3
    assert data["pagination"]["totalPages"] == 2

    count = await api_client.get("/api/notifications/unread-count", headers=auth_headers("user-1"))
    assert count.json()["data"] == {"count": 3}


@pytest.mark.asyncio
async def test_mark_read_and_ownership(api_client, services, clock, auth_headers):
    [note] = await _notify(services, clock)

    forbidden = await api_client.patch(f"/api/notifications/{note.id}", headers=auth_headers("user-2"))
    assert forbidden.status_code == 403

    marked = await api_client.patch(f"/api/notifications/{note.id}", headers=auth_headers("user-1"))
    assert marked.status_code == 200
    assert marked.json()["data"]["read"] is True

    missing = await api_client.patch("/api/notifications/nope", headers=auth_headers("user-1"))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_bulk_read_and_delete(api_client, services, clock, auth_headers):
    await _notify(services, clock, count=2)

    read_all = await api_client.post("/api/notifications/mark-all-read", headers=auth_headers("user-1"))
    assert read_all.json()["data"] == {"count": 2}

    [note] = await _notify(services, clock)
    deleted = await api_client.delete(f"/api/notifications/{note.id}", headers=auth_headers("user-1"))
    assert deleted.json() == {"success": True, "message": "Notification deleted successfully"}

    cleared = await api_client.delete("/api/notifications", headers=auth_headers("user-1"))
    assert cleared.json()["data"] == {"count": 2}
    assert services.notification_repository.items == {}


@pytest.mark.asyncio
async def test_preferences_round_trip_gates_helpers(api_client, services, auth_headers):
    initial = await api_client.get("/api/notifications/preferences", headers=auth_headers("user-1"))
    assert initial.json()["data"]["communityComments"] is True

    updated = await api_client.patch(
        "/api/notifications/preferences",
        json={"communityComments": False},
        headers=auth_headers("user-1"),
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["communityComments"] is False
    assert updated.json()["data"]["communityMentions"] is True

    result = await services.notifications.create_post_comment_notification(
        post_id="post-1",
        post_author_id="user-1",
        post_content="hello",
        commenter_name="Mona",
        comment_content="hi",
    )
    assert result is None


@pytest.mark.asyncio
async def test_preferences_reject_unknown_fields(api_client, auth_headers):
    response = await api_client.patch(
        "/api/notifications/preferences",
        json={"communitySpam": True},
        headers=auth_headers("user-1"),
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
