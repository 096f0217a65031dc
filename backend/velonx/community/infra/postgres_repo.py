"""PostgreSQL persistence for users, rosters, moderation records and notifications."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple

import asyncpg

from velonx.community.domain.models import (
    ChatMessage,
    CommunityPost,
    ModerationLog,
    ModerationType,
    Notification,
    NotificationCategory,
    NotificationType,
    User,
    UserMute,
)
from velonx.community.domain.repositories import (
    MembershipDirectory,
    ModerationRepository,
    NotificationRepository,
    UserRepository,
)

_USER_COLUMNS = (
    "id, name, email, role, community_comments, community_reactions, "
    "community_mentions, community_group_updates, community_moderation"
)
_PREFERENCE_COLUMNS = tuple(category.value for category in NotificationCategory)
_LOG_COLUMNS = "id, moderator_id, target_id, type, reason, metadata, created_at"
_MUTE_COLUMNS = "id, user_id, room_id, group_id, muted_by, reason, expires_at, created_at"
_NOTIFICATION_COLUMNS = "id, user_id, title, description, type, action_url, metadata, read, created_at"


def json_field(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return dict(value)


def _optional_str(row: asyncpg.Record, key: str) -> Optional[str]:
    value = row[key]
    return str(value) if value is not None else None


def _row_to_user(row: asyncpg.Record) -> User:
    return User(
        id=str(row["id"]),
        name=row["name"],
        email=row["email"],
        role=str(row["role"]),
        community_comments=bool(row["community_comments"]),
        community_reactions=bool(row["community_reactions"]),
        community_mentions=bool(row["community_mentions"]),
        community_group_updates=bool(row["community_group_updates"]),
        community_moderation=bool(row["community_moderation"]),
    )


def _row_to_log(row: asyncpg.Record) -> ModerationLog:
    return ModerationLog(
        id=str(row["id"]),
        moderator_id=str(row["moderator_id"]),
        target_id=str(row["target_id"]),
        type=ModerationType(str(row["type"])),
        reason=row["reason"],
        metadata=json_field(row["metadata"]),
        created_at=row["created_at"],
    )


def _row_to_mute(row: asyncpg.Record) -> UserMute:
    return UserMute(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        room_id=_optional_str(row, "room_id"),
        group_id=_optional_str(row, "group_id"),
        muted_by=str(row["muted_by"]),
        reason=row["reason"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )


def _row_to_notification(row: asyncpg.Record) -> Notification:
    return Notification(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=str(row["title"]),
        description=str(row["description"]),
        type=NotificationType(str(row["type"])),
        action_url=row["action_url"],
        metadata=json_field(row["metadata"]),
        read=bool(row["read"]),
        created_at=row["created_at"],
    )


class PostgresCommunityDirectory(UserRepository, MembershipDirectory):
    """Reads users, content and rosters; only preference flags are ever written."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_user(self, user_id: str) -> Optional[User]:
        row = await self._pool.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1", user_id)
        return _row_to_user(row) if row else None

    async def update_preferences(self, user_id: str, changes: dict[str, bool]) -> Optional[User]:
        columns = [key for key in changes if key in _PREFERENCE_COLUMNS]
        if not columns:
            return await self.get_user(user_id)
        assignments = ", ".join(f"{column} = ${idx}" for idx, column in enumerate(columns, start=2))
        row = await self._pool.fetchrow(
            f"UPDATE users SET {assignments} WHERE id = $1 RETURNING {_USER_COLUMNS}",
            user_id,
            *(changes[column] for column in columns),
        )
        return _row_to_user(row) if row else None

    async def get_post(self, post_id: str) -> Optional[CommunityPost]:
        row = await self._pool.fetchrow("SELECT id, author_id, group_id FROM community_post WHERE id = $1", post_id)
        if row is None:
            return None
        return CommunityPost(id=str(row["id"]), author_id=str(row["author_id"]), group_id=_optional_str(row, "group_id"))

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        row = await self._pool.fetchrow(
            "SELECT id, author_id, room_id, group_id FROM chat_message WHERE id = $1",
            message_id,
        )
        if row is None:
            return None
        return ChatMessage(
            id=str(row["id"]),
            author_id=str(row["author_id"]),
            room_id=_optional_str(row, "room_id"),
            group_id=_optional_str(row, "group_id"),
        )

    async def room_exists(self, room_id: str) -> bool:
        return bool(await self._pool.fetchval("SELECT EXISTS(SELECT 1 FROM discussion_room WHERE id = $1)", room_id))

    async def group_exists(self, group_id: str) -> bool:
        return bool(await self._pool.fetchval("SELECT EXISTS(SELECT 1 FROM community_group WHERE id = $1)", group_id))

    async def is_room_moderator(self, user_id: str, room_id: str) -> bool:
        return await self._exists("room_moderator", "room_id", room_id, user_id)

    async def is_group_moderator(self, user_id: str, group_id: str) -> bool:
        return await self._exists("group_moderator", "group_id", group_id, user_id)

    async def is_room_member(self, user_id: str, room_id: str) -> bool:
        return await self._exists("room_member", "room_id", room_id, user_id)

    async def is_group_member(self, user_id: str, group_id: str) -> bool:
        return await self._exists("group_member", "group_id", group_id, user_id)

    async def _exists(self, table: str, scope_column: str, scope_id: str, user_id: str) -> bool:
        value = await self._pool.fetchval(
            f"SELECT EXISTS(SELECT 1 FROM {table} WHERE {scope_column} = $1 AND user_id = $2)",
            scope_id,
            user_id,
        )
        return bool(value)


class PostgresModerationRepository(ModerationRepository):
    """Stores moderation decisions in moderation_log and mutes in user_mute."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def create_log(self, log: ModerationLog) -> ModerationLog:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO moderation_log (id, moderator_id, target_id, type, reason, metadata, created_at)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
            RETURNING {_LOG_COLUMNS}
            """,
            log.id,
            log.moderator_id,
            log.target_id,
            log.type.value,
            log.reason,
            json.dumps(log.metadata),
            log.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert moderation log")
        return _row_to_log(row)

    async def list_logs(
        self,
        *,
        offset: int,
        limit: int,
        log_type: Optional[ModerationType] = None,
        moderator_id: Optional[str] = None,
    ) -> Tuple[Sequence[ModerationLog], int]:
        where = "($1::text IS NULL OR type = $1) AND ($2::text IS NULL OR moderator_id = $2)"
        type_value = log_type.value if log_type is not None else None
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_LOG_COLUMNS}
                FROM moderation_log
                WHERE {where}
                ORDER BY created_at DESC
                OFFSET $3 LIMIT $4
                """,
                type_value,
                moderator_id,
                offset,
                limit,
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM moderation_log WHERE {where}", type_value, moderator_id)
        return [_row_to_log(row) for row in rows], int(total or 0)

    async def find_active_mute(
        self,
        user_id: str,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Optional[UserMute]:
        row = await self._pool.fetchrow(
            f"""
            SELECT {_MUTE_COLUMNS}
            FROM user_mute
            WHERE user_id = $1
              AND ($2::text IS NULL OR room_id = $2)
              AND ($3::text IS NULL OR group_id = $3)
              AND expires_at > $4
            ORDER BY expires_at DESC
            LIMIT 1
            """,
            user_id,
            room_id,
            group_id,
            now,
        )
        return _row_to_mute(row) if row else None

    async def create_mute(self, mute: UserMute) -> UserMute:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO user_mute (id, user_id, room_id, group_id, muted_by, reason, expires_at, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {_MUTE_COLUMNS}
            """,
            mute.id,
            mute.user_id,
            mute.room_id,
            mute.group_id,
            mute.muted_by,
            mute.reason,
            mute.expires_at,
            mute.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert mute")
        return _row_to_mute(row)

    async def update_mute(
        self,
        mute_id: str,
        *,
        expires_at: datetime,
        reason: Optional[str],
        muted_by: str,
    ) -> UserMute:
        row = await self._pool.fetchrow(
            f"""
            UPDATE user_mute
            SET expires_at = $2, reason = $3, muted_by = $4
            WHERE id = $1
            RETURNING {_MUTE_COLUMNS}
            """,
            mute_id,
            expires_at,
            reason,
            muted_by,
        )
        if row is None:
            raise LookupError(f"mute {mute_id} vanished during update")
        return _row_to_mute(row)

    async def get_mute(self, mute_id: str) -> Optional[UserMute]:
        row = await self._pool.fetchrow(f"SELECT {_MUTE_COLUMNS} FROM user_mute WHERE id = $1", mute_id)
        return _row_to_mute(row) if row else None

    async def delete_mute(self, mute_id: str) -> None:
        await self._pool.execute("DELETE FROM user_mute WHERE id = $1", mute_id)

    async def list_active_mutes(
        self,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Sequence[UserMute]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_MUTE_COLUMNS}
            FROM user_mute
            WHERE ($1::text IS NULL OR room_id = $1)
              AND ($2::text IS NULL OR group_id = $2)
              AND expires_at > $3
            ORDER BY expires_at ASC
            """,
            room_id,
            group_id,
            now,
        )
        return [_row_to_mute(row) for row in rows]


class PostgresNotificationRepository(NotificationRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def create(self, notification: Notification) -> Notification:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO notification (id, user_id, title, description, type, action_url, metadata, read, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9)
            RETURNING {_NOTIFICATION_COLUMNS}
            """,
            notification.id,
            notification.user_id,
            notification.title,
            notification.description,
            notification.type.value,
            notification.action_url,
            json.dumps(notification.metadata),
            notification.read,
            notification.created_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert notification")
        return _row_to_notification(row)

    async def get(self, notification_id: str) -> Optional[Notification]:
        row = await self._pool.fetchrow(
            f"SELECT {_NOTIFICATION_COLUMNS} FROM notification WHERE id = $1",
            notification_id,
        )
        return _row_to_notification(row) if row else None

    async def list_for_user(
        self,
        user_id: str,
        *,
        offset: int,
        limit: int,
        read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> Tuple[Sequence[Notification], int]:
        where = "user_id = $1 AND ($2::boolean IS NULL OR read = $2) AND ($3::text IS NULL OR type = $3)"
        type_value = notification_type.value if notification_type is not None else None
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_NOTIFICATION_COLUMNS}
                FROM notification
                WHERE {where}
                ORDER BY created_at DESC
                OFFSET $4 LIMIT $5
                """,
                user_id,
                read,
                type_value,
                offset,
                limit,
            )
            total = await conn.fetchval(f"SELECT COUNT(*) FROM notification WHERE {where}", user_id, read, type_value)
        return [_row_to_notification(row) for row in rows], int(total or 0)

    async def count_unread(self, user_id: str) -> int:
        value = await self._pool.fetchval(
            "SELECT COUNT(*) FROM notification WHERE user_id = $1 AND read = FALSE",
            user_id,
        )
        return int(value or 0)

    async def mark_read(self, notification_id: str) -> Notification:
        row = await self._pool.fetchrow(
            f"UPDATE notification SET read = TRUE WHERE id = $1 RETURNING {_NOTIFICATION_COLUMNS}",
            notification_id,
        )
        if row is None:
            raise LookupError(f"notification {notification_id} vanished during update")
        return _row_to_notification(row)

    async def mark_all_read(self, user_id: str) -> int:
        status = await self._pool.execute(
            "UPDATE notification SET read = TRUE WHERE user_id = $1 AND read = FALSE",
            user_id,
        )
        return _affected(status)

    async def delete(self, notification_id: str) -> None:
        await self._pool.execute("DELETE FROM notification WHERE id = $1", notification_id)

    async def delete_all(self, user_id: str) -> int:
        status = await self._pool.execute("DELETE FROM notification WHERE user_id = $1", user_id)
        return _affected(status)


def _affected(status: str) -> int:
    """Parse the row count from an asyncpg command tag such as ``UPDATE 3``."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0
