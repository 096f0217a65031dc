"""Repository contracts for the community moderation/notification services.

In-memory implementations live here as well; they back local development,
``STORAGE_BACKEND=memory`` and the test-suite. PostgreSQL implementations
live in ``velonx.community.infra.postgres_repo``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, Tuple

from velonx.community.domain.models import (
    ChatMessage,
    CommunityPost,
    ModerationLog,
    ModerationType,
    Notification,
    NotificationType,
    User,
    UserMute,
)


class UserRepository(Protocol):
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    async def update_preferences(self, user_id: str, changes: dict[str, bool]) -> Optional[User]:
        ...


class MembershipDirectory(Protocol):
    """Read-only view over content, rooms, groups and their rosters."""

    async def get_post(self, post_id: str) -> Optional[CommunityPost]:
        ...

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        ...

    async def room_exists(self, room_id: str) -> bool:
        ...

    async def group_exists(self, group_id: str) -> bool:
        ...

    async def is_room_moderator(self, user_id: str, room_id: str) -> bool:
        ...

    async def is_group_moderator(self, user_id: str, group_id: str) -> bool:
        ...

    async def is_room_member(self, user_id: str, room_id: str) -> bool:
        ...

    async def is_group_member(self, user_id: str, group_id: str) -> bool:
        ...


class ModerationRepository(Protocol):
    async def create_log(self, log: ModerationLog) -> ModerationLog:
        ...

    async def list_logs(
        self,
        *,
        offset: int,
        limit: int,
        log_type: Optional[ModerationType] = None,
        moderator_id: Optional[str] = None,
    ) -> Tuple[Sequence[ModerationLog], int]:
        ...

    async def find_active_mute(
        self,
        user_id: str,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Optional[UserMute]:
        ...

    async def create_mute(self, mute: UserMute) -> UserMute:
        ...

    async def update_mute(
        self,
        mute_id: str,
        *,
        expires_at: datetime,
        reason: Optional[str],
        muted_by: str,
    ) -> UserMute:
        ...

    async def get_mute(self, mute_id: str) -> Optional[UserMute]:
        ...

    async def delete_mute(self, mute_id: str) -> None:
        ...

    async def list_active_mutes(
        self,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Sequence[UserMute]:
        ...


class NotificationRepository(Protocol):
    async def create(self, notification: Notification) -> Notification:
        ...

    async def get(self, notification_id: str) -> Optional[Notification]:
        ...

    async def list_for_user(
        self,
        user_id: str,
        *,
        offset: int,
        limit: int,
        read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> Tuple[Sequence[Notification], int]:
        ...

    async def count_unread(self, user_id: str) -> int:
        ...

    async def mark_read(self, notification_id: str) -> Notification:
        ...

    async def mark_all_read(self, user_id: str) -> int:
        ...

    async def delete(self, notification_id: str) -> None:
        ...

    async def delete_all(self, user_id: str) -> int:
        ...


def _scope_matches(mute: UserMute, room_id: Optional[str], group_id: Optional[str]) -> bool:
    if room_id is not None and mute.room_id != room_id:
        return False
    if group_id is not None and mute.group_id != group_id:
        return False
    return True


class InMemoryCommunityDirectory(UserRepository, MembershipDirectory):
    """Users, content and rosters held in dictionaries for development and tests."""

    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self.posts: dict[str, CommunityPost] = {}
        self.messages: dict[str, ChatMessage] = {}
        self.rooms: set[str] = set()
        self.groups: set[str] = set()
        self.room_members: set[tuple[str, str]] = set()
        self.group_members: set[tuple[str, str]] = set()
        self.room_moderators: set[tuple[str, str]] = set()
        self.group_moderators: set[tuple[str, str]] = set()

    def add_user(self, user_id: str, **fields: Any) -> User:
        user = User(id=user_id, **fields)
        self.users[user_id] = user
        return user

    def add_room(self, room_id: str, *, members: Sequence[str] = (), moderators: Sequence[str] = ()) -> None:
        self.rooms.add(room_id)
        for user_id in members:
            self.room_members.add((room_id, user_id))
        for user_id in moderators:
            self.room_moderators.add((room_id, user_id))
            self.room_members.add((room_id, user_id))

    def add_group(self, group_id: str, *, members: Sequence[str] = (), moderators: Sequence[str] = ()) -> None:
        self.groups.add(group_id)
        for user_id in members:
            self.group_members.add((group_id, user_id))
        for user_id in moderators:
            self.group_moderators.add((group_id, user_id))
            self.group_members.add((group_id, user_id))

    def add_post(self, post_id: str, *, author_id: str, group_id: Optional[str] = None) -> CommunityPost:
        post = CommunityPost(id=post_id, author_id=author_id, group_id=group_id)
        self.posts[post_id] = post
        return post

    def add_message(
        self,
        message_id: str,
        *,
        author_id: str,
        room_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> ChatMessage:
        message = ChatMessage(id=message_id, author_id=author_id, room_id=room_id, group_id=group_id)
        self.messages[message_id] = message
        return message

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def update_preferences(self, user_id: str, changes: dict[str, bool]) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None:
            return None
        updated = user.model_copy(update=changes)
        self.users[user_id] = updated
        return updated

    async def get_post(self, post_id: str) -> Optional[CommunityPost]:
        return self.posts.get(post_id)

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        return self.messages.get(message_id)

    async def room_exists(self, room_id: str) -> bool:
        return room_id in self.rooms

    async def group_exists(self, group_id: str) -> bool:
        return group_id in self.groups

    async def is_room_moderator(self, user_id: str, room_id: str) -> bool:
        return (room_id, user_id) in self.room_moderators

    async def is_group_moderator(self, user_id: str, group_id: str) -> bool:
        return (group_id, user_id) in self.group_moderators

    async def is_room_member(self, user_id: str, room_id: str) -> bool:
        return (room_id, user_id) in self.room_members

    async def is_group_member(self, user_id: str, group_id: str) -> bool:
        return (group_id, user_id) in self.group_members


class InMemoryModerationRepository(ModerationRepository):
    """Simple repository implementation for development and tests."""

    def __init__(self) -> None:
        self.logs: list[ModerationLog] = []
        self.mutes: dict[str, UserMute] = {}

    async def create_log(self, log: ModerationLog) -> ModerationLog:
        self.logs.append(log)
        return log

    async def list_logs(
        self,
        *,
        offset: int,
        limit: int,
        log_type: Optional[ModerationType] = None,
        moderator_id: Optional[str] = None,
    ) -> Tuple[Sequence[ModerationLog], int]:
        items = [
            log
            for log in self.logs
            if (log_type is None or log.type == log_type)
            and (moderator_id is None or log.moderator_id == moderator_id)
        ]
        items.sort(key=lambda log: log.created_at, reverse=True)
        return items[offset : offset + limit], len(items)

    async def find_active_mute(
        self,
        user_id: str,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Optional[UserMute]:
        for mute in self.mutes.values():
            if mute.user_id == user_id and mute.is_active(now) and _scope_matches(mute, room_id, group_id):
                return mute
        return None

    async def create_mute(self, mute: UserMute) -> UserMute:
        self.mutes[mute.id] = mute
        return mute

    async def update_mute(
        self,
        mute_id: str,
        *,
        expires_at: datetime,
        reason: Optional[str],
        muted_by: str,
    ) -> UserMute:
        updated = self.mutes[mute_id].model_copy(
            update={"expires_at": expires_at, "reason": reason, "muted_by": muted_by}
        )
        self.mutes[mute_id] = updated
        return updated

    async def get_mute(self, mute_id: str) -> Optional[UserMute]:
        return self.mutes.get(mute_id)

    async def delete_mute(self, mute_id: str) -> None:
        self.mutes.pop(mute_id, None)

    async def list_active_mutes(
        self,
        *,
        room_id: Optional[str],
        group_id: Optional[str],
        now: datetime,
    ) -> Sequence[UserMute]:
        items = [
            mute for mute in self.mutes.values() if mute.is_active(now) and _scope_matches(mute, room_id, group_id)
        ]
        return sorted(items, key=lambda mute: mute.expires_at)


class InMemoryNotificationRepository(NotificationRepository):
    """Simple repository implementation for development and tests."""

    def __init__(self) -> None:
        self.items: dict[str, Notification] = {}

    async def create(self, notification: Notification) -> Notification:
        self.items[notification.id] = notification
        return notification

    async def get(self, notification_id: str) -> Optional[Notification]:
        return self.items.get(notification_id)

    async def list_for_user(
        self,
        user_id: str,
        *,
        offset: int,
        limit: int,
        read: Optional[bool] = None,
        notification_type: Optional[NotificationType] = None,
    ) -> Tuple[Sequence[Notification], int]:
        items = [
            item
            for item in self.items.values()
            if item.user_id == user_id
            and (read is None or item.read == read)
            and (notification_type is None or item.type == notification_type)
        ]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items[offset : offset + limit], len(items)

    async def count_unread(self, user_id: str) -> int:
        return sum(1 for item in self.items.values() if item.user_id == user_id and not item.read)

    async def mark_read(self, notification_id: str) -> Notification:
        updated = self.items[notification_id].model_copy(update={"read": True})
        self.items[notification_id] = updated
        return updated

    async def mark_all_read(self, user_id: str) -> int:
        count = 0
        for key, item in list(self.items.items()):
            if item.user_id == user_id and not item.read:
                self.items[key] = item.model_copy(update={"read": True})
                count += 1
        return count

    async def delete(self, notification_id: str) -> None:
        self.items.pop(notification_id, None)

    async def delete_all(self, user_id: str) -> int:
        doomed = [key for key, item in self.items.items() if item.user_id == user_id]
        for key in doomed:
            del self.items[key]
        return len(doomed)
