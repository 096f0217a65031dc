"""Domain records for moderation, notifications and user preferences."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModerationType(str, Enum):
	CONTENT_FLAG = "CONTENT_FLAG"
	USER_MUTE = "USER_MUTE"
	USER_KICK = "USER_KICK"
	POST_PIN = "POST_PIN"
	POST_UNPIN = "POST_UNPIN"
	MESSAGE_DELETE = "MESSAGE_DELETE"
	POST_DELETE = "POST_DELETE"


class ContentType(str, Enum):
	POST = "POST"
	MESSAGE = "MESSAGE"


class NotificationType(str, Enum):
	INFO = "INFO"
	SUCCESS = "SUCCESS"
	WARNING = "WARNING"
	ERROR = "ERROR"
	EVENT = "EVENT"
	AWARD = "AWARD"
	MENTOR = "MENTOR"
	PROJECT = "PROJECT"
	COMMENT = "COMMENT"
	REACTION = "REACTION"
	MENTION = "MENTION"
	JOIN_REQUEST_APPROVED = "JOIN_REQUEST_APPROVED"
	MODERATOR_ASSIGNED = "MODERATOR_ASSIGNED"
	GROUP_UPDATE = "GROUP_UPDATE"
	MODERATION = "MODERATION"


class NotificationCategory(str, Enum):
	"""Preference categories; each maps onto one boolean column of the user row."""

	COMMENTS = "community_comments"
	REACTIONS = "community_reactions"
	MENTIONS = "community_mentions"
	GROUP_UPDATES = "community_group_updates"
	MODERATION = "community_moderation"


class User(BaseModel):
	id: str
	name: Optional[str] = None
	email: Optional[str] = None
	role: str = "STUDENT"
	community_comments: bool = True
	community_reactions: bool = True
	community_mentions: bool = True
	community_group_updates: bool = True
	community_moderation: bool = True

	model_config = ConfigDict(from_attributes=True)

	def preference(self, category: NotificationCategory) -> bool:
		return bool(getattr(self, category.value))


class NotificationPreferences(BaseModel):
	community_comments: bool = True
	community_reactions: bool = True
	community_mentions: bool = True
	community_group_updates: bool = True
	community_moderation: bool = True

	model_config = ConfigDict(from_attributes=True)


class CommunityPost(BaseModel):
	id: str
	author_id: str
	group_id: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class ChatMessage(BaseModel):
	id: str
	author_id: str
	room_id: Optional[str] = None
	group_id: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class ModerationLog(BaseModel):
	"""Append-only record of a moderator decision."""

	id: str
	moderator_id: str
	target_id: str
	type: ModerationType
	reason: Optional[str] = None
	metadata: dict[str, Any] = Field(default_factory=dict)
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class UserMute(BaseModel):
	"""Time-boxed posting restriction scoped to exactly one room or group."""

	id: str
	user_id: str
	room_id: Optional[str] = None
	group_id: Optional[str] = None
	muted_by: str
	reason: Optional[str] = None
	expires_at: datetime
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)

	def is_active(self, now: datetime) -> bool:
		return self.expires_at > now


class Notification(BaseModel):
	id: str
	user_id: str
	title: str
	description: str
	type: NotificationType
	action_url: Optional[str] = None
	metadata: dict[str, Any] = Field(default_factory=dict)
	read: bool = False
	created_at: datetime

	model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
	page: int
	page_size: int
	total_count: int
	total_pages: int


class NotificationPage(BaseModel):
	notifications: list[Notification]
	unread_count: int
	pagination: Pagination


class ModerationLogPage(BaseModel):
	logs: list[ModerationLog]
	pagination: Pagination


def total_pages(total: int, page_size: int) -> int:
	if page_size <= 0:
		return 0
	return (total + page_size - 1) // page_size
