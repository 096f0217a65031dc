"""Service helpers for user notifications."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

from velonx.community.domain.exceptions import AuthorizationError, NotFoundError, ValidationError
from velonx.community.domain.models import (
	Notification,
	NotificationCategory,
	NotificationPage,
	NotificationType,
	Pagination,
	total_pages,
)
from velonx.community.domain.preferences import NotificationPreferenceGate
from velonx.community.domain.repositories import NotificationRepository, UserRepository
from velonx.obs import metrics as obs_metrics

_PREVIEW_LENGTH = 50
_MAX_PAGE_SIZE = 100


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _preview(text: str, length: int = _PREVIEW_LENGTH) -> str:
	text = text.strip()
	if len(text) <= length:
		return text
	return f"{text[:length]}..."


class NotificationService:
	"""Encapsulates notification persistence, queries and the gated community helpers."""

	def __init__(
		self,
		*,
		repository: NotificationRepository,
		users: UserRepository,
		gate: Optional[NotificationPreferenceGate] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.repo = repository
		self.users = users
		self.gate = gate or NotificationPreferenceGate(users)
		self._clock = clock

	async def create_notification(
		self,
		*,
		user_id: str,
		title: str,
		description: str,
		type: NotificationType | str,
		action_url: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> Notification:
		if await self.users.get_user(user_id) is None:
			raise ValidationError("Invalid userId: User does not exist")
		try:
			notification_type = NotificationType(type)
		except ValueError:
			allowed = ", ".join(item.value for item in NotificationType)
			raise ValidationError(f"Invalid notification type. Must be one of: {allowed}") from None
		notification = Notification(
			id=str(uuid4()),
			user_id=user_id,
			title=title,
			description=description,
			type=notification_type,
			action_url=action_url,
			metadata={key: value for key, value in (metadata or {}).items() if value is not None},
			read=False,
			created_at=self._clock(),
		)
		stored = await self.repo.create(notification)
		obs_metrics.inc_notification("created")
		return stored

	async def list_notifications(
		self,
		user_id: str,
		*,
		page: int = 1,
		page_size: int = 20,
		read: Optional[bool] = None,
		type: Optional[NotificationType] = None,
	) -> NotificationPage:
		page = max(1, page)
		page_size = max(1, min(page_size, _MAX_PAGE_SIZE))
		items, total = await self.repo.list_for_user(
			user_id,
			offset=(page - 1) * page_size,
			limit=page_size,
			read=read,
			notification_type=type,
		)
		unread = await self.repo.count_unread(user_id)
		return NotificationPage(
			notifications=list(items),
			unread_count=unread,
			pagination=Pagination(
				page=page,
				page_size=page_size,
				total_count=total,
				total_pages=total_pages(total, page_size),
			),
		)

	async def get_notification(self, notification_id: str) -> Notification:
		notification = await self.repo.get(notification_id)
		if notification is None:
			raise NotFoundError("Notification")
		return notification

	async def _owned(self, notification_id: str, user_id: str) -> Notification:
		notification = await self.get_notification(notification_id)
		if notification.user_id != user_id:
			raise AuthorizationError("You are not authorized to access this notification")
		return notification

	async def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
		await self._owned(notification_id, user_id)
		return await self.repo.mark_read(notification_id)

	async def mark_all_as_read(self, user_id: str) -> int:
		return await self.repo.mark_all_read(user_id)

	async def delete_notification(self, notification_id: str, user_id: str) -> None:
		await self._owned(notification_id, user_id)
		await self.repo.delete(notification_id)

	async def delete_all_notifications(self, user_id: str) -> int:
		return await self.repo.delete_all(user_id)

	async def get_unread_count(self, user_id: str) -> int:
		return await self.repo.count_unread(user_id)

	async def _create_gated(
		self,
		category: NotificationCategory,
		*,
		user_id: str,
		**fields: Any,
	) -> Optional[Notification]:
		if not await self.gate.should_notify(user_id, category):
			obs_metrics.inc_notification("suppressed")
			return None
		return await self.create_notification(user_id=user_id, **fields)

	async def create_post_comment_notification(
		self,
		*,
		post_id: str,
		post_author_id: str,
		post_content: str,
		commenter_name: str,
		comment_content: str,
	) -> Optional[Notification]:
		return await self._create_gated(
			NotificationCategory.COMMENTS,
			user_id=post_author_id,
			title="New Comment on Your Post",
			description=f'{commenter_name} commented on your post: "{_preview(post_content)}"',
			type=NotificationType.COMMENT,
			action_url=f"/community/posts/{post_id}",
			metadata={
				"postId": post_id,
				"commentContent": _preview(comment_content, 100),
				"eventType": "post_comment",
			},
		)

	async def create_post_reaction_notification(
		self,
		*,
		post_id: str,
		post_author_id: str,
		post_content: str,
		reactor_name: str,
		reaction_type: str,
	) -> Optional[Notification]:
		return await self._create_gated(
			NotificationCategory.REACTIONS,
			user_id=post_author_id,
			title="New Reaction on Your Post",
			description=f'{reactor_name} reacted {reaction_type.lower()} to your post: "{_preview(post_content)}"',
			type=NotificationType.REACTION,
			action_url=f"/community/posts/{post_id}",
			metadata={"postId": post_id, "reactionType": reaction_type, "eventType": "post_reaction"},
		)

	async def create_mention_notification(
		self,
		*,
		mentioned_user_id: str,
		mentioner_name: str,
		content_type: str,
		content_id: str,
		content_preview: str,
		room_id: Optional[str] = None,
		group_id: Optional[str] = None,
	) -> Optional[Notification]:
		if room_id:
			action_url = f"/community/rooms/{room_id}"
		elif group_id:
			action_url = f"/community/groups/{group_id}"
		else:
			action_url = f"/community/posts/{content_id}"
		return await self._create_gated(
			NotificationCategory.MENTIONS,
			user_id=mentioned_user_id,
			title="You Were Mentioned",
			description=f'{mentioner_name} mentioned you in a {content_type}: "{_preview(content_preview)}"',
			type=NotificationType.MENTION,
			action_url=action_url,
			metadata={
				"contentType": content_type,
				"contentId": content_id,
				"roomId": room_id,
				"groupId": group_id,
				"eventType": "mention",
			},
		)

	async def create_group_join_request_approved_notification(
		self,
		*,
		request_id: str,
		group_id: str,
		group_name: str,
		user_id: str,
		approved_by_name: str,
	) -> Optional[Notification]:
		return await self._create_gated(
			NotificationCategory.GROUP_UPDATES,
			user_id=user_id,
			title="Group Join Request Approved",
			description=f'{approved_by_name} approved your request to join "{group_name}". Welcome to the group!',
			type=NotificationType.JOIN_REQUEST_APPROVED,
			action_url=f"/community/groups/{group_id}",
			metadata={"requestId": request_id, "groupId": group_id, "eventType": "group_join_approved"},
		)

	async def create_moderator_assigned_notification(
		self,
		*,
		user_id: str,
		entity_type: str,
		entity_id: str,
		entity_name: str,
		assigned_by_name: str,
	) -> Optional[Notification]:
		if entity_type not in ("room", "group"):
			raise ValidationError("entity_type must be 'room' or 'group'")
		return await self._create_gated(
			NotificationCategory.MODERATION,
			user_id=user_id,
			title="Moderator Role Assigned",
			description=f'{assigned_by_name} assigned you as a moderator of the {entity_type} "{entity_name}"',
			type=NotificationType.MODERATOR_ASSIGNED,
			action_url=f"/community/{entity_type}s/{entity_id}",
			metadata={"entityType": entity_type, "entityId": entity_id, "eventType": "moderator_assigned"},
		)

	async def create_room_message_notification(
		self,
		*,
		room_id: str,
		room_name: str,
		recipient_id: str,
		sender_name: str,
		message_preview: str,
	) -> Optional[Notification]:
		return await self._create_gated(
			NotificationCategory.GROUP_UPDATES,
			user_id=recipient_id,
			title=f"New Message in {room_name}",
			description=f"{sender_name}: {_preview(message_preview)}",
			type=NotificationType.INFO,
			action_url=f"/community/rooms/{room_id}",
			metadata={"roomId": room_id, "eventType": "room_message"},
		)

	async def create_group_message_notification(
		self,
		*,
		group_id: str,
		group_name: str,
		recipient_id: str,
		sender_name: str,
		message_preview: str,
	) -> Optional[Notification]:
		return await self._create_gated(
			NotificationCategory.GROUP_UPDATES,
			user_id=recipient_id,
			title=f"New Message in {group_name}",
			description=f"{sender_name}: {_preview(message_preview)}",
			type=NotificationType.INFO,
			action_url=f"/community/groups/{group_id}",
			metadata={"groupId": group_id, "eventType": "group_message"},
		)
