"""Moderation policy: content flags, scoped mutes and the moderation audit trail."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

from velonx.community.domain.exceptions import AuthorizationError, NotFoundError, ValidationError
from velonx.community.domain.models import (
	ContentType,
	ModerationLog,
	ModerationLogPage,
	ModerationType,
	NotificationType,
	Pagination,
	UserMute,
	total_pages,
)
from velonx.community.domain.notifications_service import NotificationService
from velonx.community.domain.repositories import MembershipDirectory, ModerationRepository, UserRepository
from velonx.infra.best_effort import run_best_effort
from velonx.obs import metrics as obs_metrics

_LOG = logging.getLogger(__name__)

MAX_MUTE_MINUTES = 43200


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


def _compact(values: dict[str, Any]) -> dict[str, Any]:
	return {key: value for key, value in values.items() if value is not None}


class ModerationService:
	"""Checks moderator rights per room/group, then mutates, logs and notifies in that order."""

	def __init__(
		self,
		*,
		repository: ModerationRepository,
		users: UserRepository,
		directory: MembershipDirectory,
		notifications: NotificationService,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self.repo = repository
		self.users = users
		self.directory = directory
		self.notifications = notifications
		self._clock = clock

	async def flag_content(
		self,
		content_id: str,
		content_type: ContentType | str,
		moderator_id: str,
		reason: Optional[str] = None,
	) -> ModerationLog:
		try:
			kind = ContentType(content_type)
		except ValueError:
			raise ValidationError("contentType must be POST or MESSAGE") from None
		if await self.users.get_user(moderator_id) is None:
			raise ValidationError("Invalid moderatorId: User does not exist")

		room_id: Optional[str] = None
		group_id: Optional[str] = None
		if kind is ContentType.POST:
			post = await self.directory.get_post(content_id)
			if post is None:
				raise NotFoundError("Post")
			group_id = post.group_id
			author_id = post.author_id
		else:
			message = await self.directory.get_message(content_id)
			if message is None:
				raise NotFoundError("Chat message")
			room_id = message.room_id
			group_id = None if room_id else message.group_id
			author_id = message.author_id

		await self._require_scope_moderator(moderator_id, room_id=room_id, group_id=group_id)

		log = await self.log_moderation_action(
			ModerationType.CONTENT_FLAG,
			moderator_id,
			content_id,
			reason,
			{
				"contentType": kind.value,
				"roomId": room_id,
				"groupId": group_id,
				"authorId": author_id,
			},
		)

		noun = kind.value.lower()
		description = f"Your {noun} has been flagged by a moderator."
		if reason:
			description = f"{description} Reason: {reason}"
		await run_best_effort(
			"moderation.flag_notification",
			self.notifications.create_notification(
				user_id=author_id,
				title="Content Flagged",
				description=description,
				type=NotificationType.WARNING,
				metadata={
					"contentId": content_id,
					"contentType": kind.value,
					"moderatorId": moderator_id,
					"reason": reason,
				},
			),
			logger=_LOG,
		)
		return log

	async def mute_user(
		self,
		user_id: str,
		*,
		room_id: Optional[str] = None,
		group_id: Optional[str] = None,
		moderator_id: str,
		duration_minutes: int,
		reason: Optional[str] = None,
	) -> UserMute:
		if not room_id and not group_id:
			raise ValidationError("Either roomId or groupId must be specified")
		if room_id and group_id:
			raise ValidationError("Cannot specify both roomId and groupId")
		if duration_minutes <= 0:
			raise ValidationError("Duration must be a positive number")
		if duration_minutes > MAX_MUTE_MINUTES:
			raise ValidationError("Duration cannot exceed 30 days")

		if await self.users.get_user(user_id) is None:
			raise NotFoundError("User")
		if await self.users.get_user(moderator_id) is None:
			raise ValidationError("Invalid moderatorId: User does not exist")
		if user_id == moderator_id:
			raise ValidationError("Cannot mute yourself")

		if room_id:
			if not await self.directory.room_exists(room_id):
				raise NotFoundError("Discussion room")
			await self._require_scope_moderator(moderator_id, room_id=room_id)
			if not await self.directory.is_room_member(user_id, room_id):
				raise ValidationError("User is not a member of this room")
		elif group_id:
			if not await self.directory.group_exists(group_id):
				raise NotFoundError("Community group")
			await self._require_scope_moderator(moderator_id, group_id=group_id)
			if not await self.directory.is_group_member(user_id, group_id):
				raise ValidationError("User is not a member of this group")

		now = self._clock()
		expires_at = now + timedelta(minutes=duration_minutes)
		# read-then-write: concurrent mutes for the same scope resolve last-writer-wins
		existing = await self.repo.find_active_mute(user_id, room_id=room_id, group_id=group_id, now=now)
		if existing is not None:
			mute = await self.repo.update_mute(existing.id, expires_at=expires_at, reason=reason, muted_by=moderator_id)
		else:
			mute = await self.repo.create_mute(
				UserMute(
					id=str(uuid4()),
					user_id=user_id,
					room_id=room_id,
					group_id=group_id,
					muted_by=moderator_id,
					reason=reason,
					expires_at=expires_at,
					created_at=now,
				)
			)

		await self.log_moderation_action(
			ModerationType.USER_MUTE,
			moderator_id,
			user_id,
			reason,
			{
				"roomId": room_id,
				"groupId": group_id,
				"duration": duration_minutes,
				"expiresAt": expires_at.isoformat(),
			},
		)

		context_name = "room" if room_id else "group"
		description = f"You have been muted in a {context_name} for {duration_minutes} minutes."
		if reason:
			description = f"{description} Reason: {reason}"
		await run_best_effort(
			"moderation.mute_notification",
			self.notifications.create_notification(
				user_id=user_id,
				title="You Have Been Muted",
				description=description,
				type=NotificationType.WARNING,
				metadata={
					"moderatorId": moderator_id,
					"roomId": room_id,
					"groupId": group_id,
					"duration": duration_minutes,
					"expiresAt": expires_at.isoformat(),
					"reason": reason,
				},
			),
			logger=_LOG,
		)
		return mute

	async def unmute_user(self, mute_id: str, moderator_id: str) -> UserMute:
		mute = await self.repo.get_mute(mute_id)
		if mute is None:
			raise NotFoundError("Mute record")
		await self._require_scope_moderator(moderator_id, room_id=mute.room_id, group_id=mute.group_id)

		await self.repo.delete_mute(mute_id)
		await self.log_moderation_action(
			ModerationType.USER_MUTE,
			moderator_id,
			mute.user_id,
			"User unmuted",
			{
				"action": "unmute",
				"muteId": mute_id,
				"roomId": mute.room_id,
				"groupId": mute.group_id,
			},
		)

		context_name = "room" if mute.room_id else "group"
		await run_best_effort(
			"moderation.unmute_notification",
			self.notifications.create_notification(
				user_id=mute.user_id,
				title="You Have Been Unmuted",
				description=f"You have been unmuted in a {context_name} and can now send messages again.",
				type=NotificationType.INFO,
				metadata={"moderatorId": moderator_id, "roomId": mute.room_id, "groupId": mute.group_id},
			),
			logger=_LOG,
		)
		return mute

	async def is_user_muted(
		self,
		user_id: str,
		room_id: Optional[str] = None,
		group_id: Optional[str] = None,
	) -> bool:
		mute = await self.repo.find_active_mute(user_id, room_id=room_id, group_id=group_id, now=self._clock())
		return mute is not None

	async def log_moderation_action(
		self,
		type: ModerationType,
		moderator_id: str,
		target_id: str,
		reason: Optional[str] = None,
		metadata: Optional[dict[str, Any]] = None,
	) -> ModerationLog:
		log = await self.repo.create_log(
			ModerationLog(
				id=str(uuid4()),
				moderator_id=moderator_id,
				target_id=target_id,
				type=type,
				reason=reason,
				metadata=_compact(metadata or {}),
				created_at=self._clock(),
			)
		)
		obs_metrics.inc_moderation_action(type.value)
		_LOG.info(
			"moderation_action",
			extra={"action_type": type.value, "moderator_id": moderator_id, "target_id": target_id},
		)
		return log

	async def list_moderation_logs(
		self,
		*,
		page: int = 1,
		page_size: int = 20,
		type: Optional[ModerationType] = None,
		moderator_id: Optional[str] = None,
	) -> ModerationLogPage:
		page = max(1, page)
		page_size = max(1, min(page_size, 100))
		items, total = await self.repo.list_logs(
			offset=(page - 1) * page_size,
			limit=page_size,
			log_type=type,
			moderator_id=moderator_id,
		)
		return ModerationLogPage(
			logs=list(items),
			pagination=Pagination(
				page=page,
				page_size=page_size,
				total_count=total,
				total_pages=total_pages(total, page_size),
			),
		)

	async def list_active_mutes(
		self,
		*,
		room_id: Optional[str] = None,
		group_id: Optional[str] = None,
	) -> Sequence[UserMute]:
		if bool(room_id) == bool(group_id):
			raise ValidationError("Exactly one of roomId or groupId must be specified")
		return await self.repo.list_active_mutes(room_id=room_id, group_id=group_id, now=self._clock())

	async def _require_scope_moderator(
		self,
		moderator_id: str,
		*,
		room_id: Optional[str] = None,
		group_id: Optional[str] = None,
	) -> None:
		if room_id:
			if not await self.directory.is_room_moderator(moderator_id, room_id):
				raise AuthorizationError("You do not have moderator permissions for this room")
		elif group_id:
			if not await self.directory.is_group_moderator(moderator_id, group_id):
				raise AuthorizationError("You do not have moderator permissions for this group")
