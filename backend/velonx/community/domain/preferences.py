"""Per-user, per-category gate consulted before a community notification is written."""

from __future__ import annotations

import logging
from typing import Optional

from velonx.community.domain.exceptions import NotFoundError, ValidationError
from velonx.community.domain.models import NotificationCategory, NotificationPreferences
from velonx.community.domain.repositories import UserRepository

_LOG = logging.getLogger(__name__)

_PREFERENCE_FIELDS = frozenset(category.value for category in NotificationCategory)


class NotificationPreferenceGate:
	"""Reads the preference flags on the user row.

	A missing user or a failed lookup yields ``fail_open`` (``True`` unless
	configured otherwise).
	"""

	def __init__(self, users: UserRepository, *, fail_open: bool = True) -> None:
		self._users = users
		self.fail_open = fail_open

	async def should_notify(self, user_id: str, category: NotificationCategory) -> bool:
		try:
			user = await self._users.get_user(user_id)
		except Exception:
			_LOG.warning(
				"preference_lookup_failed",
				extra={"target_user": user_id, "category": category.value},
				exc_info=True,
			)
			return self.fail_open
		if user is None:
			return self.fail_open
		return user.preference(category)

	async def get_preferences(self, user_id: str) -> NotificationPreferences:
		user = await self._users.get_user(user_id)
		if user is None:
			raise NotFoundError("User")
		return NotificationPreferences.model_validate(user)

	async def update_preferences(self, user_id: str, **flags: Optional[bool]) -> NotificationPreferences:
		unknown = set(flags) - _PREFERENCE_FIELDS
		if unknown:
			raise ValidationError(f"Unknown preference fields: {', '.join(sorted(unknown))}")
		changes = {key: bool(value) for key, value in flags.items() if value is not None}
		if not changes:
			return await self.get_preferences(user_id)
		user = await self._users.update_preferences(user_id, changes)
		if user is None:
			raise NotFoundError("User")
		return NotificationPreferences.model_validate(user)
