"""Helpers for side effects that must never undo the write before them."""

from __future__ import annotations

import logging
from typing import Awaitable, Optional, TypeVar

from velonx.obs import metrics

T = TypeVar("T")

_LOG = logging.getLogger("velonx.best_effort")


async def run_best_effort(
	label: str,
	awaitable: Awaitable[T],
	*,
	logger: Optional[logging.Logger] = None,
) -> Optional[T]:
	"""Await *awaitable*; log and count a failure instead of raising it."""
	try:
		return await awaitable
	except Exception:
		(logger or _LOG).warning("best_effort_failed", extra={"label": label}, exc_info=True)
		metrics.inc_best_effort_failure(label)
		return None
