"""Severity tiers and the structured error entry shared by the error logger and alerting."""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """Ordered severity tiers: info < warning < error < critical."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any, default: "Severity") -> "Severity":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default


_RANKS = {"info": 0, "warning": 1, "error": 2, "critical": 3}


@dataclass(slots=True)
class ErrorLogEntry:
    severity: Severity
    code: str
    message: str
    timestamp: datetime
    error: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None

    @property
    def error_name(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def error_stack(self) -> Optional[str]:
        if self.error is None:
            return None
        return "".join(traceback.format_exception(type(self.error), self.error, self.error.__traceback__))
