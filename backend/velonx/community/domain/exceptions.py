"""Application error hierarchy shared by the community and security services."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import status


class AppError(Exception):
	"""Base class for errors that map onto an HTTP status and error code."""

	status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
	code: str = "INTERNAL_SERVER_ERROR"
	message: str = "An unexpected error occurred"

	def __init__(self, message: str | None = None, *, details: Optional[Any] = None) -> None:
		super().__init__(message or self.message)
		if message:
			self.message = message
		self.details = details


class ValidationError(AppError):
	"""Raised for invalid input that schema validation cannot catch."""

	status_code = status.HTTP_400_BAD_REQUEST
	code = "VALIDATION_ERROR"
	message = "Validation failed"


class AuthenticationError(AppError):
	status_code = status.HTTP_401_UNAUTHORIZED
	code = "UNAUTHORIZED"
	message = "Authentication required"


class AuthorizationError(AppError):
	"""Raised when the caller lacks rights over the target scope."""

	status_code = status.HTTP_403_FORBIDDEN
	code = "FORBIDDEN"
	message = "You do not have permission to perform this action"


class NotFoundError(AppError):
	status_code = status.HTTP_404_NOT_FOUND
	code = "NOT_FOUND"
	message = "Resource not found"

	def __init__(self, resource: str = "Resource", *, details: Optional[Any] = None) -> None:
		super().__init__(f"{resource} not found", details=details)
		self.resource = resource
