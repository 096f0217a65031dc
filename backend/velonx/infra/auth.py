"""Authentication helpers for FastAPI endpoints.

Bearer access tokens are verified as HS256 JWTs. Development builds also
accept ``X-User-Id`` / ``X-User-Roles`` headers so local tools can call the
API without minting tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from velonx.community.domain.exceptions import AuthenticationError, AuthorizationError
from velonx.infra import jwt as jwt_helper
from velonx.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()
	email: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role.lower() in (r.lower() for r in self.roles)


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode an access JWT (issuer ``velonx-api``, audience ``velonx-web``)."""
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError:
		raise AuthenticationError("Invalid or expired token") from None

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise AuthenticationError("Invalid or expired token")
	email = payload.get("email")
	return AuthenticatedUser(
		id=sub,
		roles=_parse_roles(payload.get("roles") or payload.get("role")),
		email=str(email) if email is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	# dev only
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip(), roles=_parse_roles(x_user_roles))

	raise AuthenticationError()


async def get_admin_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	if user.has_role("admin"):
		return user
	raise AuthorizationError("Admin role required")

