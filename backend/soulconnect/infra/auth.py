"""Authentication helpers for FastAPI endpoints and socket handshakes.

Bearer JWTs are always honoured. The X-User-Id header fallback is only
respected in development so local tools can impersonate identities.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from soulconnect.domain.exceptions import AuthError
from soulconnect.infra import jwt as jwt_helper
from soulconnect.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None
	email: Optional[str] = None


_bearer_scheme = HTTPBearer(auto_error=False)


def issue_access_token(user_id: str, *, display_name: str, email: Optional[str] = None) -> str:
	payload: dict[str, object] = {"sub": user_id, "name": display_name}
	if email:
		payload["email"] = email
	return jwt_helper.encode_access(payload)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode an access JWT into an AuthenticatedUser, raising AuthError on failure."""
	try:
		payload = jwt_helper.decode_access(token)
	except InvalidTokenError as exc:
		raise AuthError("invalid_token") from exc

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise AuthError("invalid_token")
	display_name = payload.get("name") or payload.get("display_name")
	email = payload.get("email")
	return AuthenticatedUser(
		id=sub,
		display_name=str(display_name) if display_name is not None else None,
		email=str(email) if email is not None else None,
	)


def resolve_socket_user(auth_payload: dict, authorization: Optional[str]) -> AuthenticatedUser:
	token = auth_payload.get("token")
	if not token and authorization and authorization.lower().startswith("bearer "):
		token = authorization.split(" ", 1)[1]
	if token:
		return verify_access_jwt(str(token))
	if settings.is_dev():
		user_id = auth_payload.get("user_id") or auth_payload.get("userId")
		if user_id:
			return AuthenticatedUser(id=str(user_id), display_name=auth_payload.get("display_name"))
	raise AuthError("missing_token")


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_name: Optional[str] = Header(default=None, alias="X-User-Name"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id, display_name=x_user_name)

	raise AuthError("invalid_token")
