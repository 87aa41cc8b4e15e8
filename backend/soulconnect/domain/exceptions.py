"""Domain errors shared by the chat, identity and matching services."""

from __future__ import annotations


class SoulConnectError(RuntimeError):
	status_code = 400
	default_code = "error"

	def __init__(self, code: str | None = None, *, status_code: int | None = None, message: str | None = None) -> None:
		code = code or self.default_code
		super().__init__(message or code)
		self.code = code
		if status_code is not None:
			self.status_code = status_code
		self.detail = message or code


class ValidationError(SoulConnectError):
	status_code = 400
	default_code = "invalid_request"


class AuthError(SoulConnectError):
	status_code = 401
	default_code = "invalid_token"


class NotAMember(SoulConnectError):
	status_code = 403
	default_code = "not_member"


class NotFound(SoulConnectError):
	status_code = 404
	default_code = "not_found"


class DuplicateConnection(SoulConnectError):
	status_code = 409
	default_code = "duplicate_connection"


class Conflict(SoulConnectError):
	status_code = 409
	default_code = "conflict"


class RateLimited(SoulConnectError):
	status_code = 429
	default_code = "rate_limited"


class StorageError(SoulConnectError):
	status_code = 503
	default_code = "storage_unavailable"
