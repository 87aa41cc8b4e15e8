"""JSON log records carrying HTTP request, socket connection and worker job context."""

from __future__ import annotations

import json
import logging
import random
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from soulconnect.settings import settings

_LOGGER_NAME = "soulconnect"

# Order here is the order fields appear in each record.
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	name: ContextVar(f"obs_{name}", default=None)
	for name in (
		"request_id",
		"route",
		"user_id",
		"client_ip",
		"connection_id",
		"identity_id",
		"room_id",
		"job",
	)
}
_OUTPUT_NAMES = {"client_ip": "ip"}

# Message text and credentials never reach the log stream.
_SENSITIVE_KEYWORDS = ("token", "secret", "authorization", "password", "email", "content", "reply")

_MAX_STRING_LENGTH = 256
_MAX_COLLECTION_ITEMS = 10

# Chat lifecycle and worker records are rare enough to keep in full.
_UNSAMPLED_LOGGERS = ("soulconnect.domain.chat", "soulconnect.workers")

_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind log context for the current task and return tokens for ``reset_context``.

	``None`` values are skipped so callers can pass optional ids straight through.
	"""
	tokens: Dict[str, Token] = {}
	for name, value in fields.items():
		var = _CONTEXT.get(name)
		if var is None:
			raise ValueError(f"unknown log context field: {name}")
		if value is not None:
			tokens[name] = var.set(str(value))
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in reversed(list(tokens.items())):
		_CONTEXT[name].reset(token)


@contextmanager
def log_context(**fields: Optional[str]) -> Iterator[None]:
	tokens = bind_context(**fields)
	try:
		yield
	finally:
		reset_context(tokens)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def context_fields() -> Dict[str, str]:
	fields: Dict[str, str] = {}
	for name, var in _CONTEXT.items():
		value = var.get()
		if value:
			fields[_OUTPUT_NAMES.get(name, name)] = value
	return fields


def scrub(key: str, value: Any) -> Any:
	if any(keyword in key.lower() for keyword in _SENSITIVE_KEYWORDS):
		return "[redacted]"
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING_LENGTH else f"{value[:_MAX_STRING_LENGTH]}…"
	if isinstance(value, dict):
		items = list(value.items())
		scrubbed: Dict[str, Any] = {str(k): scrub(str(k), v) for k, v in items[:_MAX_COLLECTION_ITEMS]}
		if len(items) > _MAX_COLLECTION_ITEMS:
			scrubbed["…"] = f"+{len(items) - _MAX_COLLECTION_ITEMS} keys"
		return scrubbed
	if isinstance(value, (list, tuple, set, frozenset)):
		items = [scrub("", item) for item in value]
		if len(items) > _MAX_COLLECTION_ITEMS:
			items = items[:_MAX_COLLECTION_ITEMS] + ["…"]
		return items
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record; explicit ``extra`` fields win over bound context."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		base = set(payload)
		for key, value in record.__dict__.items():
			if key in _RESERVED_ATTRS or key in base:
				continue
			payload[key] = scrub(key, value)
		for key, value in context_fields().items():
			payload.setdefault(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample info-level HTTP chatter; warnings, chat lifecycle and worker records always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO or record.name.startswith(_UNSAMPLED_LOGGERS):
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		if rate >= 1.0:
			return True
		return random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	# Per-packet transport logs drown out the chat lifecycle.
	for noisy in ("engineio", "socketio"):
		logging.getLogger(noisy).setLevel(logging.WARNING)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
