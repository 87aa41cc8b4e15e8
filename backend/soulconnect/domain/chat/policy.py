"""Rate limit and content policy helpers for chat."""

from __future__ import annotations

from datetime import datetime, timezone

from soulconnect.domain.exceptions import RateLimited, ValidationError
from soulconnect.infra.redis import redis_client
from soulconnect.settings import settings


async def _touch_limit(key: str, ttl_seconds: int) -> int:
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, ttl_seconds)
		count, _ = await pipe.execute()
	return int(count)


def _minute_bucket() -> str:
	return datetime.now(timezone.utc).strftime("%Y%m%d%H%M")


async def enforce_send_limit(identity_id: str) -> None:
	key = f"rl:chat:send:{identity_id}:{_minute_bucket()}"
	if await _touch_limit(key, 120) > settings.send_limit_per_minute:
		raise RateLimited("rate_limited:send")


async def enforce_typing_limit(identity_id: str) -> None:
	key = f"rl:chat:typing:{identity_id}:{_minute_bucket()}"
	if await _touch_limit(key, 120) > settings.typing_limit_per_minute:
		raise RateLimited("rate_limited:typing")


def clean_content(raw: object) -> str:
	content = str(raw or "").strip()
	if not content:
		raise ValidationError("empty_content")
	if len(content) > settings.message_max_length:
		raise ValidationError("content_too_long")
	return content
