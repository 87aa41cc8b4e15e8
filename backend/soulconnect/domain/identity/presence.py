"""Presence classification derived from last activity."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from soulconnect.domain.identity.models import PresenceState
from soulconnect.settings import settings


def classify(
	last_active_at: Optional[datetime],
	now: Optional[datetime] = None,
	*,
	online_seconds: Optional[int] = None,
	away_seconds: Optional[int] = None,
) -> PresenceState:
	"""Return online below the online threshold, away below the away threshold, else offline."""
	if last_active_at is None:
		return PresenceState.OFFLINE
	now = now or datetime.now(timezone.utc)
	online_window = timedelta(seconds=settings.presence_online_seconds if online_seconds is None else online_seconds)
	away_window = timedelta(seconds=settings.presence_away_seconds if away_seconds is None else away_seconds)
	idle = now - last_active_at
	if idle < online_window:
		return PresenceState.ONLINE
	if idle < away_window:
		return PresenceState.AWAY
	return PresenceState.OFFLINE


def stale_cutoff(now: Optional[datetime] = None) -> datetime:
	"""Activity older than this instant is offline."""
	now = now or datetime.now(timezone.utc)
	return now - timedelta(seconds=settings.presence_away_seconds)
