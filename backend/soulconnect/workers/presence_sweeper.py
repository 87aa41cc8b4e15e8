"""Worker that demotes stale online identities and announces the change."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from soulconnect.domain.chat.repo import ChatStore
from soulconnect.domain.chat.router import RoomRouter
from soulconnect.domain.exceptions import StorageError
from soulconnect.domain.identity import presence
from soulconnect.domain.identity.models import PresenceState
from soulconnect.domain.identity.repo import IdentityStore
from soulconnect.obs import logging as obs_logging
from soulconnect.obs import metrics as obs_metrics
from soulconnect.settings import settings

_LOG = logging.getLogger(__name__)
_JOB_NAME = "presence-sweeper"


class PresenceSweeper:
	"""Periodic job flipping identities idle past the away window to offline."""

	def __init__(
		self,
		identities: IdentityStore,
		rooms: ChatStore,
		router: RoomRouter,
		*,
		interval_seconds: Optional[float] = None,
	) -> None:
		self.identities = identities
		self.rooms = rooms
		self.router = router
		self.interval_seconds = settings.presence_sweep_interval_seconds if interval_seconds is None else interval_seconds
		self._running = False

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			await asyncio.sleep(self.interval_seconds)
			if not self._running:
				break
			with obs_logging.log_context(job=_JOB_NAME):
				await self._tick()

	async def _tick(self) -> None:
		started = datetime.now(timezone.utc)
		try:
			demoted = await self.process_once()
		except StorageError:
			obs_metrics.record_job_run(_JOB_NAME, result="error")
			_LOG.warning("presence sweep skipped, store unavailable")
			return
		except asyncio.CancelledError:
			raise
		except Exception:
			obs_metrics.record_job_run(_JOB_NAME, result="error")
			_LOG.exception("presence_sweeper.run_failed")
			return
		duration = (datetime.now(timezone.utc) - started).total_seconds()
		obs_metrics.record_job_run(_JOB_NAME, result="success", duration_seconds=duration)
		if demoted:
			_LOG.info("presence sweeper demoted %s identities", demoted)

	def stop(self) -> None:
		self._running = False

	async def process_once(self, now: Optional[datetime] = None) -> int:
		"""Demote stale identities; returns how many were flipped offline."""
		now = now or datetime.now(timezone.utc)
		demoted = await self.identities.demote_stale(presence.stale_cutoff(now))
		for identity in demoted:
			payload = {
				"identity_id": identity.id,
				"presence": PresenceState.OFFLINE.value,
				"at": now.isoformat(),
			}
			try:
				rooms = await self.rooms.list_rooms_for(identity.id)
			except StorageError:
				_LOG.warning("room lookup failed during sweep", extra={"identity_id": identity.id})
				continue
			for room in rooms:
				await self.router.broadcast(room.room_id, "presence:update", payload)
		obs_metrics.inc_sweeper_demotions(len(demoted))
		return len(demoted)


__all__ = ["PresenceSweeper"]
