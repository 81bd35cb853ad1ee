"""
Session reaper: ends play sessions whose host has stopped sending heartbeats.

Background worker that polls every REAPER_INTERVAL_SECONDS. Active sessions
whose ``host_last_seen_at`` is older than HOST_INACTIVITY_MINUTES are ended
through the normal termination path with reason ``host_inactive``, so the
same session_ended broadcast goes out exactly once per session.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pickup.database import db
from pickup.database.models import EndReason, PlaySession
from pickup.services.event_hub import EventHub
from pickup.services.play_session_service import terminate_play_session
from pickup.utils.constants import HOST_INACTIVITY_MINUTES, REAPER_INTERVAL_SECONDS
from pickup.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


class SessionReaper:
    """Background service that force-ends sessions with an inactive host."""

    def __init__(
        self,
        hub: Optional[EventHub],
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        inactivity_minutes: int = HOST_INACTIVITY_MINUTES,
        interval_seconds: float = REAPER_INTERVAL_SECONDS,
    ):
        self.hub = hub
        self._session_factory = session_factory or db.AsyncSessionLocal
        self.inactivity_minutes = inactivity_minutes
        self.interval_seconds = interval_seconds
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background reaper worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Session reaper started")

    def stop(self) -> None:
        """Stop the background reaper worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Session reaper stopped")

    async def _poll_loop(self) -> None:
        """Main loop: sweep, then wait for the interval. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.sweep()
                if self.hub is not None:
                    await self.hub.cleanup_stale_connections()
            except Exception as e:
                logger.error(f"Error in session reaper: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                break
            except asyncio.TimeoutError:
                pass

    async def sweep(self) -> int:
        """
        End every active session whose host was last seen before the cutoff.

        Returns:
            Number of sessions this sweep ended
        """
        cutoff = utcnow() - timedelta(minutes=self.inactivity_minutes)
        ended = 0
        async with self._session_factory() as session:
            result = await session.execute(
                select(PlaySession.id).where(
                    PlaySession.ended_at.is_(None),
                    PlaySession.host_last_seen_at < cutoff,
                )
            )
            stale_ids = list(result.scalars().all())
            if not stale_ids:
                return 0

            logger.info(f"Found {len(stale_ids)} play session(s) with an inactive host")
            for session_id in stale_ids:
                try:
                    if await terminate_play_session(
                        session, self.hub, session_id, EndReason.HOST_INACTIVE
                    ):
                        ended += 1
                except Exception as e:
                    logger.error(f"Error ending play session {session_id}: {e}", exc_info=True)
                    await session.rollback()
        return ended
