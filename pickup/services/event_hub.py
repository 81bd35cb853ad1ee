"""
In-process event hub for real-time session and match updates.

Tracks live transport connections (WebSockets) together with the scopes they
listen to (their user, and optionally a play session and/or match) and fans
lifecycle events out to them. Delivery is best-effort and at-most-once: a
connection whose send fails is dropped and deregistered, and reconnecting
clients are expected to re-fetch state.

The hub is created explicitly (one per application, see ``api.main``) and
shut down on drain; there is no module-level instance.
"""

import asyncio
import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from pickup.utils.constants import WEBSOCKET_PING_SECONDS
from pickup.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Connections silent for this long (no client ping) are considered stale
CONNECTION_TIMEOUT_SECONDS = WEBSOCKET_PING_SECONDS * 2


class EventType(str, enum.Enum):
    """Kinds of events pushed to connected clients."""

    CONNECTED = "connected"
    PLAYER_JOINED = "player_joined"
    PLAYER_LEFT = "player_left"
    INVITE = "invite"
    SPECTATOR_CHANGED = "spectator_changed"
    MATCH_STARTED = "match_started"
    MATCH_ENDED = "match_ended"
    ELO_UPDATE = "elo_update"
    SESSION_ENDED = "session_ended"


@dataclass
class Connection:
    """A registered transport connection and the scopes it listens to."""

    id: str
    user_id: int
    websocket: Any  # anything with ``async send_text(str)`` and ``async close()``
    session_id: Optional[int] = None
    match_id: Optional[int] = None
    last_activity: datetime = field(default_factory=utcnow)


def serialize_event(event_type: EventType, data: Dict[str, Any]) -> str:
    """Render an event as the JSON text frame sent to clients."""
    return json.dumps({"type": EventType(event_type).value, "data": data}, default=str)


class EventHub:
    """Registry of live connections with session/match/user-scoped broadcast."""

    def __init__(self):
        """Initialize an empty registry."""
        self.connections: Dict[str, Connection] = {}
        self.session_connections: Dict[int, Set[str]] = {}
        self.match_connections: Dict[int, Set[str]] = {}
        self.user_connections: Dict[int, Set[str]] = {}
        # Guards every registry mutation; sends happen outside the lock
        self._lock = asyncio.Lock()
        self._closed = False

    @staticmethod
    def _index_add(index: Dict[int, Set[str]], key: Optional[int], connection_id: str) -> None:
        if key is None:
            return
        index.setdefault(key, set()).add(connection_id)

    @staticmethod
    def _index_discard(index: Dict[int, Set[str]], key: Optional[int], connection_id: str) -> None:
        if key is None or key not in index:
            return
        index[key].discard(connection_id)
        if not index[key]:
            del index[key]

    async def register_connection(
        self,
        user_id: int,
        websocket: Any,
        session_id: Optional[int] = None,
        match_id: Optional[int] = None,
    ) -> str:
        """
        Register a connection for a user, optionally scoped to a session and/or match.

        Returns:
            The new connection id (used to deregister)

        Raises:
            RuntimeError: If the hub has been shut down
        """
        connection = Connection(
            id=uuid.uuid4().hex,
            user_id=user_id,
            websocket=websocket,
            session_id=session_id,
            match_id=match_id,
        )
        async with self._lock:
            if self._closed:
                raise RuntimeError("Event hub is shut down")
            self.connections[connection.id] = connection
            self._index_add(self.user_connections, user_id, connection.id)
            self._index_add(self.session_connections, session_id, connection.id)
            self._index_add(self.match_connections, match_id, connection.id)
        logger.info(
            f"Connection {connection.id} registered for user {user_id} "
            f"(session={session_id}, match={match_id})"
        )
        return connection.id

    async def deregister_connection(self, connection_id: str) -> bool:
        """
        Remove a connection from every scope. Safe to call more than once.

        Returns:
            True if the connection was registered
        """
        async with self._lock:
            connection = self._remove_locked(connection_id)
        if connection:
            logger.info(f"Connection {connection_id} deregistered for user {connection.user_id}")
        return connection is not None

    def _remove_locked(self, connection_id: str) -> Optional[Connection]:
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None
        self._index_discard(self.user_connections, connection.user_id, connection_id)
        self._index_discard(self.session_connections, connection.session_id, connection_id)
        self._index_discard(self.match_connections, connection.match_id, connection_id)
        return connection

    async def _deliver(self, connection_ids: Set[str], event_type: EventType, data: Dict[str, Any]) -> int:
        """Send one event to a snapshot of connections, dropping those that fail."""
        async with self._lock:
            targets = [self.connections[cid] for cid in connection_ids if cid in self.connections]

        message = serialize_event(event_type, data)
        delivered = 0
        failed: List[str] = []
        for connection in targets:
            try:
                await connection.websocket.send_text(message)
                connection.last_activity = utcnow()
                delivered += 1
            except Exception as e:
                logger.warning(
                    f"Dropping connection {connection.id} for user {connection.user_id}: {e}"
                )
                failed.append(connection.id)

        if failed:
            async with self._lock:
                for connection_id in failed:
                    self._remove_locked(connection_id)

        return delivered

    async def broadcast_to_session(self, session_id: int, event_type: EventType, data: Dict[str, Any]) -> int:
        """
        Send an event to every connection scoped to a play session.

        Returns:
            Number of connections the event was delivered to
        """
        async with self._lock:
            connection_ids = set(self.session_connections.get(session_id, ()))
        return await self._deliver(connection_ids, event_type, data)

    async def broadcast_to_match(self, match_id: int, event_type: EventType, data: Dict[str, Any]) -> int:
        """Send an event to every connection scoped to a match."""
        async with self._lock:
            connection_ids = set(self.match_connections.get(match_id, ()))
        return await self._deliver(connection_ids, event_type, data)

    async def broadcast_to_user(self, user_id: int, event_type: EventType, data: Dict[str, Any]) -> int:
        """Send an event to every connection belonging to a user."""
        async with self._lock:
            connection_ids = set(self.user_connections.get(user_id, ()))
        return await self._deliver(connection_ids, event_type, data)

    async def broadcast(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        session_id: Optional[int] = None,
        match_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """
        Send one event to the union of several scopes.

        A connection listening to more than one of the given scopes (e.g. a
        match page, registered under both its session and its match) receives
        the event once.

        Returns:
            Number of connections the event was delivered to
        """
        async with self._lock:
            connection_ids: Set[str] = set()
            if session_id is not None:
                connection_ids.update(self.session_connections.get(session_id, ()))
            if match_id is not None:
                connection_ids.update(self.match_connections.get(match_id, ()))
            if user_id is not None:
                connection_ids.update(self.user_connections.get(user_id, ()))
        return await self._deliver(connection_ids, event_type, data)

    async def update_activity(self, connection_id: str) -> None:
        """
        Update the last activity timestamp for a connection.
        Called when the client sends a ping or any other message.
        """
        async with self._lock:
            connection = self.connections.get(connection_id)
            if connection:
                connection.last_activity = utcnow()

    async def get_connection_count(
        self,
        session_id: Optional[int] = None,
        match_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> int:
        """Number of connections in a scope, or all connections if no scope is given."""
        async with self._lock:
            if session_id is not None:
                return len(self.session_connections.get(session_id, ()))
            if match_id is not None:
                return len(self.match_connections.get(match_id, ()))
            if user_id is not None:
                return len(self.user_connections.get(user_id, ()))
            return len(self.connections)

    async def cleanup_stale_connections(self, timeout_seconds: int = CONNECTION_TIMEOUT_SECONDS) -> int:
        """
        Deregister connections with no activity within the timeout.

        Returns:
            Number of connections removed
        """
        threshold = utcnow() - timedelta(seconds=timeout_seconds)
        async with self._lock:
            stale = [
                self._remove_locked(cid)
                for cid, connection in list(self.connections.items())
                if connection.last_activity < threshold
            ]

        for connection in stale:
            try:
                await connection.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing stale connection {connection.id}: {e}")
        if stale:
            logger.info(f"Cleaned up {len(stale)} stale connection(s)")
        return len(stale)

    async def shutdown(self) -> None:
        """Close every connection and refuse new registrations."""
        async with self._lock:
            self._closed = True
            remaining = list(self.connections.values())
            self.connections.clear()
            self.session_connections.clear()
            self.match_connections.clear()
            self.user_connections.clear()

        for connection in remaining:
            try:
                await connection.websocket.close()
            except Exception as e:
                logger.debug(f"Error closing connection {connection.id} on shutdown: {e}")
        logger.info(f"Event hub shut down ({len(remaining)} connection(s) closed)")


async def publish(hub: Optional[EventHub], scope: str, key: int, event_type: EventType, data: Dict[str, Any]) -> None:
    """
    Fire-and-forget broadcast used by the lifecycle controllers.

    ``scope`` is "session", "match" or "user". Failures are logged and never
    propagate to the operation that produced the event.
    """
    if hub is None:
        return
    try:
        if scope == "session":
            await hub.broadcast_to_session(key, event_type, data)
        elif scope == "match":
            await hub.broadcast_to_match(key, event_type, data)
        elif scope == "user":
            await hub.broadcast_to_user(key, event_type, data)
        else:
            raise ValueError(f"Unknown broadcast scope: {scope}")
    except Exception as e:
        logger.warning(f"Failed to broadcast {EventType(event_type).value} to {scope} {key}: {e}")


async def publish_to_scopes(
    hub: Optional[EventHub],
    event_type: EventType,
    data: Dict[str, Any],
    session_id: Optional[int] = None,
    match_id: Optional[int] = None,
) -> None:
    """Fire-and-forget counterpart of ``EventHub.broadcast`` for events sent to several scopes."""
    if hub is None:
        return
    try:
        await hub.broadcast(event_type, data, session_id=session_id, match_id=match_id)
    except Exception as e:
        logger.warning(
            f"Failed to broadcast {EventType(event_type).value} to "
            f"session {session_id} / match {match_id}: {e}"
        )
