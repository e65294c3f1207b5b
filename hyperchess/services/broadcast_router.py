"""
BroadcastRouter - Fans session events out to subscribers

- One outbound queue + pump task per connected identity
- Room membership per session id
- Enqueueing never suspends, so events enqueued while a session lock is held
  reach every subscriber in the same order, and no socket I/O ever happens
  under a session lock
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Anything that can push a JSON-able dict to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...


class _Subscriber:
    def __init__(self, identity: str, channel: Channel):
        self.identity = identity
        self.channel = channel
        self.queue: asyncio.Queue = asyncio.Queue()
        self.task: Optional[asyncio.Task] = None


class BroadcastRouter:
    def __init__(self):
        self._subscribers: Dict[str, _Subscriber] = {}
        self.rooms: Dict[str, Set[str]] = {}

    # ============================================================================
    # CONNECTIONS
    # ============================================================================

    def attach(self, identity: str, channel: Channel) -> None:
        """Bind a channel to an identity, replacing any previous channel."""
        previous = self._subscribers.pop(identity, None)
        if previous:
            self._stop(previous)
            logger.info(f"Channel for {identity} replaced by a new connection")

        subscriber = _Subscriber(identity, channel)
        subscriber.task = asyncio.create_task(self._pump(subscriber))
        self._subscribers[identity] = subscriber

    def detach(self, identity: str, channel: Optional[Channel] = None) -> bool:
        """
        Unbind an identity's channel. When channel is given, only detach if it
        is still the current one (a stale socket closing after a reconnect
        must not tear down the new connection).
        Returns True if something was detached.
        """
        subscriber = self._subscribers.get(identity)
        if not subscriber:
            return False
        if channel is not None and subscriber.channel is not channel:
            return False
        del self._subscribers[identity]
        self._stop(subscriber)
        return True

    def is_connected(self, identity: str) -> bool:
        return identity in self._subscribers

    @property
    def connection_count(self) -> int:
        return len(self._subscribers)

    # ============================================================================
    # ROOMS
    # ============================================================================

    def subscribe(self, session_id: str, identity: str) -> None:
        self.rooms.setdefault(session_id, set()).add(identity)

    def unsubscribe(self, session_id: str, identity: str) -> None:
        members = self.rooms.get(session_id)
        if members is None:
            return
        members.discard(identity)
        if not members:
            del self.rooms[session_id]

    def move_room(self, old_session_id: str, new_session_id: str, identities: Iterable[str]) -> None:
        """Move identities from one room to another in a single step."""
        identities = list(identities)
        for identity in identities:
            self.unsubscribe(old_session_id, identity)
        for identity in identities:
            self.subscribe(new_session_id, identity)

    def drop_room(self, session_id: str) -> None:
        self.rooms.pop(session_id, None)

    def members(self, session_id: str) -> Set[str]:
        return set(self.rooms.get(session_id, set()))

    def rooms_of(self, identity: str) -> Set[str]:
        return {session_id for session_id, members in self.rooms.items() if identity in members}

    # ============================================================================
    # DELIVERY
    # ============================================================================

    def send(self, identity: str, message: dict) -> bool:
        """Queue a message for one identity. Returns False if it is not connected."""
        subscriber = self._subscribers.get(identity)
        if not subscriber:
            logger.warning(f"Cannot send {message.get('type')} to {identity}: not connected")
            return False
        subscriber.queue.put_nowait(message)
        return True

    def broadcast(self, session_id: str, message: dict, exclude: Optional[str] = None) -> int:
        """Queue a message for every connected member of a room. Returns the number queued."""
        delivered = 0
        for identity in sorted(self.rooms.get(session_id, set())):
            if identity == exclude:
                continue
            subscriber = self._subscribers.get(identity)
            if subscriber:
                subscriber.queue.put_nowait(message)
                delivered += 1
        logger.info(f"Broadcast to session {session_id}: {message.get('type')} ({delivered} recipients)")
        return delivered

    async def drain(self) -> None:
        """Wait until every queued message has been handed to its channel."""
        await asyncio.gather(*(s.queue.join() for s in list(self._subscribers.values())))

    async def close(self) -> None:
        for identity in list(self._subscribers):
            self.detach(identity)

    # --- Internal helpers ---
    async def _pump(self, subscriber: _Subscriber) -> None:
        while True:
            message = await subscriber.queue.get()
            try:
                await subscriber.channel.send_json(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error sending to {subscriber.identity}: {e}", exc_info=True)
            finally:
                subscriber.queue.task_done()

    def _stop(self, subscriber: _Subscriber) -> None:
        if subscriber.task:
            subscriber.task.cancel()
        # Release anyone waiting in drain() on this queue
        while not subscriber.queue.empty():
            subscriber.queue.get_nowait()
            subscriber.queue.task_done()
