"""
SessionRegistry - Owns every live session
- Session creation and admission (seats, spectators, reconnection)
- Per-session locks that serialize all mutations of one session
- Capacity limits
- Periodic garbage collection of stale sessions
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Callable, Dict, List, Optional, Tuple

from hyperchess.config import Config
from hyperchess.enums import Role, SessionStatus
from hyperchess.errors import CapacityExceeded, NotFound, SpectatorCapacityExceeded
from hyperchess.messages import session_joined, session_state, spectators_update, player_reconnected
from hyperchess.rules.engine import RulesEngine
from hyperchess.services.broadcast_router import BroadcastRouter
from hyperchess.services.clock_manager import ClockManager
from hyperchess.services.session import Session

if TYPE_CHECKING:
    from hyperchess.services.connection_lifecycle import ConnectionLifecycleHandler

logger = logging.getLogger(__name__)


def epoch_ms() -> int:
    return int(time.time() * 1000)


class SessionRegistry:
    """Manages all sessions, their locks and their lifetime"""

    def __init__(
        self,
        config: type = Config,
        router: Optional[BroadcastRouter] = None,
        clock_manager: Optional[ClockManager] = None,
        engine: Optional[RulesEngine] = None,
        now: Callable[[], int] = epoch_ms,
    ):
        self.config = config
        self.router = router or BroadcastRouter()
        self.clock_manager = clock_manager or ClockManager(config.INITIAL_CLOCK_MS)
        self.engine = engine or RulesEngine()
        self.now = now
        self.sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._gc_task: Optional[asyncio.Task] = None
        self._clock_task: Optional[asyncio.Task] = None
        # Wired by SessionService; resumes seats held through a grace period
        self.lifecycle: Optional["ConnectionLifecycleHandler"] = None

    # ============================================================================
    # SESSION CREATION
    # ============================================================================

    def create(self, identity: str) -> Session:
        """
        Create a session with the caller seated white.

        Raises:
            CapacityExceeded: if the registry already holds the maximum number of sessions.
        """
        session = Session(
            session_id=str(uuid.uuid4()),
            position=self.engine.start_position(),
            initial_clock_ms=self.clock_manager.initial_ms,
            now=self.now(),
        )
        session.seats[session.side_to_move] = identity
        self.register(session)
        self.router.subscribe(session.session_id, identity)

        logger.info(f"Session {session.session_id} created by {identity} (white)")
        return session

    def register(self, session: Session) -> None:
        """Add a freshly built session to the registry, enforcing capacity."""
        if len(self.sessions) >= self.config.MAX_CONCURRENT_SESSIONS:
            logger.warning(f"Registry at capacity ({len(self.sessions)} sessions)")
            raise CapacityExceeded("Server at maximum capacity. Please try again later.")
        self.sessions[session.session_id] = session
        self._locks[session.session_id] = asyncio.Lock()

    # ============================================================================
    # ADMISSION
    # ============================================================================

    async def join(self, session_id: str, identity: str) -> Tuple[Session, Role]:
        """
        Admit an identity to a session.

        - already seated: re-subscribe and replay the current state (reconnection)
        - a seat is free: take it; the second seat activates the session
        - otherwise: spectate, if there is room

        Raises:
            NotFound: unknown session id.
            SpectatorCapacityExceeded: both seats taken and no spectator slot left.
        """
        async with self.locked(session_id) as session:
            now = self.now()
            role = session.role_of(identity)

            if role is not None:
                self.router.subscribe(session_id, identity)
                if role is not Role.SPECTATOR and self.lifecycle:
                    if self.lifecycle.resume_seat(session, identity, now):
                        self.router.broadcast(session_id, player_reconnected(session.to_dict(), role.value))
                session.touch(now)
                self.router.send(identity, session_joined(session.to_dict(), role.value))
                logger.info(f"{identity} rejoined session {session_id} as {role.value}")
                return session, role

            seat = session.free_seat()
            if seat is not None and not session.is_completed:
                session.seats[seat] = identity
                session.touch(now)
                self.router.subscribe(session_id, identity)
                self.router.send(identity, session_joined(session.to_dict(), seat.value))
                # Stays waiting while the other seat's holder is still reconnecting
                if session.seats_filled and not (self.lifecycle and self.lifecycle.awaiting_reconnect(session)):
                    session.status = SessionStatus.ACTIVE
                    self.clock_manager.start(session, now)
                    self.router.broadcast(session_id, session_state(session.to_dict()))
                logger.info(f"{identity} joined session {session_id} as {seat.value}")
                return session, Role(seat.value)

            if len(session.spectators) >= self.config.MAX_SPECTATORS_PER_SESSION:
                raise SpectatorCapacityExceeded("Session has reached maximum spectator capacity")
            session.spectators.append(identity)
            session.touch(now)
            self.router.subscribe(session_id, identity)
            self.router.send(identity, session_joined(session.to_dict(), Role.SPECTATOR.value))
            self.router.broadcast(session_id, spectators_update(session_id, len(session.spectators)))
            logger.info(f"{identity} is spectating session {session_id}")
            return session, Role.SPECTATOR

    # ============================================================================
    # SESSION RETRIEVAL
    # ============================================================================

    def get(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise NotFound("Session not found")
        return session

    def session_ids(self, status: Optional[SessionStatus] = None) -> List[str]:
        return [
            session_id for session_id, session in self.sessions.items()
            if status is None or session.status is status
        ]

    def sessions_for(self, identity: str) -> List[Session]:
        """Sessions where the identity holds a seat or a spectator slot"""
        return [s for s in self.sessions.values() if s.role_of(identity) is not None]

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[Session]:
        """Serialize access to one session. Raises NotFound if it is gone."""
        lock = self._locks.get(session_id)
        if lock is None:
            raise NotFound("Session not found")
        async with lock:
            session = self.sessions.get(session_id)
            if session is None:
                raise NotFound("Session not found")
            yield session

    def remove(self, session_id: str) -> bool:
        """Drop a session, its lock, its room and any pending timers."""
        session = self.sessions.pop(session_id, None)
        self._locks.pop(session_id, None)
        self.router.drop_room(session_id)
        if self.lifecycle:
            self.lifecycle.cancel_session_timers(session_id)
        if session:
            logger.info(f"Session {session_id} removed")
        return session is not None

    # ============================================================================
    # GARBAGE COLLECTION
    # ============================================================================

    def expiry_reason(self, session: Session, now: int) -> Optional[str]:
        """Each threshold applies on its own; the first one that matches is reported."""
        idle = now - session.last_activity_at
        if session.is_completed and idle > self.config.COMPLETED_SESSION_TTL:
            return "completed"
        if idle > self.config.INACTIVE_SESSION_TTL:
            return "inactive"
        if now - session.created_at > self.config.MAX_SESSION_TTL:
            return "expired"
        return None

    async def garbage_collect(self, now: Optional[int] = None) -> List[str]:
        """
        Remove completed-and-idle, idle and over-age sessions.
        Returns the ids that were removed.
        """
        removed: List[str] = []
        for session_id in list(self.sessions):
            try:
                async with self.locked(session_id) as session:
                    reason = self.expiry_reason(session, now if now is not None else self.now())
                    if reason is None:
                        continue
                    self.remove(session_id)
                    removed.append(session_id)
                    logger.info(f"GC: session {session_id} collected ({reason})")
            except NotFound:
                continue

        if removed:
            logger.info(f"Cleaned up {len(removed)} inactive/completed sessions")
        return removed

    async def run_gc_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.GC_INTERVAL)
            try:
                await self.garbage_collect()
            except Exception as e:
                logger.error(f"GC sweep failed: {e}", exc_info=True)

    # ============================================================================
    # BACKGROUND TASKS
    # ============================================================================

    def start_background_tasks(self) -> None:
        """Start the GC sweep and the clock ticker"""
        self._gc_task = asyncio.create_task(self.run_gc_loop())
        self._clock_task = asyncio.create_task(self.clock_manager.run(self, self.router))
        logger.info("Background tasks started (GC sweep, clock ticker)")

    async def stop_background_tasks(self) -> None:
        for task in (self._gc_task, self._clock_task):
            if task:
                task.cancel()
        for task in (self._gc_task, self._clock_task):
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._gc_task = None
        self._clock_task = None
        logger.info("Background tasks stopped")

    # ============================================================================
    # STATISTICS & INFO
    # ============================================================================

    def get_stats(self) -> dict:
        by_status = {status.value: 0 for status in SessionStatus}
        for session in self.sessions.values():
            by_status[session.status.value] += 1
        return {
            "total_sessions": len(self.sessions),
            "waiting_sessions": by_status[SessionStatus.WAITING.value],
            "active_sessions": by_status[SessionStatus.ACTIVE.value],
            "completed_sessions": by_status[SessionStatus.COMPLETED.value],
            "spectators": sum(len(s.spectators) for s in self.sessions.values()),
            "connections": self.router.connection_count,
            "max_sessions": self.config.MAX_CONCURRENT_SESSIONS,
        }

    def __repr__(self):
        stats = self.get_stats()
        return f"<SessionRegistry: {stats['active_sessions']} active, {stats['total_sessions']} total>"
