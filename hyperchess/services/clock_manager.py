"""
ClockManager - Per-session dual countdown

- Continuous mode: a background task ticks every active session and declares
  a timeout loss as soon as the side to move reaches zero, even if no
  further move arrives
- Move-boundary mode (legacy): time is only charged when a move is accepted,
  so a flag only falls at move time
- The clock is inert until the session is active and paused while it waits
  for a player to come back
"""

import asyncio
import logging
from typing import TYPE_CHECKING, List

from hyperchess.enums import ClockMode, EndReason, SessionStatus
from hyperchess.errors import NotFound
from hyperchess.messages import session_ended
from hyperchess.services.session import Session

if TYPE_CHECKING:
    from hyperchess.services.broadcast_router import BroadcastRouter
    from hyperchess.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ClockManager:
    def __init__(self, initial_ms: int, mode: ClockMode = ClockMode.CONTINUOUS, tick_interval: float = 1.0):
        self.initial_ms = initial_ms
        self.mode = mode
        self.tick_interval = tick_interval

    # ============================================================================
    # CLOCK CONTROL
    # ============================================================================

    def start(self, session: Session, now: int) -> None:
        """Start (or restart after a pause) the side to move's countdown."""
        clock = session.clock
        clock.started = True
        clock.running = True
        clock.last_tick_at = now

    def pause(self, session: Session, now: int) -> None:
        """Charge the side to move up to now, then stop the countdown."""
        if not session.clock.running:
            return
        self._charge(session, now)
        session.clock.running = False

    def resume(self, session: Session, now: int) -> None:
        if session.is_completed or session.clock.running:
            return
        self.start(session, now)

    def on_move(self, session: Session, now: int) -> bool:
        """
        Charge the mover for the time spent on the move about to be applied.
        Returns True if the mover's flag fell before the move arrived.
        """
        if not session.clock.running:
            return False
        return self._charge(session, now) <= 0

    def tick(self, session: Session, now: int) -> bool:
        """
        Debit the side to move for time elapsed since the last tick.
        Returns True exactly once: when this tick ends the session on time.
        """
        if self.mode is not ClockMode.CONTINUOUS:
            return False
        if session.status is not SessionStatus.ACTIVE or not session.clock.running:
            return False
        if self._charge(session, now) > 0:
            return False
        return self.declare_timeout(session, now)

    def declare_timeout(self, session: Session, now: int) -> bool:
        loser = session.side_to_move
        ended = session.complete(EndReason.TIMEOUT, loser.opponent, now)
        if ended:
            logger.info(f"Session {session.session_id}: {loser.value} ran out of time")
        return ended

    # ============================================================================
    # BACKGROUND TICKING
    # ============================================================================

    async def tick_sessions(self, registry: "SessionRegistry", router: "BroadcastRouter") -> List[str]:
        """Tick every active session once. Returns ids of sessions that timed out."""
        timed_out: List[str] = []
        for session_id in registry.session_ids(SessionStatus.ACTIVE):
            try:
                async with registry.locked(session_id) as session:
                    if self.tick(session, registry.now()):
                        timed_out.append(session_id)
                        router.broadcast(session_id, session_ended(
                            session_id, EndReason.TIMEOUT.value, session.winner.value
                        ))
            except NotFound:
                # Collected between listing and locking
                continue
            except Exception as e:
                logger.error(f"Clock tick failed for session {session_id}: {e}", exc_info=True)
        return timed_out

    async def run(self, registry: "SessionRegistry", router: "BroadcastRouter") -> None:
        logger.info(f"Clock ticker started ({self.mode.value}, every {self.tick_interval}s)")
        while True:
            await asyncio.sleep(self.tick_interval)
            await self.tick_sessions(registry, router)

    # --- Internal helpers ---
    def _charge(self, session: Session, now: int) -> int:
        clock = session.clock
        last = clock.last_tick_at if clock.last_tick_at is not None else now
        elapsed = max(0, now - last)
        clock.last_tick_at = now
        return clock.debit(session.side_to_move, elapsed)
