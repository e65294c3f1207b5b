"""
ConnectionLifecycleHandler - Binds identities to channels and seats

- Assigns an identity to anonymous connections
- Applies the configured disconnect policy to every seat the identity holds:
  grace (pause, wait for the same identity to rejoin, then forfeit) or
  strict (forfeit at once)
- Frees spectator slots on disconnect
- Handles explicit seat vacating (leaveSession)
"""

import asyncio
import logging
import uuid
from typing import Dict, Optional, Tuple

from hyperchess.enums import DisconnectPolicy, EndReason, SessionStatus
from hyperchess.errors import Forbidden, NotFound
from hyperchess.messages import (
    connected,
    player_disconnected,
    seat_vacated,
    session_ended,
    spectators_update,
)
from hyperchess.services.broadcast_router import Channel
from hyperchess.services.session import Session
from hyperchess.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


def new_identity() -> str:
    return f"player_{uuid.uuid4().hex[:8]}"


class ConnectionLifecycleHandler:
    def __init__(
        self,
        registry: SessionRegistry,
        policy: DisconnectPolicy = DisconnectPolicy.GRACE,
        grace_period: float = 30.0,
    ):
        self.registry = registry
        self.router = registry.router
        self.clock_manager = registry.clock_manager
        self.policy = policy
        self.grace_period = grace_period
        self._grace_timers: Dict[Tuple[str, str], asyncio.Task] = {}
        registry.lifecycle = self

    # ============================================================================
    # CONNECT / DISCONNECT
    # ============================================================================

    def on_connect(self, channel: Channel, identity: Optional[str] = None) -> str:
        """Attach a channel, assigning a fresh identity if none was supplied."""
        identity = identity or new_identity()
        self.router.attach(identity, channel)
        self.router.send(identity, connected(identity))
        logger.info(f"Client connected: {identity} | Total connections: {self.router.connection_count}")
        return identity

    async def on_disconnect(self, identity: str, channel: Optional[Channel] = None) -> None:
        """Release the identity's channel and apply the disconnect policy to its sessions."""
        if not self.router.detach(identity, channel):
            # A newer connection for this identity is already in place
            return

        for session_id in [s.session_id for s in self.registry.sessions_for(identity)]:
            try:
                async with self.registry.locked(session_id) as session:
                    self._handle_departure(session, identity)
            except NotFound:
                continue
            except Exception as e:
                logger.error(f"Disconnect handling failed for {identity} in {session_id}: {e}", exc_info=True)

        logger.info(f"Client disconnected: {identity} | Total connections: {self.router.connection_count}")

    def _handle_departure(self, session: Session, identity: str) -> None:
        session_id = session.session_id
        now = self.registry.now()

        if identity in session.spectators:
            self._remove_spectator(session, identity)
            return

        color = session.seat_of(identity)
        if color is None or session.is_completed:
            return

        if self.policy is DisconnectPolicy.STRICT:
            if session.status is SessionStatus.ACTIVE:
                self.clock_manager.pause(session, now)
                session.complete(EndReason.DISCONNECT, color.opponent, now)
                logger.info(f"{identity} disconnected from {session_id}: {color.opponent.value} wins by disconnect")
                self.router.broadcast(session_id, session_ended(
                    session_id, EndReason.DISCONNECT.value, color.opponent.value
                ))
            else:
                self._vacate(session, identity)
            return

        if session.status is SessionStatus.ACTIVE:
            self.clock_manager.pause(session, now)
            session.status = SessionStatus.WAITING
        self._start_grace_timer(session_id, identity)
        logger.info(f"{identity} disconnected from {session_id}; holding {color.value} seat for {self.grace_period}s")
        self.router.broadcast(session_id, player_disconnected(
            session.to_dict(), color.value, int(self.grace_period * 1000)
        ))

    # ============================================================================
    # RECONNECTION
    # ============================================================================

    def resume_seat(self, session: Session, identity: str, now: int) -> bool:
        """
        Called under the session lock when a seated identity rejoins.
        Cancels its grace timer and reactivates the session once both seats
        are held and nobody else is still inside a grace window.
        Returns True if anything changed.
        """
        cancelled = self.cancel_grace(session.session_id, identity)
        reactivated = False
        if session.status is SessionStatus.WAITING and self.ready_to_play(session):
            session.status = SessionStatus.ACTIVE
            self.clock_manager.resume(session, now)
            reactivated = True
        if cancelled or reactivated:
            logger.info(f"{identity} reconnected to {session.session_id}")
        return cancelled or reactivated

    def cancel_grace(self, session_id: str, identity: str) -> bool:
        task = self._grace_timers.pop((session_id, identity), None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_session_timers(self, session_id: str) -> None:
        for key in [k for k in self._grace_timers if k[0] == session_id]:
            self._grace_timers.pop(key).cancel()

    def has_pending_grace(self, session_id: str, identity: str) -> bool:
        return (session_id, identity) in self._grace_timers

    def awaiting_reconnect(self, session: Session) -> bool:
        """True while any seated identity of the session is inside its grace window."""
        return any(self.has_pending_grace(session.session_id, p) for p in session.participants())

    def ready_to_play(self, session: Session) -> bool:
        return session.seats_filled and not self.awaiting_reconnect(session)

    def _start_grace_timer(self, session_id: str, identity: str) -> None:
        self.cancel_grace(session_id, identity)
        self._grace_timers[(session_id, identity)] = asyncio.create_task(
            self._expire_grace(session_id, identity)
        )

    async def _expire_grace(self, session_id: str, identity: str) -> None:
        try:
            await asyncio.sleep(self.grace_period)
            async with self.registry.locked(session_id) as session:
                self._grace_timers.pop((session_id, identity), None)
                color = session.seat_of(identity)
                if color is None or session.is_completed:
                    return
                if session.seats[color.opponent] is not None:
                    session.complete(EndReason.DISCONNECT, color.opponent, self.registry.now())
                    logger.info(f"Grace period expired for {identity} in {session_id}: {color.opponent.value} wins")
                    self.router.broadcast(session_id, session_ended(
                        session_id, EndReason.DISCONNECT.value, color.opponent.value
                    ))
                else:
                    logger.info(f"Grace period expired for {identity} in {session_id}: seat released")
                    self._vacate(session, identity)
        except NotFound:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Grace timer failed for {identity} in {session_id}: {e}", exc_info=True)

    # ============================================================================
    # LEAVING
    # ============================================================================

    async def leave(self, session_id: str, identity: str) -> Session:
        """
        Vacate the identity's seat (or spectator slot) in a session.

        Raises:
            NotFound: unknown session.
            Forbidden: identity is neither seated nor spectating.
        """
        async with self.registry.locked(session_id) as session:
            if identity in session.spectators:
                self._remove_spectator(session, identity)
                return session
            if session.seat_of(identity) is None:
                raise Forbidden("You are not part of this session")
            self.cancel_grace(session_id, identity)
            self._vacate(session, identity)
            return session

    def _vacate(self, session: Session, identity: str) -> None:
        session_id = session.session_id
        color = session.seat_of(identity)
        now = self.registry.now()

        self.clock_manager.pause(session, now)
        session.seats[color] = None
        if session.rematch_offer == identity:
            session.rematch_offer = None
        session.touch(now)
        if not session.is_completed:
            session.status = SessionStatus.WAITING

        event = seat_vacated(session.to_dict(), color.value)
        self.router.unsubscribe(session_id, identity)
        if self.router.is_connected(identity):
            self.router.send(identity, event)

        if session.seats_empty:
            self.registry.remove(session_id)
            logger.info(f"Session {session_id} closed: both seats vacated")
            return

        logger.info(f"{identity} left {color.value} seat of {session_id}")
        self.router.broadcast(session_id, event)

    def _remove_spectator(self, session: Session, identity: str) -> None:
        session.spectators.remove(identity)
        self.router.unsubscribe(session.session_id, identity)
        session.touch(self.registry.now())
        self.router.broadcast(session.session_id, spectators_update(session.session_id, len(session.spectators)))
