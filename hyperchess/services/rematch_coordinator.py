"""
RematchCoordinator - Offer / accept / decline handshake

On accept a successor session is created with the colors swapped, both
players are moved from the old room to the new one in a single step and the
old session is marked as superseded. Nothing is awaited between registering
the successor and migrating the room, so no event can be observed with one
player on the new room and the other still on the old one.
"""

import logging
import uuid
from typing import Optional

from hyperchess.enums import Color, SessionStatus
from hyperchess.errors import Forbidden, InvalidOperation
from hyperchess.messages import rematch_declined, rematch_offered, rematch_session_ready
from hyperchess.services.session import Session
from hyperchess.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class RematchCoordinator:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.router = registry.router
        self.clock_manager = registry.clock_manager
        self.engine = registry.engine

    async def request_rematch(self, session_id: str, identity: str) -> Session:
        """
        Offer a rematch to the other seat.

        Raises:
            Forbidden: identity is not seated.
            InvalidOperation: session still running, already rematched, or no opponent.
        """
        async with self.registry.locked(session_id) as session:
            color = session.seat_of(identity)
            if color is None:
                raise Forbidden("Only seated players can request a rematch")
            if not session.is_completed:
                raise InvalidOperation("Rematch is only available once the session has ended")
            if session.superseded_by:
                raise InvalidOperation("A rematch has already been started")
            opponent = session.seats[color.opponent]
            if opponent is None:
                raise InvalidOperation("No opponent to offer a rematch to")

            session.rematch_offer = identity
            session.touch(self.registry.now())
            self.router.send(opponent, rematch_offered(session_id, identity))
            logger.info(f"Rematch offered in {session_id}: {identity} -> {opponent}")
            return session

    async def respond_rematch(self, session_id: str, identity: str, accept: bool) -> Optional[Session]:
        """
        Accept or decline a pending rematch offer.
        Returns the successor session on accept, None on decline.

        Raises:
            Forbidden: identity is not seated.
            InvalidOperation: no offer pending for this identity to answer.
            CapacityExceeded: registry is full (old session left untouched).
        """
        async with self.registry.locked(session_id) as session:
            if session.seat_of(identity) is None:
                raise Forbidden("Only seated players can answer a rematch offer")
            requester = session.rematch_offer
            if requester is None or requester == identity:
                raise InvalidOperation("No rematch offer to respond to")
            if session.superseded_by:
                raise InvalidOperation("A rematch has already been started")

            now = self.registry.now()
            if not accept:
                session.rematch_offer = None
                session.touch(now)
                self.router.send(requester, rematch_declined(session_id, identity))
                logger.info(f"Rematch declined in {session_id} by {identity}")
                return None

            successor = Session(
                session_id=str(uuid.uuid4()),
                position=self.engine.start_position(),
                initial_clock_ms=self.clock_manager.initial_ms,
                now=now,
            )
            successor.seats[Color.WHITE] = session.seats[Color.BLACK]
            successor.seats[Color.BLACK] = session.seats[Color.WHITE]
            self.registry.register(successor)

            successor.status = SessionStatus.ACTIVE
            self.clock_manager.start(successor, now)
            self.router.move_room(session_id, successor.session_id, successor.participants())

            session.rematch_offer = None
            session.superseded_by = successor.session_id
            session.touch(now)

            self.router.broadcast(successor.session_id, rematch_session_ready(session_id, successor.to_dict()))
            logger.info(f"Rematch accepted: {session_id} -> {successor.session_id} (colors swapped)")
            return successor
