"""
TurnCoordinator - Applies moves and resignations

- Validates that the mover holds the seat whose turn it is
- Delegates legality and application to the rules engine
- Updates history, repetition keys, capture ledger and clock
- Detects terminal conditions and broadcasts the result
"""

import logging
from typing import Optional

from hyperchess.enums import CaptureTracking, EndReason, SessionStatus
from hyperchess.errors import Forbidden, InvalidOperation
from hyperchess.messages import MoveSpec, move_applied, session_ended
from hyperchess.rules.engine import MoveOutcome, position_key
from hyperchess.services.session import Session
from hyperchess.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

THREEFOLD = 3


class TurnCoordinator:
    def __init__(self, registry: SessionRegistry, capture_tracking: CaptureTracking = CaptureTracking.INCREMENTAL):
        self.registry = registry
        self.router = registry.router
        self.clock_manager = registry.clock_manager
        self.engine = registry.engine
        self.capture_tracking = capture_tracking

    # ============================================================================
    # MOVES
    # ============================================================================

    async def submit_move(self, session_id: str, identity: str, move_spec: MoveSpec) -> Session:
        """
        Apply a move for the identity whose turn it is.

        Raises:
            NotFound: unknown session.
            InvalidOperation: session not active, or the rules engine rejects the move.
            Forbidden: identity does not hold the seat to move.
        """
        async with self.registry.locked(session_id) as session:
            if session.status is not SessionStatus.ACTIVE:
                raise InvalidOperation(f"Session is {session.status.value}, moves are not accepted")

            mover = session.side_to_move
            if session.seats[mover] != identity:
                raise Forbidden("Not your turn")

            # Validate before touching any session state
            outcome = self.engine.apply(session.position, move_spec)

            now = self.registry.now()
            if self.clock_manager.on_move(session, now):
                # Flag fell before the move arrived; the move is void
                self.clock_manager.declare_timeout(session, now)
                self.router.broadcast(session_id, session_ended(
                    session_id, EndReason.TIMEOUT.value, session.winner.value
                ))
                return session

            self._record(session, outcome)
            session.touch(now)

            ending = self._terminal_condition(session, outcome)
            if ending:
                reason, winner = ending
                session.complete(reason, winner, now)

            logger.info(f"Move {outcome.san} by {identity} ({mover.value}) in {session_id}")
            snapshot = session.to_dict()
            self.router.broadcast(session_id, move_applied(snapshot, outcome.san))
            if session.is_completed:
                logger.info(f"SESSION OVER: {session_id} | {session.end_reason.value}")
                self.router.broadcast(session_id, session_ended(
                    session_id,
                    session.end_reason.value,
                    session.winner.value if session.winner else None,
                ))
            return session

    # ============================================================================
    # RESIGNATION
    # ============================================================================

    async def resign(self, session_id: str, identity: str) -> Session:
        """
        Resign the identity's seat; the opponent wins.

        Raises:
            NotFound: unknown session.
            Forbidden: identity is not seated in the session.
            InvalidOperation: session already completed.
        """
        async with self.registry.locked(session_id) as session:
            color = session.seat_of(identity)
            if color is None:
                raise Forbidden("Only seated players can resign")
            if session.is_completed:
                raise InvalidOperation("Session already completed")

            now = self.registry.now()
            self.clock_manager.pause(session, now)
            session.complete(EndReason.RESIGNATION, color.opponent, now)
            logger.info(f"{identity} ({color.value}) resigned {session_id}")
            self.router.broadcast(session_id, session_ended(
                session_id, EndReason.RESIGNATION.value, color.opponent.value
            ))
            return session

    # --- Internal helpers ---
    def _record(self, session: Session, outcome: MoveOutcome) -> None:
        session.position = outcome.position
        session.move_history.append(outcome.san)
        session.position_history.append(position_key(outcome.position))

        if self.capture_tracking is CaptureTracking.MATERIAL_DIFF:
            session.captures = self.engine.material_captures(outcome.position)
        elif outcome.captured:
            session.captures[outcome.mover.value].append(outcome.captured)

    def _terminal_condition(self, session: Session, outcome: MoveOutcome) -> Optional[tuple]:
        if outcome.terminal is EndReason.CHECKMATE:
            return outcome.terminal, outcome.winner
        if outcome.terminal is not None:
            return outcome.terminal, None
        if session.repetition_count() >= THREEFOLD:
            return EndReason.THREEFOLD_DRAW, None
        return None
