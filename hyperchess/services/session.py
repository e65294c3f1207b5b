from typing import Any, Dict, List, Optional

from hyperchess.enums import Color, EndReason, Role, SessionStatus
from hyperchess.rules.engine import position_key


class Clock:
    """Per-side remaining time in milliseconds."""

    def __init__(self, initial_ms: int):
        self.white_ms: int = initial_ms
        self.black_ms: int = initial_ms
        self.last_tick_at: Optional[int] = None
        self.started: bool = False
        self.running: bool = False

    def remaining(self, color: Color) -> int:
        return self.white_ms if color is Color.WHITE else self.black_ms

    def debit(self, color: Color, elapsed_ms: int) -> int:
        """Charge elapsed time to one side, clamping at zero. Returns what is left."""
        if color is Color.WHITE:
            self.white_ms = max(0, self.white_ms - elapsed_ms)
            return self.white_ms
        self.black_ms = max(0, self.black_ms - elapsed_ms)
        return self.black_ms

    def to_dict(self) -> dict:
        return {
            "white": self.white_ms,
            "black": self.black_ms,
            "lastTickAt": self.last_tick_at,
            "started": self.started,
        }


class Session:
    def __init__(self, session_id: str, position: str, initial_clock_ms: int, now: int):
        # Identification
        self.session_id: str = session_id
        self.status: SessionStatus = SessionStatus.WAITING

        # Board state (owned by the rules engine, stored as FEN)
        self.position: str = position
        self.move_history: List[str] = []
        self.position_history: List[str] = [position_key(position)]
        self.captures: Dict[str, List[str]] = {"white": [], "black": []}

        # Occupants
        self.seats: Dict[Color, Optional[str]] = {Color.WHITE: None, Color.BLACK: None}
        self.spectators: List[str] = []

        # Clock
        self.clock: Clock = Clock(initial_clock_ms)

        # Timestamps (epoch milliseconds)
        self.created_at: int = now
        self.last_activity_at: int = now

        # Game end tracking
        self.end_reason: Optional[EndReason] = None
        self.winner: Optional[Color] = None

        # Rematch tracking
        self.rematch_offer: Optional[str] = None
        self.superseded_by: Optional[str] = None

    # --- Helper Methods ---
    @property
    def side_to_move(self) -> Color:
        """Side to move follows from move history parity."""
        return Color.WHITE if len(self.move_history) % 2 == 0 else Color.BLACK

    @property
    def is_completed(self) -> bool:
        return self.status is SessionStatus.COMPLETED

    @property
    def seats_filled(self) -> bool:
        return all(self.seats.values())

    @property
    def seats_empty(self) -> bool:
        return not any(self.seats.values())

    def seat_of(self, identity: str) -> Optional[Color]:
        """Get the seat held by an identity"""
        for color, holder in self.seats.items():
            if holder == identity:
                return color
        return None

    def free_seat(self) -> Optional[Color]:
        for color in (Color.WHITE, Color.BLACK):
            if self.seats[color] is None:
                return color
        return None

    def opponent_of(self, identity: str) -> Optional[str]:
        color = self.seat_of(identity)
        if color is None:
            return None
        return self.seats[color.opponent]

    def role_of(self, identity: str) -> Optional[Role]:
        color = self.seat_of(identity)
        if color is not None:
            return Role(color.value)
        if identity in self.spectators:
            return Role.SPECTATOR
        return None

    def participants(self) -> List[str]:
        return [holder for holder in self.seats.values() if holder]

    def touch(self, now: int) -> None:
        """Record activity; last_activity_at never moves backwards."""
        self.last_activity_at = max(self.last_activity_at, now)

    def complete(self, reason: EndReason, winner: Optional[Color], now: int) -> bool:
        """
        Move the session to its terminal state.
        Returns False if it was already completed, so each ending is applied once.
        """
        if self.is_completed:
            return False
        self.status = SessionStatus.COMPLETED
        self.end_reason = reason
        self.winner = winner
        self.clock.running = False
        self.touch(now)
        return True

    def repetition_count(self, key: Optional[str] = None) -> int:
        key = key if key is not None else self.position_history[-1]
        return self.position_history.count(key)

    # --- Serialization ---
    def result_dict(self) -> Optional[Dict[str, Any]]:
        if self.end_reason is None:
            return None
        return {
            "reason": self.end_reason.value,
            "winner": self.winner.value if self.winner else None,
        }

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "position": self.position,
            "turn": self.side_to_move.fen_letter,
            "status": self.status.value,
            "players": {
                "white": self.seats[Color.WHITE],
                "black": self.seats[Color.BLACK],
            },
            "spectators": list(self.spectators),
            "spectatorCount": len(self.spectators),
            "moveHistory": list(self.move_history),
            "captures": {side: list(codes) for side, codes in self.captures.items()},
            "positionHistory": list(self.position_history),
            "clock": self.clock.to_dict(),
            "createdAt": self.created_at,
            "lastActivityAt": self.last_activity_at,
            "result": self.result_dict(),
            "rematchOffer": self.rematch_offer,
            "supersededBy": self.superseded_by,
        }

    def __repr__(self) -> str:
        return (
            f"<Session {self.session_id} {self.status.value} "
            f"white={self.seats[Color.WHITE]} black={self.seats[Color.BLACK]}>"
        )
