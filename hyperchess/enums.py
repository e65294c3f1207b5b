from enum import Enum


class Color(Enum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self is Color.WHITE else Color.WHITE

    @property
    def fen_letter(self) -> str:
        return "w" if self is Color.WHITE else "b"


class SessionStatus(Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"


class Role(Enum):
    WHITE = "white"
    BLACK = "black"
    SPECTATOR = "spectator"


class EndReason(Enum):
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    INSUFFICIENT_MATERIAL = "insufficient-material"
    THREEFOLD_DRAW = "threefold-draw"
    FIFTY_MOVE_DRAW = "fifty-move-draw"
    RESIGNATION = "resignation"
    TIMEOUT = "timeout"
    DISCONNECT = "disconnect"


class ErrorCode(Enum):
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    INVALID_OPERATION = "InvalidOperation"
    INTERNAL_FAULT = "InternalFault"


class DisconnectPolicy(Enum):
    GRACE = "grace"
    STRICT = "strict"


class ClockMode(Enum):
    CONTINUOUS = "continuous"
    MOVE_BOUNDARY = "move_boundary"


class CaptureTracking(Enum):
    INCREMENTAL = "incremental"
    MATERIAL_DIFF = "material_diff"
