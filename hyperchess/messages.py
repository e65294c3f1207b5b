"""
Wire protocol.

Client messages are a closed set of pydantic models tagged by their "type"
field and parsed through a single discriminated union, so an unknown or
malformed message is rejected before any session is touched. Server events
are plain dicts built by the helpers at the bottom of the module.
"""

import json
import re
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from hyperchess.errors import InvalidOperation

UCI_PATTERN = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")


class MoveSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_square: Optional[str] = Field(default=None, alias="from")
    to_square: Optional[str] = Field(default=None, alias="to")
    promotion: Optional[str] = None
    san: Optional[str] = None
    uci: Optional[str] = None


class _SessionMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


# --- CLIENT MESSAGES ---
class CreateSession(BaseModel):
    type: Literal["createSession"]


class JoinSession(_SessionMessage):
    type: Literal["joinSession"]


class SubmitMove(_SessionMessage):
    type: Literal["submitMove"]
    move: MoveSpec

    @field_validator("move", mode="before")
    @classmethod
    def accept_move_string(cls, value: Any) -> Any:
        # A bare string is either UCI ("e2e4") or SAN ("Nf3")
        if isinstance(value, str):
            text = value.strip()
            if UCI_PATTERN.match(text.lower()):
                return {"uci": text}
            return {"san": text}
        return value


class Resign(_SessionMessage):
    type: Literal["resign"]


class LeaveSession(_SessionMessage):
    type: Literal["leaveSession"]


class RequestRematch(_SessionMessage):
    type: Literal["requestRematch"]


class RespondRematch(_SessionMessage):
    type: Literal["respondRematch"]
    accept: bool


class GetSession(_SessionMessage):
    type: Literal["getSession"]


class Ping(BaseModel):
    type: Literal["ping"]


ClientMessage = Annotated[
    Union[
        CreateSession,
        JoinSession,
        SubmitMove,
        Resign,
        LeaveSession,
        RequestRematch,
        RespondRematch,
        GetSession,
        Ping,
    ],
    Field(discriminator="type"),
]

_client_message_adapter = TypeAdapter(ClientMessage)


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]) -> BaseModel:
    """Parse raw JSON (or an already decoded dict) into a client message."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise InvalidOperation("Message is not valid JSON")
    if not isinstance(raw, dict):
        raise InvalidOperation("Message must be a JSON object")
    try:
        return _client_message_adapter.validate_python(raw)
    except ValidationError as exc:
        kind = raw.get("type")
        raise InvalidOperation(f"Invalid {kind or 'untyped'} message: {exc.errors()[0]['msg']}")


# --- SERVER EVENTS ---
def connected(identity: str) -> dict:
    return {"type": "connected", "identity": identity}


def pong() -> dict:
    return {"type": "pong"}


def session_created(snapshot: dict) -> dict:
    return {"type": "sessionCreated", "session": snapshot}


def session_joined(snapshot: dict, role: str) -> dict:
    return {"type": "sessionJoined", "session": snapshot, "role": role}


def session_state(snapshot: dict) -> dict:
    return {"type": "sessionState", "session": snapshot}


def spectators_update(session_id: str, count: int) -> dict:
    return {"type": "spectatorsUpdate", "sessionId": session_id, "count": count}


def move_applied(snapshot: dict, move: str) -> dict:
    event = {
        "type": "moveApplied",
        "sessionId": snapshot["sessionId"],
        "move": move,
        "position": snapshot["position"],
        "turn": snapshot["turn"],
        "moveHistory": snapshot["moveHistory"],
        "captures": snapshot["captures"],
        "clock": snapshot["clock"],
    }
    if snapshot["result"]:
        event["terminalStatus"] = snapshot["result"]
    return event


def session_ended(session_id: str, reason: str, winner: Optional[str]) -> dict:
    return {"type": "sessionEnded", "sessionId": session_id, "reason": reason, "winner": winner}


def seat_vacated(snapshot: dict, color: str) -> dict:
    return {"type": "seatVacated", "session": snapshot, "color": color}


def player_disconnected(snapshot: dict, color: str, grace_ms: int) -> dict:
    return {"type": "playerDisconnected", "session": snapshot, "color": color, "graceMs": grace_ms}


def player_reconnected(snapshot: dict, color: str) -> dict:
    return {"type": "playerReconnected", "session": snapshot, "color": color}


def rematch_offered(session_id: str, from_identity: str) -> dict:
    return {"type": "rematchOffered", "sessionId": session_id, "from": from_identity}


def rematch_session_ready(old_session_id: str, snapshot: dict) -> dict:
    return {
        "type": "rematchSessionReady",
        "sessionId": old_session_id,
        "newSessionId": snapshot["sessionId"],
        "session": snapshot,
    }


def rematch_declined(session_id: str, by_identity: str) -> dict:
    return {"type": "rematchDeclined", "sessionId": session_id, "by": by_identity}
