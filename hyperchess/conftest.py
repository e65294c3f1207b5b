"""
Pytest will auto-discover this file. It defines the fixtures shared by the
service tests: a recording channel standing in for a WebSocket, a manual
millisecond clock, and a factory for fully wired SessionService instances.
"""

from typing import Any, List, Optional

import pytest

from hyperchess.config import Config
from hyperchess.services.session_service import SessionService

START_MS = 1_700_000_000_000


class RecordingChannel:
    """Collects everything the router pushes to one client."""

    def __init__(self):
        self.messages: List[dict] = []

    async def send_json(self, data: Any) -> None:
        self.messages.append(data)

    def types(self) -> List[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, kind: str) -> List[dict]:
        return [m for m in self.messages if m["type"] == kind]

    def last(self, kind: str) -> dict:
        matches = self.of_type(kind)
        assert matches, f"no {kind!r} message in {self.types()}"
        return matches[-1]

    def clear(self) -> None:
        self.messages.clear()


class ManualClock:
    """Epoch-millisecond time source that only moves when told to."""

    def __init__(self, start: int = START_MS):
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def make_service(clock):
    """Build a SessionService with Config values overridden by keyword."""

    def _make(engine=None, **overrides) -> SessionService:
        config = type("ServiceConfig", (Config,), overrides)
        return SessionService(config, now=clock, engine=engine)

    return _make


@pytest.fixture
def connect():
    """Attach a RecordingChannel for an identity (call inside a running loop)."""

    def _connect(service: SessionService, identity: Optional[str] = None) -> RecordingChannel:
        channel = RecordingChannel()
        service.connect(channel, identity)
        return channel

    return _connect


@pytest.fixture
def seated_pair(connect):
    """Create a session as alice and join it as bob. Returns (session_id, alice, bob)."""

    async def _seat(service: SessionService):
        alice = connect(service, "alice")
        bob = connect(service, "bob")
        await service.handle_raw("alice", {"type": "createSession"})
        await service.router.drain()
        session_id = alice.last("sessionCreated")["session"]["sessionId"]
        await service.handle_raw("bob", {"type": "joinSession", "sessionId": session_id})
        await service.router.drain()
        return session_id, alice, bob

    return _seat
