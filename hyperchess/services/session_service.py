"""
SessionService - Wires the session components together and dispatches
client messages to them.

Transport callbacks (connect, message, disconnect) only ever call into this
class. Each message is handled in isolation: a SessionError is reported to
the requester alone, and anything unexpected becomes an InternalFault for
that requester without disturbing other sessions.
"""

import logging
from typing import Callable, Optional, Union

from pydantic import BaseModel

from hyperchess.config import Config
from hyperchess.enums import CaptureTracking, ClockMode, DisconnectPolicy
from hyperchess.errors import InternalFault, InvalidOperation, SessionError
from hyperchess.messages import (
    CreateSession,
    GetSession,
    JoinSession,
    LeaveSession,
    Ping,
    RequestRematch,
    Resign,
    RespondRematch,
    SubmitMove,
    parse_client_message,
    pong,
    session_created,
    session_state,
)
from hyperchess.rules.engine import RulesEngine
from hyperchess.services.broadcast_router import BroadcastRouter, Channel
from hyperchess.services.clock_manager import ClockManager
from hyperchess.services.connection_lifecycle import ConnectionLifecycleHandler
from hyperchess.services.rematch_coordinator import RematchCoordinator
from hyperchess.services.session_registry import SessionRegistry, epoch_ms
from hyperchess.services.turn_coordinator import TurnCoordinator

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(self, config: type = Config, now: Callable[[], int] = epoch_ms, engine: Optional[RulesEngine] = None):
        self.config = config
        self.router = BroadcastRouter()
        self.clock_manager = ClockManager(
            initial_ms=config.INITIAL_CLOCK_MS,
            mode=ClockMode(config.CLOCK_MODE),
            tick_interval=config.CLOCK_TICK_INTERVAL,
        )
        self.registry = SessionRegistry(config, self.router, self.clock_manager, engine, now)
        self.turns = TurnCoordinator(self.registry, CaptureTracking(config.CAPTURE_TRACKING))
        self.lifecycle = ConnectionLifecycleHandler(
            self.registry,
            policy=DisconnectPolicy(config.DISCONNECT_POLICY),
            grace_period=config.RECONNECT_GRACE_PERIOD,
        )
        self.rematches = RematchCoordinator(self.registry)

    # ============================================================================
    # LIFECYCLE
    # ============================================================================

    def start(self) -> None:
        self.registry.start_background_tasks()

    async def stop(self) -> None:
        await self.registry.stop_background_tasks()
        await self.router.close()

    def connect(self, channel: Channel, identity: Optional[str] = None) -> str:
        return self.lifecycle.on_connect(channel, identity)

    async def disconnect(self, identity: str, channel: Optional[Channel] = None) -> None:
        await self.lifecycle.on_disconnect(identity, channel)

    # ============================================================================
    # MESSAGE HANDLING
    # ============================================================================

    async def handle_raw(self, identity: str, raw: Union[str, bytes, dict]) -> None:
        """Parse and handle one inbound message from a client."""
        try:
            message = parse_client_message(raw)
        except SessionError as e:
            logger.warning(f"Rejected message from {identity}: {e.message}")
            self.router.send(identity, e.to_dict())
            return
        await self.handle(identity, message)

    async def handle(self, identity: str, message: BaseModel) -> None:
        logger.info(f"Message from {identity}: {message.type}")
        try:
            await self._dispatch(identity, message)
        except SessionError as e:
            logger.warning(f"{message.type} from {identity} failed: {e.code.value} {e.message}")
            self.router.send(identity, e.to_dict())
        except Exception as e:
            logger.error(f"Error handling {message.type} from {identity}: {e}", exc_info=True)
            self.router.send(identity, InternalFault("Failed to process message").to_dict())

    async def _dispatch(self, identity: str, message: BaseModel) -> None:
        if isinstance(message, CreateSession):
            session = self.registry.create(identity)
            self.router.send(identity, session_created(session.to_dict()))
        elif isinstance(message, JoinSession):
            await self.registry.join(message.session_id, identity)
        elif isinstance(message, SubmitMove):
            await self.turns.submit_move(message.session_id, identity, message.move)
        elif isinstance(message, Resign):
            await self.turns.resign(message.session_id, identity)
        elif isinstance(message, LeaveSession):
            await self.lifecycle.leave(message.session_id, identity)
        elif isinstance(message, RequestRematch):
            await self.rematches.request_rematch(message.session_id, identity)
        elif isinstance(message, RespondRematch):
            await self.rematches.respond_rematch(message.session_id, identity, message.accept)
        elif isinstance(message, GetSession):
            async with self.registry.locked(message.session_id) as session:
                self.router.send(identity, session_state(session.to_dict()))
        elif isinstance(message, Ping):
            self.router.send(identity, pong())
        else:
            raise InvalidOperation(f"Unsupported message type: {message.type}")
