from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional
import logging

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from hyperchess.config import Config
from hyperchess.services.session_service import SessionService

logger = logging.getLogger(__name__)

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging(config_class=Config) -> Path:
    """Log to a timestamped file under LOG_DIR and to the console."""
    log_dir = Path(config_class.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_filename = log_dir / f"server_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logging.basicConfig(
        level=getattr(logging, str(config_class.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[
            logging.FileHandler(log_filename),
            logging.StreamHandler()  # Also print to console
        ]
    )
    return log_filename

# ============================================================================
# FASTAPI APP SETUP
# ============================================================================

def create_app(config_class=Config) -> FastAPI:
    log_filename = configure_logging(config_class)
    service = SessionService(config_class)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info("HYPERCHESS SESSION SERVER STARTING")
        logger.info("=" * 60)
        service.start()
        logger.info(f"Log file: {log_filename}")
        yield
        await service.stop()
        logger.info("Server shutting down - cleaned up background tasks")

    app = FastAPI(lifespan=lifespan)
    app.state.service = service

    # ========================================================================
    # HTTP ENDPOINTS
    # ========================================================================

    @app.get("/")
    async def root():
        """Health check with connection count"""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "connections": service.router.connection_count,
        }

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/status")
    async def status():
        """Get server status"""
        return service.registry.get_stats()

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str):
        """Get the snapshot of a specific session"""
        session = service.registry.get(session_id)
        if not session:
            logger.warning(f"Session state request for nonexistent session: {session_id}")
            raise HTTPException(status_code=404, detail="Session not found")
        return {"success": True, "session": session.to_dict()}

    # ========================================================================
    # WEBSOCKET ENDPOINT
    # ========================================================================

    @app.websocket("/ws")
    @app.websocket("/ws/{client_id}")
    async def websocket_endpoint(websocket: WebSocket, client_id: Optional[str] = None):
        await websocket.accept()
        identity = service.connect(websocket, client_id)

        try:
            while True:
                data = await websocket.receive_text()
                await service.handle_raw(identity, data)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected normally: {identity}")
        except Exception as e:
            logger.error(f"Error with client {identity}: {e}", exc_info=True)
        finally:
            await service.disconnect(identity, websocket)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting server on http://{Config.HOST}:{Config.PORT}")
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
