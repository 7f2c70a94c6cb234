"""
LanShare: FastAPI application entry point.

Serves the local control API and UI event websocket, and on startup brings up
the file receiver, the signaling relay and the LAN advertisement.
"""

import logging
import random
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from lanshare import __version__
from lanshare.api.routes import init_routes, router
from lanshare.api.websocket import ConnectionManager
from lanshare.config import (
    API_HOST,
    API_PORT,
    LOG_LEVEL,
    RECEIVER_HOST,
    RECEIVER_PORT,
    SIGNALING_HOST,
    SIGNALING_PORT,
)
from lanshare.discovery.service import DiscoveryService
from lanshare.events import EventBus
from lanshare.server import BackgroundServer
from lanshare.settings.store import SettingsStore
from lanshare.signaling.relay import SignalingServer
from lanshare.transfer.manager import TransferEngine
from lanshare.transfer.receiver import FileReceiver, create_receiver_app

logger = logging.getLogger(__name__)


def create_app(settings_store: SettingsStore | None = None) -> FastAPI:
    """Build the control API and wire every service into it."""
    settings_store = settings_store or SettingsStore()
    events = EventBus()
    discovery_service = DiscoveryService(settings_store)
    transfer_engine = TransferEngine(events)
    receiver = FileReceiver(settings_store, events)
    receiver_server = BackgroundServer(
        create_receiver_app(receiver), RECEIVER_HOST, RECEIVER_PORT
    )
    signaling_server = SignalingServer(host=SIGNALING_HOST, port=SIGNALING_PORT)
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info("Starting LanShare services...")

        try:
            events.on_event(ws_manager.handle_event)
            discovery_service.on_peer_change(ws_manager.handle_peer_change)

            await receiver_server.start()
            logger.info(f"File receiver listening on port {RECEIVER_PORT}")
            await signaling_server.start()

            # Suffix keeps names unique when several devices share a host name
            device_name = f"{settings_store.settings.device_name}#{random.randint(0, 999)}"
            await discovery_service.publish(device_name, RECEIVER_PORT)

            logger.info(
                f"LanShare ready: API {API_HOST}:{API_PORT}, "
                f"receiver port {RECEIVER_PORT}, signaling port {SIGNALING_PORT}"
            )

            yield

        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down LanShare services...")
            await transfer_engine.stop()
            await discovery_service.close()
            await signaling_server.stop()
            await receiver_server.stop()

    app = FastAPI(
        title="LanShare",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173", "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Inject services into routes
    init_routes(discovery_service, transfer_engine, settings_store)
    app.include_router(router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await ws_manager.disconnect(websocket)

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    uvicorn.run(
        create_app(),
        host=API_HOST,
        port=API_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    main()
