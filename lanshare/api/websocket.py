"""WebSocket fan-out of transfer, receive and discovery events to the UI."""

import json
import logging

from fastapi import WebSocket

from lanshare.config import UI_MAX_PENDING
from lanshare.discovery.models import DeviceRecord
from lanshare.outbox import WebSocketOutbox

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks UI websocket clients and pushes every event to all of them.

    Broadcasting only queues messages, so a slow UI never slows down the
    transfers that produce the events.
    """

    def __init__(self, max_pending: int = UI_MAX_PENDING) -> None:
        self._clients: list[WebSocketOutbox] = []
        self._max_pending = max_pending

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.append(WebSocketOutbox(websocket, max_pending=self._max_pending))
        logger.info(f"UI client connected. Total: {len(self._clients)}")

    async def disconnect(self, websocket: WebSocket) -> None:
        for outbox in [c for c in self._clients if c.websocket is websocket]:
            outbox.close()
            self._clients.remove(outbox)
        logger.info(f"UI client disconnected. Total: {len(self._clients)}")

    async def broadcast(self, event: str, data: dict) -> None:
        message = json.dumps({"event": event, "data": data})
        for outbox in list(self._clients):
            if not outbox.send(message):
                logger.debug("Dropping UI client after failed send")
                self._clients.remove(outbox)

    async def handle_event(self, event_type: str, data: dict) -> None:
        """EventBus.on_event() callback."""
        await self.broadcast(event_type, data)

    async def handle_peer_change(self, event: str, record: DeviceRecord) -> None:
        """DiscoveryService.on_peer_change() callback."""
        await self.broadcast(event, record.model_dump())
