"""
WebSocket signaling relay.

Peers connect, are told their generated peer id, and exchange opaque
`signal` payloads addressed by id. Forwarding is best effort: a signal for a
peer that is not connected is dropped without telling the sender. Retries
belong to the negotiation running on top of the relay.
"""

import logging
import time
import uuid

from fastapi import FastAPI, WebSocket
from pydantic import ValidationError

from lanshare.config import SIGNALING_HOST, SIGNALING_MAX_PENDING, SIGNALING_PORT
from lanshare.outbox import WebSocketOutbox
from lanshare.server import BackgroundServer
from lanshare.signaling.models import SignalingMessage

logger = logging.getLogger(__name__)


def generate_peer_id() -> str:
    return f"peer_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class SignalingRelay:
    """Registry of connected peers and the forwarding rules between them.

    Each peer is written to through its own `WebSocketOutbox`, so a peer that
    stops reading never holds up the others. Registry changes and the
    messages they trigger are queued without an await in between: every
    peer sees peer lists in registry order, and a peer removed on disconnect
    can never be picked as a signal target again.
    """

    def __init__(self, max_pending: int = SIGNALING_MAX_PENDING) -> None:
        self._peers: dict[str, WebSocketOutbox] = {}
        self._max_pending = max_pending

    def get_connected_peers(self) -> list[str]:
        return list(self._peers.keys())

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a connection, register it and announce it."""
        await websocket.accept()
        peer_id = generate_peer_id()
        while peer_id in self._peers:
            peer_id = generate_peer_id()
        outbox = WebSocketOutbox(websocket, max_pending=self._max_pending)
        self._peers[peer_id] = outbox
        logger.info(f"Client connected: {peer_id}")

        outbox.send(SignalingMessage(type="ready", peer_id=peer_id).to_json())
        self._broadcast_peer_list()
        return peer_id

    async def disconnect(self, peer_id: str) -> None:
        outbox = self._peers.pop(peer_id, None)
        if outbox is None:
            return
        outbox.close()
        logger.info(f"Client disconnected: {peer_id}")
        self._broadcast_peer_list()

    async def handle_message(self, peer_id: str, raw: str) -> None:
        """Apply one inbound message. Unparsable messages are logged and dropped."""
        try:
            message = SignalingMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Failed to parse message from {peer_id}: {e.error_count()} error(s)")
            return

        if message.type == "signal":
            if not message.to or peer_id not in self._peers:
                return
            target = self._peers.get(message.to)
            if target is None:
                logger.debug(f"Dropping signal from {peer_id} to absent peer {message.to}")
                return
            target.send(
                SignalingMessage(type="signal", from_=peer_id, signal=message.signal).to_json()
            )
        elif message.type == "join":
            self._broadcast_peer_list()
        else:
            logger.info(f"Unknown message type from {peer_id}: {message.type}")

    async def serve(self, websocket: WebSocket) -> None:
        """Run one peer's connection until it closes."""
        peer_id = await self.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                if message.get("text") is not None:
                    raw = message["text"]
                else:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.handle_message(peer_id, raw)
        finally:
            await self.disconnect(peer_id)

    def _broadcast_peer_list(self) -> None:
        message = SignalingMessage(type="peers", peers=list(self._peers.keys())).to_json()
        for outbox in list(self._peers.values()):
            outbox.send(message)

    async def stop(self) -> None:
        """Close every connection. Safe to call more than once."""
        connections = list(self._peers.values())
        self._peers.clear()

        for outbox in connections:
            outbox.close()
            try:
                await outbox.websocket.close()
            except RuntimeError as e:
                logger.debug(f"Websocket already closed: {e}")
        if connections:
            logger.info(f"Closed {len(connections)} signaling connection(s)")


def create_signaling_app(relay: SignalingRelay) -> FastAPI:
    app = FastAPI(title="LanShare signaling", docs_url=None, redoc_url=None)

    @app.websocket("/")
    async def signaling_endpoint(websocket: WebSocket):
        await relay.serve(websocket)

    return app


class SignalingServer:
    """Runs a relay on its own port."""

    def __init__(
        self,
        relay: SignalingRelay | None = None,
        host: str = SIGNALING_HOST,
        port: int = SIGNALING_PORT,
    ) -> None:
        self.relay = relay or SignalingRelay()
        self._server = BackgroundServer(create_signaling_app(self.relay), host, port)

    @property
    def running(self) -> bool:
        return self._server.running

    async def start(self) -> None:
        if self._server.running:
            logger.info("Signaling server already running")
            return
        await self._server.start()
        logger.info(f"Signaling server listening on port {self._server.port}")

    async def stop(self) -> None:
        """Close all peers and release the port. Idempotent."""
        if not self._server.running:
            return
        await self.relay.stop()
        await self._server.stop()
        logger.info("Signaling server stopped")
