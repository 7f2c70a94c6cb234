"""Queued, ordered sends to a single websocket."""

import asyncio
import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketOutbox:
    """
    Writes messages to one websocket from its own task.

    `send()` never waits on the network: messages are queued and written in
    order by the writer task. A client that stops reading fills its queue up
    to `max_pending`; the outbox then gives up on it and reports `failed`.
    """

    def __init__(self, websocket: WebSocket, max_pending: int | None = None) -> None:
        self.websocket = websocket
        self._max_pending = max_pending
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._failed = False
        self._task = asyncio.create_task(self._write_loop())

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, text: str) -> bool:
        """Queue a message. Returns False once the outbox has given up."""
        if self._failed:
            return False
        if self._max_pending is not None and self._queue.qsize() >= self._max_pending:
            logger.warning(f"Websocket client fell {self._queue.qsize()} messages behind; dropping it")
            self._failed = True
            self._task.cancel()
            return False
        self._queue.put_nowait(text)
        return True

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await self.websocket.send_text(text)
            except Exception as e:
                logger.debug(f"Send to closed websocket failed: {e!r}")
                self._failed = True
                return

    def close(self) -> None:
        """Stop writing; anything still queued is discarded."""
        self._failed = True
        self._task.cancel()
