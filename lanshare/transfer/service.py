"""
HTTP wire helpers for the file transfer protocol.

Files are sent as a raw `POST /transfer` body with the metadata carried in
headers. The body is an async generator: httpx asks for the next chunk only
after the transport has accepted the previous one, so disk reads never run
ahead of the network.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable
from urllib.parse import quote, unquote

import httpx

from lanshare.config import CHUNK_SIZE
from lanshare.transfer.errors import TransferCancelled, TransferRejected
from lanshare.transfer.models import FileDescriptor

logger = logging.getLogger(__name__)

# --- Wire protocol constants ---

HEADER_FILE_NAME = "X-File-Name"
HEADER_FILE_SIZE = "X-File-Size"
HEADER_AUTH_KEY = "X-Auth-Key"

# Characters left untouched by JavaScript's encodeURIComponent
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_file_name(name: str) -> str:
    return quote(name, safe=_URI_COMPONENT_SAFE)


def decode_file_name(value: str) -> str:
    return unquote(value)


def peer_url(address: str, port: int, path: str) -> str:
    host = f"[{address}]" if ":" in address else address
    return f"http://{host}:{port}{path}"


def build_transfer_headers(file: FileDescriptor, auth_key: str | None = None) -> dict[str, str]:
    headers = {
        "Content-Type": "application/octet-stream",
        HEADER_FILE_NAME: encode_file_name(file.name),
        HEADER_FILE_SIZE: str(file.size),
    }
    if auth_key:
        headers[HEADER_AUTH_KEY] = auth_key
    return headers


async def iter_file_chunks(path: str, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read a file in fixed-size chunks without blocking the event loop."""
    f = await asyncio.to_thread(open, path, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(f.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await asyncio.to_thread(f.close)


async def send_file(
    client: httpx.AsyncClient,
    address: str,
    port: int,
    file: FileDescriptor,
    progress_callback: Callable[[int], Awaitable[None]],
    auth_key: str | None = None,
    is_cancelled: Callable[[], bool] | None = None,
    chunk_size: int = CHUNK_SIZE,
) -> None:
    """
    Stream one file to a peer's receiver.

    Args:
        client: HTTP client to send with.
        address, port: The receiver endpoint.
        file: Local file to send.
        progress_callback: async fn(bytes_sent) called after every chunk.
        auth_key: Bearer token for password-protected receivers.
        is_cancelled: Polled between chunks; a True result aborts the body.

    Raises:
        TransferRejected: the receiver replied with a non-200 status.
        TransferCancelled: `is_cancelled` reported True mid-stream.
    """

    async def body() -> AsyncIterator[bytes]:
        sent = 0
        async for chunk in iter_file_chunks(file.path, chunk_size):
            if is_cancelled and is_cancelled():
                raise TransferCancelled()
            yield chunk
            sent += len(chunk)
            if is_cancelled and is_cancelled():
                raise TransferCancelled()
            await progress_callback(sent)

    response = await client.post(
        peer_url(address, port, "/transfer"),
        content=body(),
        headers=build_transfer_headers(file, auth_key),
    )
    if response.status_code != 200:
        raise TransferRejected(response.status_code)
