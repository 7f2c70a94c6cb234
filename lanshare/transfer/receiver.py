"""
File receiver: the always-listening HTTP endpoint peers send files to.

Routes:
    GET  /auth-status   -> {"requiresAuth": bool}
    POST /verify-auth   -> 200 / 401 / 403
    POST /transfer      -> raw body streamed into the download directory
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.requests import ClientDisconnect

from lanshare.events import EventBus
from lanshare.security.crypto import auth_keys_match
from lanshare.settings.store import SettingsStore
from lanshare.transfer.models import percentage_of
from lanshare.transfer.service import decode_file_name

logger = logging.getLogger(__name__)


class AuthResult:
    OK = 200
    MISSING = 401
    INVALID = 403


def sanitize_file_name(raw: str) -> str | None:
    """Reduce a peer-supplied name to a bare file name, or None if unusable."""
    name = os.path.basename(raw.replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        return None
    return name


class FileReceiver:
    """Authorizes inbound requests and writes incoming files to disk.

    There is no receiver-wide lock: each request streams into its own file
    handle and reports its own progress.
    """

    def __init__(self, settings_store: SettingsStore, events: EventBus) -> None:
        self._settings_store = settings_store
        self._events = events

    def requires_auth(self) -> bool:
        return self._settings_store.settings.requires_auth

    def check_auth_key(self, auth_key: str | None) -> int:
        """Return the status an auth key earns: 200, 401 (missing) or 403 (wrong)."""
        expected = self._settings_store.settings.auth_key
        if not expected:
            return AuthResult.OK
        if not auth_key:
            return AuthResult.MISSING
        if auth_keys_match(expected, auth_key):
            return AuthResult.OK
        return AuthResult.INVALID

    async def receive(
        self,
        file_name: str,
        file_size: int,
        chunks: AsyncIterator[bytes],
    ) -> Path:
        """
        Stream an incoming body into the download directory.

        The body is written to a hidden per-request `.part` file that is
        renamed over `file_name` once complete, so concurrent uploads of the
        same name never share a file.

        Returns:
            The path of the written file.

        Raises:
            OSError, ClientDisconnect: the partial file is removed first.
        """
        download_dir = Path(self._settings_store.settings.download_path)
        file_path = download_dir / file_name
        part_path = download_dir / f".{file_name}.{uuid.uuid4().hex[:12]}.part"
        logger.info(f"Receiving file: {file_name} ({file_size} bytes) -> {file_path}")

        await asyncio.to_thread(download_dir.mkdir, parents=True, exist_ok=True)
        f = await asyncio.to_thread(open, part_path, "wb")
        received = 0
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                await asyncio.to_thread(f.write, chunk)
                received += len(chunk)
                await self._events.emit(
                    "receive_progress",
                    {
                        "file_name": file_name,
                        "file_size": file_size,
                        "bytes_received": received,
                        "percentage": percentage_of(received, file_size),
                        "status": "receiving",
                    },
                )
            await asyncio.to_thread(f.close)
            await asyncio.to_thread(os.replace, part_path, file_path)
        except BaseException as e:
            await asyncio.to_thread(f.close)
            await asyncio.to_thread(part_path.unlink, missing_ok=True)
            logger.error(f"Error receiving {file_name}: {e!r}")
            await self._events.emit(
                "receive_error",
                {"file_name": file_name, "error": str(e) or e.__class__.__name__},
            )
            raise

        if received != file_size:
            logger.warning(
                f"{file_name}: announced {file_size} bytes but received {received}"
            )
        logger.info(f"File saved successfully: {file_path} ({received} bytes)")
        await self._events.emit(
            "receive_complete",
            {
                "file_name": file_name,
                "file_path": str(file_path),
                "file_size": received,
            },
        )
        return file_path


def create_receiver_app(receiver: FileReceiver) -> FastAPI:
    """Build the HTTP application served on the receiver port."""
    app = FastAPI(title="LanShare receiver", docs_url=None, redoc_url=None)

    @app.get("/auth-status")
    async def auth_status():
        requires_auth = receiver.requires_auth()
        logger.debug(f"Auth status check: requiresAuth = {requires_auth}")
        return {"requiresAuth": requires_auth}

    @app.post("/verify-auth")
    async def verify_auth(x_auth_key: str | None = Header(default=None)):
        result = receiver.check_auth_key(x_auth_key)
        if result == AuthResult.MISSING:
            logger.info("Auth verification: missing auth key")
        elif result == AuthResult.INVALID:
            logger.info("Auth verification: invalid auth key")
        return JSONResponse(
            status_code=result,
            content={"valid": result == AuthResult.OK},
        )

    @app.post("/transfer")
    async def transfer(
        request: Request,
        x_file_name: str | None = Header(default=None),
        x_file_size: str | None = Header(default=None),
        x_auth_key: str | None = Header(default=None),
    ):
        file_name = sanitize_file_name(decode_file_name(x_file_name)) if x_file_name else None
        try:
            file_size = int(x_file_size) if x_file_size is not None else None
        except ValueError:
            file_size = None

        if file_name is None or file_size is None or file_size < 0:
            return PlainTextResponse("Missing file metadata", status_code=400)

        result = receiver.check_auth_key(x_auth_key)
        if result == AuthResult.MISSING:
            logger.info("Rejected file transfer: Missing authentication")
            return PlainTextResponse("Authentication required", status_code=401)
        if result == AuthResult.INVALID:
            logger.info("Rejected file transfer: Invalid authentication")
            return PlainTextResponse("Invalid authentication", status_code=403)

        try:
            await receiver.receive(file_name, file_size, request.stream())
        except (OSError, ClientDisconnect):
            return PlainTextResponse("Error writing file", status_code=500)

        return PlainTextResponse("File received successfully")

    return app
