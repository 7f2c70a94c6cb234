"""
Transfer Engine: orchestrates outbound file transfers.

Each transfer request runs as one asyncio task that sends its files one at a
time. Independent requests run concurrently, each with its own jobs in the
engine's `JobStore`.
"""

import asyncio
import logging
import time
import uuid
from functools import partial

import httpx

from lanshare.config import CHUNK_SIZE, STATUS_TIMEOUT, TRANSFER_CONNECT_TIMEOUT
from lanshare.events import EventBus
from lanshare.security.crypto import generate_auth_key
from lanshare.transfer.errors import TransferCancelled
from lanshare.transfer.jobs import JobStore
from lanshare.transfer.models import (
    FileDescriptor,
    TransferJob,
    TransferRequest,
    TransferStatus,
    make_job_key,
    percentage_of,
)
from lanshare.transfer.service import HEADER_AUTH_KEY, peer_url, send_file

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


def generate_transfer_id() -> str:
    return f"transfer_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class TransferEngine:
    """Manages all outbound transfers and their job bookkeeping."""

    def __init__(
        self,
        events: EventBus,
        transport: httpx.AsyncBaseTransport | None = None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._events = events
        self._transport = transport
        self._chunk_size = chunk_size
        self._jobs = JobStore()
        self._tasks: dict[str, asyncio.Task] = {}

    def _client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=timeout)

    # --- Peer checks ---

    async def check_auth_required(self, address: str, port: int) -> bool:
        """Ask a peer whether it is password protected.

        Any network error, timeout or malformed reply counts as "no".
        """
        logger.info(f"Checking if peer {address}:{port} requires auth...")
        try:
            async with self._client(STATUS_TIMEOUT) as client:
                response = await asyncio.wait_for(
                    client.get(peer_url(address, port, "/auth-status")),
                    timeout=STATUS_TIMEOUT,
                )
            data = response.json()
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Error checking auth status for {address}:{port}: {e!r}")
            return False

        if not isinstance(data, dict):
            return False
        return data.get("requiresAuth") is True

    async def verify_password_with_peer(self, address: str, port: int, password: str) -> bool:
        """Check a password against a peer without sending the password itself."""
        auth_key = generate_auth_key(password)
        try:
            async with self._client(STATUS_TIMEOUT) as client:
                response = await asyncio.wait_for(
                    client.post(
                        peer_url(address, port, "/verify-auth"),
                        headers={HEADER_AUTH_KEY: auth_key},
                    ),
                    timeout=STATUS_TIMEOUT,
                )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.warning(f"Error verifying password for {address}:{port}: {e!r}")
            return False

        if response.status_code == 200:
            logger.info(f"Password verified successfully for {address}:{port}")
            return True
        logger.info(
            f"Password verification failed for {address}:{port}: status {response.status_code}"
        )
        return False

    # --- Transfers ---

    async def transfer_files(self, request: TransferRequest) -> str:
        """Start sending the request's files in the background.

        Returns:
            The transfer id; job keys are `f"{transfer_id}_{file_name}"`.
        """
        transfer_id = generate_transfer_id()
        task = asyncio.create_task(self._run_transfer(transfer_id, request))
        self._tasks[transfer_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(transfer_id, None))
        logger.info(
            f"Started {transfer_id}: {len(request.files)} file(s) "
            f"to {request.target_address}:{request.target_port}"
        )
        return transfer_id

    async def wait(self, transfer_id: str) -> None:
        """Wait until every file of a transfer has finished."""
        task = self._tasks.get(transfer_id)
        if task:
            await asyncio.shield(task)

    async def _run_transfer(self, transfer_id: str, request: TransferRequest) -> None:
        timeout = httpx.Timeout(None, connect=TRANSFER_CONNECT_TIMEOUT)
        async with self._client(timeout) as client:
            for file in request.files:
                await self._send_one(client, transfer_id, request, file)

    async def _send_one(
        self,
        client: httpx.AsyncClient,
        transfer_id: str,
        request: TransferRequest,
        file: FileDescriptor,
    ) -> None:
        job_key = make_job_key(transfer_id, file.name)
        job = TransferJob(
            job_key=job_key,
            transfer_id=transfer_id,
            file_name=file.name,
            file_size=file.size,
        )
        self._jobs.put(job)
        await self._publish(job)

        if not await self._apply(job_key, status=TransferStatus.TRANSFERRING):
            return

        try:
            await send_file(
                client,
                request.target_address,
                request.target_port,
                file,
                progress_callback=partial(self._on_progress, job_key, file.size),
                auth_key=request.auth_key,
                is_cancelled=lambda: job_key not in self._jobs,
                chunk_size=self._chunk_size,
            )
        except TransferCancelled:
            logger.info(f"Transfer of {file.name} cancelled")
            return
        except asyncio.CancelledError:
            await self._apply(job_key, status=TransferStatus.ERROR, error="Transfer stopped")
            raise
        except Exception as e:
            if job_key not in self._jobs:
                return
            logger.error(f"Failed to transfer {file.name}: {e!r}")
            await self._apply(
                job_key,
                status=TransferStatus.ERROR,
                error=str(e) or e.__class__.__name__,
            )
            return

        await self._apply(job_key, status=TransferStatus.COMPLETED, percentage=100)
        logger.info(f"Sent {file.name} ({file.size} bytes) for {transfer_id}")

    async def _on_progress(self, job_key: str, file_size: int, sent: int) -> None:
        await self._apply(
            job_key,
            bytes_transferred=sent,
            percentage=percentage_of(sent, file_size),
        )

    async def _apply(self, job_key: str, **changes) -> TransferJob | None:
        """Update a live job and publish it. Cancelled jobs are left alone."""
        job = self._jobs.update(job_key, **changes)
        if job is not None:
            await self._publish(job)
        return job

    async def _publish(self, job: TransferJob) -> None:
        await self._events.emit("transfer_progress", job.model_dump(mode="json"))

        notification = None
        if job.status == TransferStatus.COMPLETED:
            notification = {
                "type": "success",
                "message": f"'{job.file_name}' sent successfully!",
            }
        elif job.status == TransferStatus.ERROR:
            notification = {
                "type": "error",
                "message": f"Transfer of '{job.file_name}' failed: {job.error}",
            }
        if notification:
            await self._events.emit("notification", notification)

    async def cancel_transfer(self, job_key: str) -> bool:
        """Cancel one file job.

        The job is removed from the store first, which stops its progress
        reporting; the final error event is published afterwards. Jobs that
        already finished are simply forgotten.
        """
        job = self._jobs.pop(job_key)
        if job is None:
            return False
        if job.is_terminal:
            return True

        logger.info(f"Cancelling {job_key}")
        await self._publish(
            job.model_copy(update={"status": TransferStatus.ERROR, "error": CANCELLED_MESSAGE})
        )
        return True

    def get_transfer_status(self, job_key: str) -> TransferJob | None:
        return self._jobs.get(job_key)

    def get_transfers(self) -> list[TransferJob]:
        return self._jobs.values()

    async def stop(self) -> None:
        """Abort all running transfers."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Transfer engine stopped")
