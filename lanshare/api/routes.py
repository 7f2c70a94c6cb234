"""REST API routes used by presentation layers (UI windows, tray, scripts)."""

import asyncio
import logging
import os

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from lanshare.config import DISCOVERY_WINDOW, RECEIVER_PORT
from lanshare.settings.models import SavedDevice
from lanshare.transfer.models import FileDescriptor, TransferRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_discovery_service = None
_transfer_engine = None
_settings_store = None


def init_routes(discovery_service, transfer_engine, settings_store) -> None:
    """Inject service dependencies into the routes module."""
    global _discovery_service, _transfer_engine, _settings_store
    _discovery_service = discovery_service
    _transfer_engine = transfer_engine
    _settings_store = settings_store


# --- Device Discovery ---

@router.get("/devices")
async def list_devices(timeout: float = DISCOVERY_WINDOW):
    """Browse the LAN for a short window and return the peers found."""
    timeout = min(max(timeout, 0.1), 10.0)
    devices = await _discovery_service.find(timeout=timeout)
    return {"devices": [d.model_dump() for d in devices]}


@router.post("/discovery/start")
async def start_discovery():
    await _discovery_service.start_discovery()
    return {"status": "browsing"}


@router.post("/discovery/stop")
async def stop_discovery():
    await _discovery_service.stop_discovery()
    return {"status": "stopped"}


@router.get("/discovery/peers")
async def discovered_peers():
    peers = await _discovery_service.get_peers()
    return {"devices": [p.model_dump() for p in peers]}


class PublishBody(BaseModel):
    device_name: str | None = None
    port: int = RECEIVER_PORT


@router.get("/discovery/published")
async def published_service():
    return _discovery_service.get_published_service().model_dump()


@router.post("/discovery/publish")
async def publish(body: PublishBody):
    service = await _discovery_service.publish(device_name=body.device_name, port=body.port)
    return service.model_dump()


@router.post("/discovery/unpublish")
async def unpublish():
    await _discovery_service.unpublish_all()
    return {"status": "unpublished"}


# --- Peer authentication ---

class PeerAddress(BaseModel):
    address: str
    port: int = RECEIVER_PORT


class PeerPassword(PeerAddress):
    password: str


@router.post("/peers/auth-required")
async def peer_auth_required(body: PeerAddress):
    requires_auth = await _transfer_engine.check_auth_required(body.address, body.port)
    return {"requires_auth": requires_auth}


@router.post("/peers/verify-password")
async def peer_verify_password(body: PeerPassword):
    valid = await _transfer_engine.verify_password_with_peer(
        body.address, body.port, body.password
    )
    return {"valid": valid}


# --- Transfers ---

class CreateTransferBody(BaseModel):
    file_paths: list[str]
    target_address: str
    target_port: int = Field(default=RECEIVER_PORT, gt=0, lt=65536)
    auth_key: str | None = None


@router.post("/transfers")
async def create_transfer(body: CreateTransferBody):
    """Send local files to a peer.

    No file upload is required; the engine reads files directly from disk.
    """
    files = []
    for path in body.file_paths:
        if os.path.isfile(path):
            files.append(
                FileDescriptor(
                    name=os.path.basename(path),
                    path=path,
                    size=os.path.getsize(path),
                )
            )
        else:
            logger.warning(f"Skipping invalid file path: {path}")

    if not files:
        raise HTTPException(status_code=400, detail="No valid files selected")

    transfer_id = await _transfer_engine.transfer_files(
        TransferRequest(
            files=files,
            target_address=body.target_address,
            target_port=body.target_port,
            auth_key=body.auth_key,
        )
    )
    return {
        "transfer_id": transfer_id,
        "message": f"Queued {len(files)} file(s) for transfer",
    }


@router.get("/transfers")
async def list_transfers():
    """Return all tracked jobs (active and finished)."""
    jobs = _transfer_engine.get_transfers()
    return {"transfers": [j.model_dump(mode="json") for j in jobs]}


@router.get("/transfers/{job_key}")
async def get_transfer(job_key: str):
    job = _transfer_engine.get_transfer_status(job_key)
    if job is None:
        raise HTTPException(status_code=404, detail="Transfer not found")
    return job.model_dump(mode="json")


@router.post("/transfers/{job_key}/cancel")
async def cancel_transfer(job_key: str):
    if not await _transfer_engine.cancel_transfer(job_key):
        raise HTTPException(status_code=404, detail="Transfer not found")
    return {"status": "cancelled"}


# --- Settings ---

class SettingsBody(BaseModel):
    device_name: str | None = None
    download_path: str | None = None
    transfer_on_drop: bool | None = None
    saved_devices: list[SavedDevice] | None = None


class PasswordBody(BaseModel):
    password: str


@router.get("/settings")
async def get_settings():
    return _settings_store.settings.public_view()


@router.put("/settings")
async def update_settings(body: SettingsBody):
    changes = body.model_dump(exclude_none=True)
    if "download_path" in changes and not os.path.isdir(changes["download_path"]):
        try:
            os.makedirs(changes["download_path"], exist_ok=True)
        except OSError as e:
            raise HTTPException(status_code=400, detail=f"Invalid directory: {e}")
    settings = _settings_store.update(**changes)
    return settings.public_view()


@router.get("/settings/password")
async def has_password():
    return {"has_password": _settings_store.has_password()}


@router.post("/settings/password")
async def set_password(body: PasswordBody):
    await asyncio.to_thread(_settings_store.set_password, body.password)
    return {"status": "updated"}


@router.delete("/settings/password")
async def clear_password():
    _settings_store.clear_password()
    return {"status": "cleared"}


@router.post("/settings/password/verify")
async def verify_password(body: PasswordBody):
    valid = await asyncio.to_thread(_settings_store.verify_password, body.password)
    return {"valid": valid}


@router.post("/settings/auth-key")
async def get_auth_key(body: PasswordBody):
    """Derive the auth key to present to a protected peer."""
    return {"auth_key": _settings_store.get_auth_key(body.password)}


@router.post("/settings/devices")
async def save_device(device: SavedDevice):
    settings = _settings_store.add_saved_device(device)
    return settings.public_view()


@router.delete("/settings/devices/{name}")
async def forget_device(name: str):
    settings = _settings_store.remove_saved_device(name)
    return settings.public_view()
