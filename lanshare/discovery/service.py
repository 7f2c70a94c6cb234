"""
mDNS / DNS-SD LAN discovery service.

Publishes this device under the application's service type and browses for
other instances of it. Two browse shapes are offered:
- `find()` collects answers for a fixed window and returns them, and
- `start_discovery()` keeps browsing and reports peers as they come and go,
  until `stop_discovery()`.
Only one browse session exists at a time; starting one ends the previous.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass, field

from zeroconf import ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from lanshare.config import (
    DISCOVERY_WINDOW,
    RECEIVER_PORT,
    RESOLVE_TIMEOUT_MS,
    SERVICE_TYPE,
)
from lanshare.discovery.models import DeviceRecord, PublishedService
from lanshare.settings.store import SettingsStore

logger = logging.getLogger(__name__)


def select_address(addresses: list[str]) -> str | None:
    """Prefer the first IPv4 address, else fall back to the first one given."""
    for address in addresses:
        if "." in address and ":" not in address:
            return address
    return addresses[0] if addresses else None


def instance_name(full_name: str, service_type: str) -> str:
    """Strip the service type suffix from a DNS-SD instance name."""
    suffix = f".{service_type}"
    if full_name.endswith(suffix):
        return full_name[: -len(suffix)]
    return full_name


def record_from_info(name: str, service_type: str, info) -> DeviceRecord | None:
    """Build a DeviceRecord from a resolved service, or None without addresses."""
    address = select_address(info.parsed_addresses())
    if address is None or not info.port:
        return None
    return DeviceRecord(
        name=instance_name(name, service_type),
        address=address,
        port=info.port,
    )


def get_local_ip() -> str:
    """Get the local IP address (best guess)."""
    try:
        # Connecting a UDP socket sends nothing; it only picks the route
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


@dataclass
class BrowseSession:
    """State of one browse: Browsing until `stop_discovery()` marks it stopped."""
    service_type: str
    continuous: bool
    browser: AsyncServiceBrowser | None = None
    records: dict[str, DeviceRecord] = field(default_factory=dict)
    tasks: set[asyncio.Task] = field(default_factory=set)
    stopped: bool = False


class DiscoveryService:
    """Manages the LAN advertisement and the active browse session."""

    def __init__(self, settings_store: SettingsStore) -> None:
        self._settings_store = settings_store
        self._zeroconf: AsyncZeroconf | None = None
        self._service_info: AsyncServiceInfo | None = None
        self._published: PublishedService = PublishedService(published=False)
        self._session: BrowseSession | None = None
        self._publish_lock = asyncio.Lock()
        self._browse_lock = asyncio.Lock()
        self._on_peer_change: list = []  # callbacks: async def fn(event, record)

    def on_peer_change(self, callback) -> None:
        """Register a callback for peer discovered/lost events."""
        self._on_peer_change.append(callback)

    def _ensure_zeroconf(self) -> AsyncZeroconf:
        if self._zeroconf is None:
            self._zeroconf = AsyncZeroconf()
        return self._zeroconf

    # --- Publishing ---

    async def publish(
        self,
        device_name: str | None = None,
        port: int = RECEIVER_PORT,
        service_type: str = SERVICE_TYPE,
    ) -> PublishedService:
        """Advertise this device, replacing any earlier advertisement."""
        name = device_name or self._settings_store.settings.device_name
        async with self._publish_lock:
            await self._unpublish()

            zc = self._ensure_zeroconf()
            info = AsyncServiceInfo(
                service_type,
                f"{name}.{service_type}",
                addresses=[socket.inet_aton(get_local_ip())],
                port=port,
                server=f"{socket.gethostname()}.local.",
            )
            await zc.async_register_service(info, allow_name_change=True)
            self._service_info = info
            self._published = PublishedService(
                published=True,
                name=instance_name(info.name, service_type),
                type=service_type,
                port=port,
            )
        logger.info(f"Published service: {self._published.name} on port {port}")
        return self._published

    async def unpublish_all(self) -> None:
        """Withdraw the advertisement, if any. Safe to call repeatedly."""
        async with self._publish_lock:
            await self._unpublish()

    async def _unpublish(self) -> None:
        if self._service_info and self._zeroconf:
            await self._zeroconf.async_unregister_service(self._service_info)
            logger.info("All services unpublished")
        self._service_info = None
        self._published = PublishedService(published=False)

    def get_published_service(self) -> PublishedService:
        return self._published

    # --- Browsing ---

    async def find(
        self,
        service_type: str = SERVICE_TYPE,
        timeout: float = DISCOVERY_WINDOW,
    ) -> list[DeviceRecord]:
        """Browse for `timeout` seconds and return the peers seen, one per name."""
        session = await self._start_session(service_type, continuous=False)
        try:
            await asyncio.sleep(timeout)
        finally:
            async with self._browse_lock:
                await self._stop_session(session)
        return list(session.records.values())

    async def start_discovery(self, service_type: str = SERVICE_TYPE) -> None:
        """Browse continuously, reporting peers through `on_peer_change`."""
        await self._start_session(service_type, continuous=True)
        logger.info(f"Continuous discovery started for {service_type}")

    async def stop_discovery(self) -> None:
        async with self._browse_lock:
            if self._session is None:
                return
            await self._stop_session(self._session)
        logger.info("Discovery stopped")

    async def get_peers(self) -> list[DeviceRecord]:
        """Peers known to the current browse session."""
        if self._session is None:
            return []
        return list(self._session.records.values())

    async def _start_session(self, service_type: str, continuous: bool) -> BrowseSession:
        """Replace the current browse session. Replacements never overlap."""
        async with self._browse_lock:
            if self._session:
                await self._stop_session(self._session)

            session = BrowseSession(service_type=service_type, continuous=continuous)
            self._session = session
            zc = self._ensure_zeroconf()
            session.browser = AsyncServiceBrowser(
                zc.zeroconf,
                service_type,
                handlers=[
                    lambda zeroconf, service_type, name, state_change: self._on_service_state_change(
                        session, zeroconf, service_type, name, state_change
                    )
                ],
            )
        return session

    async def _stop_session(self, session: BrowseSession) -> None:
        """End a session and cancel its browser. Caller holds `_browse_lock`."""
        if session.stopped:
            return
        session.stopped = True
        for task in list(session.tasks):
            task.cancel()
        if session.browser:
            await session.browser.async_cancel()
            session.browser = None
        if self._session is session:
            self._session = None

    def _on_service_state_change(self, session, zeroconf, service_type, name, state_change) -> None:
        """zeroconf handler; runs on the event loop, so schedule the async work."""
        if session.stopped:
            return
        if state_change in (ServiceStateChange.Added, ServiceStateChange.Updated):
            task = asyncio.ensure_future(self._resolve(session, zeroconf, service_type, name))
            session.tasks.add(task)
            task.add_done_callback(session.tasks.discard)
        elif state_change == ServiceStateChange.Removed:
            task = asyncio.ensure_future(self._handle_removed(session, service_type, name))
            session.tasks.add(task)
            task.add_done_callback(session.tasks.discard)

    async def _resolve(self, session, zeroconf, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        if not await info.async_request(zeroconf, RESOLVE_TIMEOUT_MS):
            logger.debug(f"Could not resolve {name}")
            return
        await self._handle_resolved(session, service_type, name, info)

    async def _handle_resolved(self, session, service_type: str, name: str, info) -> None:
        if session.stopped:
            return
        record = record_from_info(name, service_type, info)
        if record is None:
            return
        if self._published.published and record.name == self._published.name:
            return  # our own advertisement

        previous = session.records.get(record.name)
        session.records[record.name] = record
        if previous == record:
            return
        logger.info(f"Discovered peer: {record.name} ({record.address}:{record.port})")
        if session.continuous:
            await self._notify("peer_discovered", record)

    async def _handle_removed(self, session, service_type: str, name: str) -> None:
        record = session.records.pop(instance_name(name, service_type), None)
        if record is None or session.stopped:
            return
        logger.info(f"Peer lost: {record.name} ({record.address})")
        if session.continuous:
            await self._notify("peer_lost", record)

    async def _notify(self, event: str, record: DeviceRecord) -> None:
        for cb in self._on_peer_change:
            try:
                await cb(event, record)
            except Exception as e:
                logger.error(f"Peer change callback error: {e}")

    async def close(self) -> None:
        """Stop browsing, withdraw the advertisement and release the socket."""
        await self.stop_discovery()
        await self.unpublish_all()
        if self._zeroconf:
            await self._zeroconf.async_close()
            self._zeroconf = None
        logger.info("Discovery service stopped")
