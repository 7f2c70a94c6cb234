"""Shared pytest fixtures for all tests."""

import pytest

from lanshare.events import EventBus
from lanshare.settings.store import SettingsStore
from lanshare.transfer.receiver import FileReceiver, create_receiver_app


@pytest.fixture
def download_dir(tmp_path):
    """Directory the receiver writes incoming files to."""
    path = tmp_path / "downloads"
    path.mkdir()
    return path


@pytest.fixture
def settings_store(tmp_path, download_dir):
    """
    Settings store backed by a temporary file.

    Args:
        tmp_path: pytest tmp_path fixture
        download_dir: Download directory fixture

    Returns:
        SettingsStore with download_path pointing at download_dir
    """
    store = SettingsStore(tmp_path / "config" / "settings.json")
    store.update(device_name="Test Device", download_path=str(download_dir))
    return store


@pytest.fixture
def protected_store(settings_store):
    """Settings store with the password 'hunter2' configured."""
    settings_store.set_password("hunter2")
    return settings_store


@pytest.fixture
def event_log():
    """EventBus plus the list every emitted (event, data) pair lands in."""
    bus = EventBus()
    log = []

    async def record(event_type, data):
        log.append((event_type, data))

    bus.on_event(record)
    return bus, log


@pytest.fixture
def receiver_app(settings_store, event_log):
    bus, _ = event_log
    return create_receiver_app(FileReceiver(settings_store, bus))


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a file spanning several transfer chunks.

    Returns:
        Path to a binary file of 600 KiB
    """
    file_path = tmp_path / "outbox" / "sample.bin"
    file_path.parent.mkdir(exist_ok=True)
    file_path.write_bytes(bytes(range(256)) * (600 * 4))
    return file_path
