"""Settings store backed by a JSON file."""

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from lanshare.config import SETTINGS_FILE
from lanshare.security.crypto import (
    generate_auth_key,
    generate_salt,
    hash_password,
    verify_password,
)
from lanshare.settings.models import SavedDevice, Settings

logger = logging.getLogger(__name__)


class SettingsStore:
    """Loads, caches and persists the device settings.

    Every write swaps in a new `Settings` object, so readers always see a
    complete snapshot.
    """

    def __init__(self, path: Path | str = SETTINGS_FILE) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._settings = Settings()
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def settings(self) -> Settings:
        return self._settings

    def load(self) -> Settings:
        """Re-read the settings file, merging it over the defaults."""
        if not self._path.exists():
            self._settings = Settings()
            return self._settings

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._settings = Settings(**data)
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Failed to load settings from {self._path}: {e}")
            self._settings = Settings()
        return self._settings

    def save(self, settings: Settings) -> Settings:
        with self._lock:
            self._write(settings)
            self._settings = settings
        return settings

    def update(self, **changes) -> Settings:
        """Apply a partial update and persist it."""
        with self._lock:
            updated = Settings(**{**self._settings.model_dump(), **changes})
            self._write(updated)
            self._settings = updated
        return updated

    def _write(self, settings: Settings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(settings.model_dump(), indent=2),
            encoding="utf-8",
        )

    # --- Password ---

    def has_password(self) -> bool:
        return self._settings.requires_auth

    def set_password(self, password: str) -> Settings:
        """Hash and store a new password, deriving the matching auth key."""
        salt = generate_salt()
        password_hash = hash_password(password, salt)
        logger.info("Device password updated")
        return self.update(
            password_salt=salt.hex(),
            password_hash=password_hash.hex(),
            auth_key=generate_auth_key(password),
        )

    def clear_password(self) -> Settings:
        logger.info("Device password removed")
        return self.update(password_salt=None, password_hash=None, auth_key=None)

    def verify_password(self, password: str) -> bool:
        """Check `password` against the stored hash. False if none is set."""
        settings = self._settings
        if not settings.password_salt or not settings.password_hash:
            return False
        try:
            salt = bytes.fromhex(settings.password_salt)
            expected = bytes.fromhex(settings.password_hash)
        except ValueError:
            logger.error("Stored password hash is corrupt")
            return False
        return verify_password(password, salt, expected)

    @staticmethod
    def get_auth_key(password: str) -> str:
        return generate_auth_key(password)

    # --- Saved devices ---

    def add_saved_device(self, device: SavedDevice) -> Settings:
        """Remember a device, replacing any saved entry with the same name."""
        devices = [d for d in self._settings.saved_devices if d.name != device.name]
        devices.append(device)
        return self.update(saved_devices=[d.model_dump() for d in devices])

    def remove_saved_device(self, name: str) -> Settings:
        devices = [d for d in self._settings.saved_devices if d.name != name]
        return self.update(saved_devices=[d.model_dump() for d in devices])
