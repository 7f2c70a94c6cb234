"""Pydantic models for persisted settings."""

from pydantic import BaseModel, Field

from lanshare.config import DEFAULT_DOWNLOAD_DIR, DEVICE_NAME


class SavedDevice(BaseModel):
    """A peer the user chose to remember."""
    name: str
    address: str
    port: int
    auth_key: str | None = None


class Settings(BaseModel):
    """Full settings document, as stored on disk."""
    device_name: str = DEVICE_NAME
    download_path: str = DEFAULT_DOWNLOAD_DIR
    transfer_on_drop: bool = False
    auth_key: str | None = None
    password_salt: str | None = None  # hex
    password_hash: str | None = None  # hex
    saved_devices: list[SavedDevice] = Field(default_factory=list)

    @property
    def requires_auth(self) -> bool:
        return bool(self.auth_key)

    def public_view(self) -> dict:
        """Settings without any secret material."""
        data = self.model_dump(exclude={"auth_key", "password_salt", "password_hash"})
        data["has_password"] = self.requires_auth
        for device in data["saved_devices"]:
            device.pop("auth_key", None)
        return data
