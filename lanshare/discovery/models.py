"""Pydantic models for peer discovery."""

from pydantic import BaseModel


class DeviceRecord(BaseModel):
    """A peer found on the LAN."""
    name: str
    address: str  # IPv4 preferred
    port: int


class PublishedService(BaseModel):
    """What this process currently advertises, if anything."""
    published: bool
    name: str | None = None
    type: str | None = None
    port: int | None = None
