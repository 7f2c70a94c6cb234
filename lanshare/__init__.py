"""LanShare: LAN peer discovery, authenticated file transfer and signaling relay."""

__version__ = "1.0.0"
