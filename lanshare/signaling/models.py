"""Pydantic models for the signaling wire protocol."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MessageType = Literal["offer", "answer", "signal", "ready", "join", "leave", "peers"]


class SignalingMessage(BaseModel):
    """One JSON message on a relay connection.

    `signal` is opaque: it is forwarded exactly as received.
    """
    model_config = ConfigDict(populate_by_name=True)

    type: MessageType
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None
    signal: Any = None
    peer_id: str | None = Field(default=None, alias="peerId")
    peers: list[str] | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)
