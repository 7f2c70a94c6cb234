"""Pydantic models for file transfer."""

from enum import Enum
from pydantic import BaseModel, Field


class TransferStatus(str, Enum):
    """Lifecycle of a single file job: pending -> transferring -> completed | error."""
    PENDING = "pending"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_STATUSES = (TransferStatus.COMPLETED, TransferStatus.ERROR)


class TransferJob(BaseModel):
    """Progress and outcome of one file within a transfer request."""
    job_key: str
    transfer_id: str
    file_name: str
    file_size: int
    bytes_transferred: int = 0
    percentage: int = 0
    status: TransferStatus = TransferStatus.PENDING
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class FileDescriptor(BaseModel):
    """A local file queued for sending."""
    name: str
    path: str
    size: int = Field(ge=0)


class TransferRequest(BaseModel):
    """Files to send and where to send them."""
    files: list[FileDescriptor]
    target_address: str
    target_port: int = Field(gt=0, lt=65536)
    auth_key: str | None = None


def make_job_key(transfer_id: str, file_name: str) -> str:
    return f"{transfer_id}_{file_name}"


def percentage_of(transferred: int, total: int) -> int:
    """Whole-number percentage, rounding halves up. Empty files count as done."""
    if total <= 0:
        return 100
    return min(100, (transferred * 200 + total) // (total * 2))
