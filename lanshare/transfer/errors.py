"""Exceptions raised while sending files."""


class TransferError(Exception):
    """Base class for sender-side transfer failures."""


class TransferRejected(TransferError):
    """The peer answered with a non-success status."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Transfer failed with status {status_code}")
        self.status_code = status_code


class TransferCancelled(TransferError):
    """The job was cancelled while its body was streaming."""

    def __init__(self, message: str = "Cancelled by user") -> None:
        super().__init__(message)
