"""Error taxonomy for the directory service.

Repositories raise these; the API layer maps them to HTTP status codes.
"""

from typing import Optional


class ChannelFinderError(Exception):
    """Base class for all directory service errors."""


class NotFoundError(ChannelFinderError):
    """Raised when a tag, property or channel does not exist."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"The {kind} with the name {name} does not exist")


class InvalidRequest(ChannelFinderError):
    """Raised when a payload cannot be applied as given."""


class StoreError(ChannelFinderError):
    """Raised when the document store fails or is unreachable."""


class BulkWriteFailure(StoreError):
    """Raised when any item of a bulk request reports an error.

    The whole call is treated as failed. Items that did succeed are not
    rolled back.
    """

    def __init__(self, message: str, reasons: Optional[list[str]] = None):
        self.reasons = reasons or []
        super().__init__(message)


class UnsupportedOperation(ChannelFinderError):
    """Raised for operations that are intentionally disabled."""
