"""Error taxonomy shared by the core and adapters.

Adapters translate library exceptions into these types at the boundary so the
core never inspects provider-specific error strings.
"""

from __future__ import annotations

from typing import Optional


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class TransientNetworkError(BridgeError):
    """Timeouts, rate limits and server hiccups. Retryable by the caller."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class ResourceMissingError(BridgeError):
    """The destination topic (or its parent chat) no longer exists."""


class UnsupportedMessageKindError(BridgeError):
    """A message kind cannot be rendered natively; degrades to text."""


class StoreUnavailableError(BridgeError):
    """The persistent store could not be read or written."""


class ProvisioningError(BridgeError):
    """A destination topic could not be created for a source thread."""


class TransferError(BridgeError):
    """Media could not be staged (bad URL, HTTP 4xx, missing file)."""


class MediaTooLargeError(TransferError):
    """Media exceeds the configured staging size limit."""


class DeliveryRejectedError(BridgeError):
    """The platform refused a send for a non-structural reason."""
