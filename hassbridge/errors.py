"""
Error taxonomy for hassbridge.

Transport failures reject the call in flight, keepalive and unexpected
closes funnel into the reconnection policy, classification skips are
expected non-matches and materialization failures are caught per device.
"""

from typing import Any, Optional


class HassBridgeError(Exception):
    """Base class for all hassbridge errors."""


class HubConnectionError(HassBridgeError):
    """The hub connection could not be opened or is not usable."""


class AuthError(HubConnectionError):
    """The hub rejected the access token."""


class TransportError(HassBridgeError):
    """The socket failed: unexpected close, ping timeout or write failure."""


class RequestTimeoutError(TransportError):
    """No response with a matching id arrived in time."""

    def __init__(self, request_id: int, request_type: str, timeout: float):
        self.request_id = request_id
        self.request_type = request_type
        self.timeout = timeout
        super().__init__(f"Request {request_type} id {request_id} timed out after {timeout}s")


class RequestError(HassBridgeError):
    """The hub answered a request with success: false."""

    def __init__(self, code: Optional[str], message: str, request_id: Optional[int] = None):
        self.code = code
        self.message = message
        self.request_id = request_id
        super().__init__(message)


class ClassificationSkip(HassBridgeError):
    """Expected non-match: the entity or device has nothing to expose."""

    def __init__(self, reason: str, source_id: Any = None):
        self.reason = reason
        self.source_id = source_id
        super().__init__(reason)


class MaterializationError(HassBridgeError):
    """The device runtime rejected a device shape."""
