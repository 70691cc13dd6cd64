"""Exceptions shared across the data layer.

Catalog-specific errors (network, not found, rate limit) live next to the
catalog interface in ``domgo.collectors.base``.
"""


class DomgoError(Exception):
    """Base exception for all domgo errors."""


class ThrottledError(DomgoError):
    """Raised when a refetch is suppressed because recent data is cached.

    This is a control-flow signal, not a failure: callers catch it and
    serve the cached value.

    Attributes:
        key: Request key that was throttled
        retry_in: Seconds until a refetch would be allowed
    """

    def __init__(self, key: str, retry_in: float):
        self.key = key
        self.retry_in = retry_in
        super().__init__(f"Request {key!r} throttled for another {retry_in:.1f}s")


class CorruptedStateError(DomgoError):
    """Raised when persisted version state cannot be trusted."""
