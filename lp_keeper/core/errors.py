from __future__ import annotations


class LpKeeperError(Exception):
    pass


class ConfigurationError(LpKeeperError):
    """Invalid keeper configuration. Raised at load time; the loop refuses to start."""


class PoolClientError(LpKeeperError):
    """A pool client call was rejected or failed."""

    def __init__(self, message: str, *, operation: str | None = None):
        super().__init__(message)
        self.operation = operation


class TransientNetworkError(PoolClientError):
    """Timeouts, rate limits and other failures that are safe to retry."""


class PositionNotFoundError(PoolClientError):
    """The position handle no longer exists, e.g. it was closed outside the keeper."""
