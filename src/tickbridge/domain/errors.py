from __future__ import annotations


class TickbridgeError(Exception):
    """Base class for every error raised by the engine."""


class UpstreamUnavailable(TickbridgeError):
    """Upstream unreachable or erroring after retries were exhausted."""

    def __init__(self, message: str, *, endpoint: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class TickNotFound(TickbridgeError):
    """No tick could be located after the bounded search."""

    def __init__(self, requested: int, message: str | None = None) -> None:
        super().__init__(message or f"tick {requested} not found")
        self.requested = requested


class InvalidRange(TickbridgeError, ValueError):
    pass


class PartiallyDegraded(TickbridgeError):
    """Internal signal: an older or nearest tick stands in for an exact match. Logged, never raised."""
