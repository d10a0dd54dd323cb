"""Exception types raised by LinkUp components."""
from __future__ import annotations


class LinkUpError(Exception):
    """Base class for LinkUp errors."""


class SourceNotSubscribedError(LinkUpError):
    """Raised when a sink is removed from a source it was never attached to."""

    def __init__(self, sink: object) -> None:
        super().__init__(f"sink {sink!r} is not subscribed")
        self.sink = sink


class AdapterUnavailableError(LinkUpError):
    """Raised when the host cannot service an adapter request."""


__all__ = [
    "LinkUpError",
    "SourceNotSubscribedError",
    "AdapterUnavailableError",
]
