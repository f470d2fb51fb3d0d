from __future__ import annotations

from typing import Iterable, Protocol
from ..domain.models import Event


class EventSink(Protocol):
    """Port for exporting an ordered event range to a file (e.g., Parquet)."""

    async def write_events(self, path: str, events: Iterable[Event]) -> str:
        """Persist the events at `path`; return the written path."""
