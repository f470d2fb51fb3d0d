from __future__ import annotations
import os, pyarrow.parquet as pq
from typing import Iterable

from ..domain.decoding import events_to_table
from ..domain.models import Event
from ..ports.storage import EventSink


def range_filename(start: int, end: int) -> str:
    return f"events_{start}_{end}.parquet"


class ParquetEventSink(EventSink):
    def __init__(self, codec: str = "zstd") -> None:
        self.codec = codec

    async def write_events(self, path: str, events: Iterable[Event]) -> str:
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        table = events_to_table(events)
        tmp = path + ".tmp"
        pq.write_table(table, tmp, compression=self.codec, use_dictionary=True)
        os.replace(tmp, path)
        return path
