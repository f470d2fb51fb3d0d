from __future__ import annotations

import asyncio
import logging
from itertools import chain
from typing import Iterable

from ..domain.decoding import decode_tick, sort_events
from ..domain.models import Event, Tick, TransactionRecord
from ..ports.rpc import TickRPC
from .cache import CacheStore, SingleFlight

log = logging.getLogger(__name__)


class EventExtractor:
    def __init__(self, rpc: TickRPC, cache: CacheStore, flights: SingleFlight, *, concurrency: int = 8) -> None:
        self.rpc = rpc
        self.cache = cache
        self.flights = flights
        self.concurrency = concurrency

    async def transactions(self, tick_number: int) -> tuple[TransactionRecord, ...]:
        hit = self.cache.get_transactions(tick_number)
        if hit is not None:
            return hit

        async def go() -> tuple[TransactionRecord, ...]:
            txs = await self.rpc.tick_transactions(tick_number)
            return self.cache.put_transactions(tick_number, txs)
        return await self.flights.run(("txs", tick_number), go)

    async def extract(self, ticks: Iterable[Tick]) -> list[Event]:
        """Events of every tick, ordered by (block_number, event_index).

        A tick whose transactions can't be fetched fails the whole call: a silent
        hole would never be refilled downstream.
        """
        # the upstream isEmpty flag is not trusted; every tick is fetched
        targets = list(ticks)
        sem = asyncio.Semaphore(self.concurrency)

        async def one(t: Tick) -> list[Event]:
            async with sem:
                txs = await self.transactions(t.number)
            return decode_tick(t, txs)

        per_tick = await asyncio.gather(*(one(t) for t in targets))
        events = sort_events(chain.from_iterable(per_tick))
        log.debug("extracted %d events from %d ticks", len(events), len(targets))
        return events
