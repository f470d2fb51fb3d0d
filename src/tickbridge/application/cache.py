from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Hashable, Iterable, TypeVar

from ..domain.models import (
    EpochLayout, EpochPage, EpochRange, HeadSnapshot, StatusSnapshot, Tick, TransactionRecord,
)
from ..domain.value_types import EpochId

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class CacheEntry(Generic[T]):
    value: T
    expires_at: float | None = None   # None = lives as long as the process

    def fresh(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


class SingleFlight:
    """Collapse concurrent calls sharing a key onto one in-flight coroutine."""

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Future] = {}

    def pending(self) -> int:
        return len(self._inflight)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        fut = self._inflight.get(key)
        if fut is not None:
            return await asyncio.shield(fut)
        fut = asyncio.get_running_loop().create_future()
        self._inflight[key] = fut
        try:
            result = await factory()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            fut.exception()  # mark retrieved when nobody else was waiting
            raise
        else:
            fut.set_result(result)
            return result
        finally:
            self._inflight.pop(key, None)


class CacheStore:
    """Process-lifetime state shared by every locator.

    Ticks, epoch ranges, closed-epoch listings and transaction lists never
    expire (the ledger is append-only). Head/status snapshots and the current
    epoch's layout carry a TTL.
    """

    def __init__(self, *, snapshot_ttl_s: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.snapshot_ttl_s = snapshot_ttl_s
        self.clock = clock
        self._ticks: dict[int, Tick] = {}
        self._aliases: dict[int, int] = {}
        self._listings: dict[int, tuple[Tick, ...]] = {}
        self._ranges: dict[int, EpochRange] = {}
        self._probed: set[int] = set()
        self._layouts: dict[int, CacheEntry[EpochLayout]] = {}
        self._txs: dict[int, tuple[TransactionRecord, ...]] = {}
        self._head: CacheEntry[HeadSnapshot] | None = None
        self._status: CacheEntry[StatusSnapshot] | None = None

    # ---- ticks ---------------------------------------------------------------
    def get_tick(self, number: int) -> Tick | None:
        return self._ticks.get(number)

    def put_tick(self, tick: Tick) -> Tick:
        if not tick.verified:
            return tick  # placeholders never enter the cache
        # first write wins: a cached tick's epoch id is never recomputed
        return self._ticks.setdefault(tick.number, tick)

    def put_ticks(self, ticks: Iterable[Tick]) -> None:
        for t in ticks:
            self.put_tick(t)

    def get_alias(self, requested: int) -> Tick | None:
        n = self._aliases.get(requested)
        return self._ticks.get(n) if n is not None else None

    def put_alias(self, requested: int, tick: Tick) -> None:
        self.put_tick(tick)
        self._aliases[requested] = tick.number

    # ---- epochs --------------------------------------------------------------
    def record_page(self, page: EpochPage) -> EpochRange | None:
        self.put_ticks(page.ticks)
        b = page.bounds()
        return self.observe(page.epoch_id, *b) if b else self._ranges.get(page.epoch_id)

    def observe(self, epoch: int, lo: int, hi: int) -> EpochRange:
        cur = self._ranges.get(epoch)
        rng = EpochRange(EpochId(epoch), lo, hi) if cur is None else cur.widen(lo, hi)
        self._ranges[epoch] = rng
        return rng

    def range_of(self, epoch: int) -> EpochRange | None:
        return self._ranges.get(epoch)

    def ranges(self) -> list[EpochRange]:
        return sorted(self._ranges.values(), key=lambda r: -r.epoch_id)

    def epoch_containing(self, tick_number: int) -> int | None:
        for r in self.ranges():
            if r.contains(tick_number):
                return r.epoch_id
        return None

    def mark_probed(self, epoch: int) -> None:
        self._probed.add(epoch)

    def is_probed(self, epoch: int) -> bool:
        return epoch in self._probed

    def layout(self, epoch: int) -> EpochLayout | None:
        e = self._layouts.get(epoch)
        return e.value if e is not None and e.fresh(self.clock()) else None

    def put_layout(self, layout: EpochLayout, *, expiring: bool) -> None:
        exp = self.clock() + self.snapshot_ttl_s if expiring else None
        self._layouts[layout.epoch_id] = CacheEntry(layout, exp)

    def epoch_listing(self, epoch: int) -> tuple[Tick, ...] | None:
        return self._listings.get(epoch)

    def put_epoch_listing(self, epoch: int, ticks: Iterable[Tick]) -> tuple[Tick, ...]:
        listing = tuple(sorted(ticks, key=lambda t: t.number))
        self._listings[epoch] = listing
        self.put_ticks(listing)
        if listing:
            self.observe(epoch, listing[0].number, listing[-1].number)
        return listing

    def known_epochs(self) -> list[int]:
        return sorted(set(self._ranges) | set(self._listings) | set(self._layouts))

    # ---- transactions --------------------------------------------------------
    def get_transactions(self, tick_number: int) -> tuple[TransactionRecord, ...] | None:
        return self._txs.get(tick_number)

    def put_transactions(self, tick_number: int, txs: Iterable[TransactionRecord]) -> tuple[TransactionRecord, ...]:
        return self._txs.setdefault(tick_number, tuple(txs))

    # ---- snapshots -----------------------------------------------------------
    def head(self, *, allow_stale: bool = False) -> HeadSnapshot | None:
        e = self._head
        return e.value if e is not None and (allow_stale or e.fresh(self.clock())) else None

    def put_head(self, snap: HeadSnapshot) -> None:
        self._head = CacheEntry(snap, self.clock() + self.snapshot_ttl_s)

    def status(self, *, allow_stale: bool = False) -> StatusSnapshot | None:
        e = self._status
        return e.value if e is not None and (allow_stale or e.fresh(self.clock())) else None

    def put_status(self, snap: StatusSnapshot) -> None:
        self._status = CacheEntry(snap, self.clock() + self.snapshot_ttl_s)
