from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..domain.errors import UpstreamUnavailable
from ..domain.models import EpochLayout, EpochPage, Tick
from ..domain.value_types import EpochId
from ..ports.rpc import TickRPC
from .cache import CacheStore, SingleFlight

log = logging.getLogger(__name__)


@dataclass(slots=True)
class PageStats:
    fetched: int = 0
    failed: int = 0


class PageReader:
    """Epoch listing access shared by the locators and the range collector.

    Every page that comes back is recorded in the cache (ticks + widened epoch
    range). Failures are logged and reported as None; callers decide whether a
    missing page is fatal.
    """

    def __init__(
        self,
        rpc: TickRPC,
        cache: CacheStore,
        flights: SingleFlight,
        *,
        page_size: int = 500,
        max_empty_pages: int = 3,
        probe_page_limit: int = 2,
        page_limit: int = 1000,
        concurrency: int = 8,
    ) -> None:
        self.rpc = rpc
        self.cache = cache
        self.flights = flights
        self.page_size = page_size
        self.max_empty_pages = max_empty_pages
        self.probe_page_limit = max(1, probe_page_limit)
        self.page_limit = page_limit
        self._sem = asyncio.Semaphore(concurrency)

    def is_closed(self, epoch: int) -> bool:
        snap = self.cache.status(allow_stale=True)
        return snap is not None and epoch < snap.epoch_id

    async def fetch(self, epoch: int, page: int) -> EpochPage:
        async def go() -> EpochPage:
            async with self._sem:
                res = await self.rpc.epoch_ticks(epoch, page, self.page_size)
            self.cache.record_page(res)
            log.debug("epoch %d page %d: %d ticks", epoch, page, len(res.ticks))
            return res
        return await self.flights.run(("page", epoch, page, self.page_size), go)

    async def read(self, epoch: int, page: int, stats: PageStats | None = None) -> EpochPage | None:
        try:
            res = await self.fetch(epoch, page)
        except UpstreamUnavailable as e:
            log.warning("epoch %d page %d unavailable: %s", epoch, page, e)
            if stats is not None:
                stats.failed += 1
            return None
        if stats is not None:
            stats.fetched += 1
        return res

    async def read_logical(self, layout: EpochLayout, logical: int, stats: PageStats | None = None) -> EpochPage | None:
        """Read a page counted in ascending tick order, whatever order upstream serves."""
        if logical < 0 or (layout.total_pages is not None and logical >= layout.total_pages):
            return None
        return await self.read(layout.epoch_id, layout.physical(logical), stats)

    async def layout(self, epoch: int, *, refresh: bool = False) -> EpochLayout | None:
        """Probe the first and last listing page once; None when the first page can't be read.

        `refresh` ignores a cached layout of an epoch that is still open.
        """
        cached = self.cache.layout(epoch)
        if cached is not None and not (refresh and not self.is_closed(epoch)):
            return cached
        if self.cache.is_probed(epoch):
            log.debug("epoch %d layout expired, probing again", epoch)
        first = await self.read(epoch, 0)
        if first is None:
            return None
        total = first.total_pages
        last: EpochPage | None = None
        if total is not None and total > 1:
            last = await self.read(epoch, total - 1)
            if last is None:
                return None  # the epoch's far end stays unknown; don't cache half a layout
        elif total is None and first.ticks:
            for p in range(1, self.probe_page_limit):
                nxt = await self.read(epoch, p)
                if nxt is None or not nxt.ticks:
                    break
                last = nxt
        if not first.ticks and total is None:
            total = 0

        descending = first.descending()
        if descending is None and last is not None and last.ticks:
            descending = first.ticks[0].number > last.ticks[0].number if first.ticks else False
        lay = EpochLayout(
            epoch_id=EpochId(epoch),
            total_pages=total,
            descending=bool(descending),
            range=self.cache.range_of(epoch),
        )
        # the current epoch keeps growing, so its layout expires with the snapshots
        self.cache.put_layout(lay, expiring=not self.is_closed(epoch))
        self.cache.mark_probed(epoch)
        log.debug("epoch %d layout: pages=%s descending=%s range=%s", epoch, lay.total_pages, lay.descending, lay.range)
        return lay

    async def read_all(self, epoch: int, stats: PageStats | None = None) -> tuple[Tick, ...]:
        """Every tick of the epoch, ascending. Cached as the full listing once the epoch is closed."""
        listing = self.cache.epoch_listing(epoch)
        if listing is not None:
            return listing
        local = PageStats()
        first = await self.read(epoch, 0, local)
        pages: list[EpochPage] = [first] if first is not None else []
        total = first.total_pages if first is not None else None

        if total is not None:
            rest = await asyncio.gather(*(self.read(epoch, p, local) for p in range(1, min(total, self.page_limit))))
            pages.extend(p for p in rest if p is not None)
        else:
            empties = 0 if first is None or first.ticks else 1
            p = 1
            while empties < self.max_empty_pages and p < self.page_limit:
                page = await self.read(epoch, p, local)
                p += 1
                if page is None:
                    continue
                if not page.ticks:
                    empties += 1
                    continue
                empties = 0
                pages.append(page)

        if stats is not None:
            stats.fetched += local.fetched
            stats.failed += local.failed
        seen: dict[int, Tick] = {}
        for page in pages:
            for t in page.ticks:
                seen.setdefault(t.number, t)
        ticks = tuple(sorted(seen.values(), key=lambda t: t.number))
        if local.failed == 0 and self.is_closed(epoch):
            return self.cache.put_epoch_listing(epoch, ticks)
        return ticks
