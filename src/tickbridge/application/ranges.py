from __future__ import annotations

import logging

from ..domain.errors import InvalidRange
from ..domain.models import RangeResult, Tick
from .cache import CacheStore
from .epochs import EpochLocator
from .pages import PageReader, PageStats
from .planning import clamp_page, estimate_logical_page, merge_intervals, subtract_interval

log = logging.getLogger(__name__)


class RangeCollector:
    """Every tick with start <= number <= end, ascending, no duplicates.

    An empty range comes back empty. Page failures are counted in the result
    rather than raised so the caller can decide how strict to be.
    """

    def __init__(self, cache: CacheStore, pages: PageReader, epochs: EpochLocator) -> None:
        self.cache = cache
        self.pages = pages
        self.epochs = epochs

    async def candidate_epochs(self, start: int, end: int) -> list[int]:
        cached = [r for r in self.cache.ranges() if r.overlaps(start, end)]
        out = {r.epoch_id for r in cached}
        covered = merge_intervals([(max(r.min_tick_seen, start), min(r.max_tick_seen, end)) for r in cached])
        gaps = subtract_interval((start, end), covered)
        if not gaps:
            return sorted(out)

        lo = await self.epochs.find(start)
        hi = await self.epochs.find(end)
        if lo is None or hi is None:
            head = await self.epochs.current_epoch()
            log.info("range [%d, %d] endpoints not both locatable (%s, %s); scanning epochs up to %d",
                     start, end, lo, hi, head)
            # epochs whose full extent is known and lies outside the range bound the scan
            if lo is None:
                below = [r.epoch_id for r in self.cache.ranges() if r.max_tick_seen < start and self._complete(r.epoch_id)]
                lo = max(below) + 1 if below else 0
            if hi is None:
                above = [r.epoch_id for r in self.cache.ranges() if r.min_tick_seen > end and self._complete(r.epoch_id)]
                hi = min(above) - 1 if above else max(lo, head)
        out.update(range(lo, hi + 1))
        return sorted(out)

    def _complete(self, epoch: int) -> bool:
        # the open epoch keeps growing, so its extent is never final
        if not self.pages.is_closed(epoch):
            return False
        lay = self.cache.layout(epoch)
        return lay is not None and lay.total_pages is not None

    async def epoch_ticks(self, epoch: int, start: int, end: int, stats: PageStats) -> list[Tick]:
        listing = self.cache.epoch_listing(epoch)
        if listing is not None:
            return [t for t in listing if start <= t.number <= end]

        seen = self.cache.range_of(epoch)
        # ticks appended to the open epoch after its layout was read aren't in it yet
        stale = seen is None or seen.max_tick_seen < end
        layout = await self.pages.layout(epoch, refresh=stale)
        if layout is None:
            stats.failed += 1
            return []
        if layout.total_pages == 0:
            return []
        rng = self.cache.range_of(epoch)
        if layout.total_pages is not None and rng is not None and not rng.overlaps(start, end):
            return []
        if layout.total_pages is None or not layout.mappable:
            return [t for t in await self.pages.read_all(epoch, stats) if start <= t.number <= end]

        last = layout.total_pages - 1
        logical = clamp_page(
            estimate_logical_page(start, self.pages.page_size, rng.min_tick_seen if rng else None), layout.total_pages
        )
        out: list[Tick] = []
        page = await self.pages.read_logical(layout, logical, stats)
        # gaps in the listing push the estimate past start; walk back
        while page is not None and page.ticks and logical > 0 and page.bounds()[0] > start:
            logical -= 1
            page = await self.pages.read_logical(layout, logical, stats)
        while True:
            if page is not None:
                out.extend(t for t in page.ticks if start <= t.number <= end)
                b = page.bounds()
                if b is not None and b[1] >= end:
                    break
            if logical >= last:
                break
            logical += 1
            page = await self.pages.read_logical(layout, logical, stats)
        return out

    async def collect(self, start: int, end: int, max_results: int | None = None) -> RangeResult:
        if start < 0 or end < 0 or start > end:
            raise InvalidRange(f"invalid tick range [{start}, {end}]")
        stats = PageStats()
        epochs = await self.candidate_epochs(start, end)
        found: dict[int, Tick] = {}
        for e in epochs:
            for t in await self.epoch_ticks(e, start, end, stats):
                found.setdefault(t.number, t)
            if max_results is not None and len(found) >= max_results:
                break
        ticks = sorted(found.values(), key=lambda t: t.number)
        if max_results is not None:
            ticks = ticks[:max_results]
        if stats.failed:
            log.warning("range [%d, %d]: %d of %d pages failed", start, end, stats.failed, stats.fetched + stats.failed)
        log.debug("range [%d, %d]: %d ticks across epochs %s", start, end, len(ticks), epochs)
        return RangeResult(
            start=start, end=end, ticks=tuple(ticks), epochs=tuple(epochs),
            pages_fetched=stats.fetched, pages_failed=stats.failed,
        )
