from __future__ import annotations

import logging
from typing import Callable

from ..domain.models import EpochLayout, Tick, TickMatch
from ..domain.value_types import TickNumber
from .cache import CacheStore
from .epochs import EpochLocator
from .pages import PageReader
from .planning import clamp_page, estimate_logical_page
from .utils import closer, closest, now_ms

log = logging.getLogger(__name__)


class TickLocator:
    """Exact-or-nearest tick lookup.

    Order of attempts: cache, the estimated page of the owning epoch (plus a
    short walk toward the target), a bounded binary search over that epoch's
    pages, the neighbouring epochs, and finally an unverified placeholder.
    """

    def __init__(
        self,
        cache: CacheStore,
        pages: PageReader,
        epochs: EpochLocator,
        *,
        adjacent_page_walk: int = 5,
        binary_search_probes: int = 8,
        binary_search_high_page: int = 1000,
        adjacent_epochs: int = 2,
        wall_clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self.cache = cache
        self.pages = pages
        self.epochs = epochs
        self.adjacent_page_walk = adjacent_page_walk
        self.binary_search_probes = binary_search_probes
        self.binary_search_high_page = binary_search_high_page
        self.adjacent_epochs = adjacent_epochs
        self.wall_clock_ms = wall_clock_ms

    async def locate(self, n: int) -> TickMatch:
        hit = self.cache.get_tick(n)
        if hit is not None:
            return TickMatch(n, hit, "exact")
        alias = self.cache.get_alias(n)
        if alias is not None:
            return TickMatch(n, alias, "nearest")

        epoch = await self.epochs.locate(n)
        best = await self.search_epoch(n, epoch)
        if best is None:
            # older epochs first, then the one after
            neighbours = [epoch - k for k in range(1, self.adjacent_epochs + 1)] + [epoch + 1]
            for e in neighbours:
                if e < 0:
                    continue
                best = await self.search_epoch(n, e)
                if best is not None:
                    break

        if best is None:
            log.warning("tick %d: nothing found in epoch %d or its neighbours; returning placeholder", n, epoch)
            return TickMatch(n, self.placeholder(n), "placeholder")
        if best.number == n:
            return TickMatch(n, best, "exact")

        rng = self.cache.range_of(best.epoch_id) if best.epoch_id is not None else None
        if rng is not None and rng.contains(n):
            # n sits inside observed bounds but was never listed: the gap is permanent
            self.cache.put_alias(n, best)
        return TickMatch(n, best, "nearest")

    def placeholder(self, n: int) -> Tick:
        return Tick(number=TickNumber(n), timestamp_ms=self.wall_clock_ms(), epoch_id=None, verified=False)

    async def search_epoch(self, n: int, epoch: int) -> Tick | None:
        """Closest tick to n that this epoch yields, None when it yields nothing."""
        listing = self.cache.epoch_listing(epoch)
        if listing is not None:
            return closest(listing, n)
        layout = await self.pages.layout(epoch)
        if layout is None or layout.total_pages == 0:
            return None
        if not layout.mappable:
            return closest(await self.pages.read_all(epoch), n)

        best, done = await self._targeted(n, layout)
        if not done:
            best = closer(best, await self._bisect(n, layout), n)
        return best

    async def _targeted(self, n: int, layout: EpochLayout) -> tuple[Tick | None, bool]:
        rng = self.cache.range_of(layout.epoch_id)
        logical = clamp_page(
            estimate_logical_page(n, self.pages.page_size, rng.min_tick_seen if rng else None),
            layout.total_pages,
        )
        best: Tick | None = None
        direction = 0
        for _ in range(self.adjacent_page_walk + 1):
            page = await self.pages.read_logical(layout, logical)
            if page is None or not page.ticks:
                break
            best = closer(best, closest(page.ticks, n), n)
            lo, hi = page.bounds()
            if lo <= n <= hi:
                return best, True
            step = 1 if n > hi else -1
            if direction and step != direction:
                return best, True  # n falls between two neighbouring pages
            direction = step
            logical += step
            if logical < 0 or (layout.total_pages is not None and logical >= layout.total_pages):
                return best, True  # past the epoch's edge; the edge tick is the nearest
        return best, False

    async def _bisect(self, n: int, layout: EpochLayout) -> Tick | None:
        lo_p = 0
        hi_p = layout.total_pages - 1 if layout.total_pages is not None else self.binary_search_high_page
        best: Tick | None = None
        for _ in range(self.binary_search_probes):
            if lo_p > hi_p:
                break
            mid = (lo_p + hi_p) // 2
            page = await self.pages.read_logical(layout, mid)
            if page is None or not page.ticks:
                hi_p = mid - 1
                continue
            best = closer(best, closest(page.ticks, n), n)
            lo, hi = page.bounds()
            if lo <= n <= hi:
                break
            if n < lo:
                hi_p = mid - 1
            else:
                lo_p = mid + 1
        return best
