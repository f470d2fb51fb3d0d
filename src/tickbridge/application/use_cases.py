from __future__ import annotations

import logging
import time
from typing import Callable

from ..adapters.rpc_httpx import HttpxQubicRPC
from ..config import Settings
from ..domain.errors import InvalidRange, TickNotFound, UpstreamUnavailable
from ..domain.models import AssetHolder, AssetInfo, Event, ExchangeInfo, PairInfo, Tick
from ..ports.rpc import TickRPC
from .cache import CacheStore, SingleFlight
from .epochs import EpochLocator
from .events import EventExtractor
from .latest import LatestSafeTickSelector
from .pages import PageReader, PageStats
from .ranges import RangeCollector
from .ticks import TickLocator
from .utils import now_ms

log = logging.getLogger(__name__)


class TickChainService:
    """Block/event view over the tick ledger.

    One instance owns one cache; share the instance, not the cache, between
    callers.
    """

    def __init__(
        self,
        rpc: TickRPC,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        s = settings or Settings()
        self.rpc = rpc
        self.settings = s
        self.cache = CacheStore(snapshot_ttl_s=s.snapshot_ttl_s, clock=clock)
        self.flights = SingleFlight()
        self.pages = PageReader(
            rpc, self.cache, self.flights,
            page_size=s.page_size,
            max_empty_pages=s.max_empty_pages,
            probe_page_limit=s.probe_page_limit,
            page_limit=s.binary_search_high_page,
            concurrency=max(1, s.max_connections // 4),
        )
        self.epochs = EpochLocator(
            rpc, self.cache, self.pages,
            forward_epoch_probe=s.forward_epoch_probe,
            fallback_epoch=s.fallback_epoch,
        )
        self.ticks = TickLocator(
            self.cache, self.pages, self.epochs,
            adjacent_page_walk=s.adjacent_page_walk,
            binary_search_probes=s.binary_search_probes,
            binary_search_high_page=s.binary_search_high_page,
            adjacent_epochs=s.adjacent_epochs,
            wall_clock_ms=wall_clock_ms,
        )
        self.latest = LatestSafeTickSelector(
            rpc, self.cache, self.ticks,
            safety_buffer=s.safety_buffer,
            fallback_candidates=s.latest_fallback_candidates,
        )
        self.ranges = RangeCollector(self.cache, self.pages, self.epochs)
        self.events = EventExtractor(rpc, self.cache, self.flights, concurrency=max(1, s.max_connections // 4))

    # ---- positions -----------------------------------------------------------
    async def resolve_latest_safe_block(self) -> Tick:
        return await self.latest.select()

    async def resolve_block_by_number(self, n: int) -> Tick:
        if n < 0:
            raise TickNotFound(n, f"tick {n} is negative")
        match = await self.ticks.locate(n)
        if match.kind == "placeholder":
            raise TickNotFound(n)
        degraded = match.degradation()
        if degraded is not None:
            log.warning("%s", degraded)
        return match.tick

    async def resolve_block_by_timestamp(self, ts_ms: int) -> Tick:
        """Newest tick stamped at or before ts_ms in the current or recent epochs."""
        head = await self.epochs.current_epoch()
        oldest = max(0, head - self.settings.timestamp_epoch_lookback)
        for e in range(head, oldest - 1, -1):
            tick = await self._at_or_before(e, ts_ms)
            if tick is not None:
                return tick
        log.warning("no tick at or before %d ms in epochs %d..%d; falling back to latest safe tick", ts_ms, oldest, head)
        return await self.resolve_latest_safe_block()

    async def _at_or_before(self, epoch: int, ts_ms: int) -> Tick | None:
        def pick(ticks) -> Tick | None:
            # ticks without a timestamp (0) can't be placed in time
            return max((t for t in ticks if 0 < t.timestamp_ms <= ts_ms), key=lambda t: t.number, default=None)

        async def scan() -> Tick | None:
            stats = PageStats()
            ticks = await self.pages.read_all(epoch, stats)
            if stats.failed:
                raise UpstreamUnavailable(f"epoch {epoch}: {stats.failed} listing page(s) failed during timestamp search")
            return pick(ticks)

        listing = self.cache.epoch_listing(epoch)
        if listing is not None:
            return pick(listing)
        layout = await self.pages.layout(epoch)
        # answering from an older epoch would skip this one's ticks
        if layout is None:
            raise UpstreamUnavailable(f"epoch {epoch} layout unavailable during timestamp search")
        if layout.total_pages == 0:
            return None
        if layout.total_pages is None or not layout.mappable:
            return await scan()

        best: Tick | None = None
        lo, hi = 0, layout.total_pages - 1
        while lo <= hi:
            mid = (lo + hi) // 2
            page = await self.pages.read_logical(layout, mid)
            if page is None:
                log.warning("epoch %d page %d failed mid-search; reading the whole epoch", epoch, mid)
                return await scan()
            cand = pick(page.ticks)
            if cand is not None:
                best = cand if best is None or cand.number > best.number else best
                lo = mid + 1
            else:
                hi = mid - 1
        return best

    # ---- events --------------------------------------------------------------
    async def list_events_in_range(self, start: int, end: int) -> list[Event]:
        if start < 0 or end < 0 or start > end:
            raise InvalidRange(f"invalid tick range [{start}, {end}]")
        res = await self.ranges.collect(start, end)
        if res.pages_failed:
            raise UpstreamUnavailable(
                f"range [{start}, {end}] incomplete: {res.pages_failed} listing page(s) failed"
            )
        return await self.events.extract(res.ticks)

    # ---- auxiliary lookups ---------------------------------------------------
    async def asset(self, asset_id: str) -> AssetInfo | None:
        return await self.rpc.asset(asset_id)

    async def asset_holders(self, asset_id: str, page: int = 0, page_size: int = 10) -> tuple[list[AssetHolder], int]:
        return await self.rpc.asset_holders(asset_id, page, page_size)

    async def exchange(self, exchange_id: str) -> ExchangeInfo | None:
        return await self.rpc.exchange(exchange_id)

    async def pair(self, pair_id: str) -> PairInfo | None:
        return await self.rpc.pair(pair_id)

    async def aclose(self) -> None:
        close = getattr(self.rpc, "aclose", None)
        if close is not None:
            await close()


def build_service(settings: Settings) -> TickChainService:
    return TickChainService(HttpxQubicRPC.from_settings(settings), settings)
