from __future__ import annotations

import logging

from ..domain.errors import UpstreamUnavailable
from ..domain.value_types import EpochId
from ..ports.rpc import TickRPC
from .cache import CacheStore
from .pages import PageReader
from .planning import probe_order

log = logging.getLogger(__name__)


class EpochLocator:
    """Map a tick number to the epoch that holds it."""

    def __init__(
        self,
        rpc: TickRPC,
        cache: CacheStore,
        pages: PageReader,
        *,
        forward_epoch_probe: int = 1,
        fallback_epoch: int | None = None,
    ) -> None:
        self.rpc = rpc
        self.cache = cache
        self.pages = pages
        self.forward_epoch_probe = forward_epoch_probe
        self.fallback_epoch = fallback_epoch

    async def current_epoch(self) -> EpochId:
        snap = self.cache.status()
        if snap is not None:
            return snap.epoch_id
        try:
            snap = await self.rpc.status()
        except UpstreamUnavailable as e:
            stale = self.cache.status(allow_stale=True)
            if stale is not None:
                log.warning("status refresh failed (%s); using stale epoch %d", e, stale.epoch_id)
                return stale.epoch_id
            if self.fallback_epoch is not None:
                log.warning("status unavailable (%s); using configured fallback epoch %d", e, self.fallback_epoch)
                return EpochId(self.fallback_epoch)
            raise
        self.cache.put_status(snap)
        return snap.epoch_id

    async def find(self, tick_number: int) -> EpochId | None:
        hit = self.cache.epoch_containing(tick_number)
        if hit is not None:
            return EpochId(hit)

        head = await self.current_epoch()
        below_exhausted = above_exhausted = False
        for e in probe_order(head, forward=self.forward_epoch_probe):
            if (e < head and below_exhausted) or (e > head and above_exhausted):
                continue
            # probed epochs answer from the cached layout without touching upstream
            if await self.pages.layout(e) is None:
                continue
            rng = self.cache.range_of(e)
            if rng is None:
                continue
            if rng.contains(tick_number):
                log.debug("tick %d -> epoch %d", tick_number, e)
                return EpochId(e)
            # epochs partition the tick line in order, so one side can be dropped
            if e <= head and rng.max_tick_seen < tick_number:
                below_exhausted = True
            if e >= head and rng.min_tick_seen > tick_number:
                above_exhausted = True
            if below_exhausted and above_exhausted:
                break
        return None

    async def locate(self, tick_number: int) -> EpochId:
        found = await self.find(tick_number)
        if found is not None:
            return found
        head = await self.current_epoch()
        log.warning("tick %d not inside any known epoch; assuming current epoch %d", tick_number, head)
        return head
