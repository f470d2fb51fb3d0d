from __future__ import annotations

import logging

from ..domain.errors import UpstreamUnavailable
from ..domain.models import Tick
from ..ports.rpc import TickRPC
from .cache import CacheStore
from .ticks import TickLocator

log = logging.getLogger(__name__)


class LatestSafeTickSelector:
    """Newest tick at least `safety_buffer` behind head whose transactions are servable."""

    def __init__(
        self,
        rpc: TickRPC,
        cache: CacheStore,
        ticks: TickLocator,
        *,
        safety_buffer: int = 10,
        fallback_candidates: int = 5,
    ) -> None:
        self.rpc = rpc
        self.cache = cache
        self.ticks = ticks
        self.safety_buffer = safety_buffer
        self.fallback_candidates = fallback_candidates

    async def head(self) -> int:
        snap = self.cache.head()
        if snap is None:
            snap = await self.rpc.latest_tick()
            self.cache.put_head(snap)
        return snap.latest_tick

    def candidates(self, head: int) -> list[int]:
        # fallbacks stay inside [first - K, first); an older tick is never "latest"
        first = max(0, head - self.safety_buffer)
        floor = max(0, first - self.fallback_candidates)
        return list(range(first, floor - 1, -1))

    async def verify(self, n: int) -> Tick | None:
        try:
            await self.rpc.probe_transactions(n)
        except UpstreamUnavailable as e:
            log.info("tick %d transactions not servable yet: %s", n, e)
            return None
        try:
            match = await self.ticks.locate(n)
        except UpstreamUnavailable as e:
            log.info("tick %d could not be located: %s", n, e)
            return None
        return match.tick if match.kind == "exact" else None

    async def select(self) -> Tick:
        head = await self.head()
        tried: list[int] = []
        for n in self.candidates(head):
            tried.append(n)
            tick = await self.verify(n)
            if tick is not None:
                if len(tried) > 1:
                    log.warning("latest-safe tick fell back to %d (head %d)", n, head)
                return tick
        raise UpstreamUnavailable(f"no verifiable tick near head {head}; tried {tried}")
