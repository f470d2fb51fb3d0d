from __future__ import annotations
import asyncio, logging, httpx
from typing import Any, Awaitable, Callable, Mapping, TypeVar
from ..config import Settings
from ..domain.errors import UpstreamUnavailable
from ..domain.models import (
    AssetHolder, AssetInfo, EpochPage, ExchangeInfo, HeadSnapshot, PairInfo,
    StatusSnapshot, TransactionRecord,
)
from ..ports.rpc import TickRPC
from . import normalize as nz

log = logging.getLogger(__name__)
T = TypeVar("T")

# Ordered endpoint variants per auxiliary resource; first valid payload wins.
ENDPOINT_TEMPLATES: dict[str, tuple[str, ...]] = {
    "asset": (
        "/v1/assets/{id}", "/v2/assets/{id}", "/assets/v1/{id}", "/assets/v2/{id}",
        "/v1/identities/{id}", "/v2/identities/{id}", "/identities/v1/{id}", "/identities/v2/{id}",
    ),
    "asset_holders": (
        "/v1/assets/{id}/holders", "/v2/assets/{id}/holders", "/assets/v1/{id}/holders", "/assets/v2/{id}/holders",
        "/v1/identities/{id}/holders", "/v2/identities/{id}/holders",
        "/identities/v1/{id}/holders", "/identities/v2/{id}/holders",
    ),
    "exchange": ("/v1/exchanges/{id}", "/v2/exchanges/{id}", "/exchanges/v1/{id}", "/exchanges/v2/{id}"),
    "pair":     ("/v1/pairs/{id}", "/v2/pairs/{id}", "/pairs/v1/{id}", "/pairs/v2/{id}"),
}

LATEST_TICK_PATH  = "/v1/latestTick"
STATUS_PATH       = "/v1/status"
EPOCH_TICKS_PATH  = "/v2/epochs/{epoch}/ticks"
TICK_TXS_PATH     = "/v2/ticks/{tick}/transactions"


class HttpxQubicRPC(TickRPC):
    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_s: float = 30.0,
        max_conn: int = 32,
        http2: bool = True,
        rate_limit_retries: int = 3,
        backoff_base_s: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.rpc_url = rpc_url.rstrip("/")
        self.rate_limit_retries = rate_limit_retries
        self.backoff_base_s = backoff_base_s
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=self.rpc_url,
            http2=http2,
            timeout=httpx.Timeout(timeout_s),
            limits=httpx.Limits(max_connections=max_conn, max_keepalive_connections=max(1, max_conn // 2)),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, s: Settings, **kw: Any) -> "HttpxQubicRPC":
        return cls(
            s.rpc_url, timeout_s=s.timeout_s, max_conn=s.max_connections, http2=s.http2,
            rate_limit_retries=s.rate_limit_retries, backoff_base_s=s.backoff_base_s, **kw,
        )

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        # 429 is the only status worth waiting out; everything else surfaces at once
        for attempt in range(self.rate_limit_retries + 1):
            try:
                r = await self.client.get(path, params=params)
            except httpx.HTTPError as e:
                raise UpstreamUnavailable(f"GET {path}: {type(e).__name__}: {e}", endpoint=path) from e
            if r.status_code == 429:
                if attempt >= self.rate_limit_retries:
                    break
                ra = r.headers.get("Retry-After")
                delay = max(self.backoff_base_s, float(ra)) if ra and ra.isdigit() else self.backoff_base_s * (2**attempt)
                log.info("rate limited on %s, retry %d/%d in %.1fs", path, attempt + 1, self.rate_limit_retries, delay)
                await self._sleep(delay); continue
            if r.status_code >= 400:
                raise UpstreamUnavailable(f"GET {path} -> HTTP {r.status_code}", endpoint=path, status_code=r.status_code)
            try:
                return r.json()
            except ValueError as e:
                raise UpstreamUnavailable(f"GET {path}: response is not JSON", endpoint=path, status_code=r.status_code) from e
        raise UpstreamUnavailable(f"GET {path}: retries exhausted after rate limiting", endpoint=path, status_code=429)

    def _shape(self, path: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return fn(*args)
        except nz.PayloadError as e:
            raise UpstreamUnavailable(f"GET {path}: {e}", endpoint=path) from e

    async def latest_tick(self) -> HeadSnapshot:
        data = await self._get(LATEST_TICK_PATH)
        return self._shape(LATEST_TICK_PATH, nz.to_head, data)

    async def status(self) -> StatusSnapshot:
        data = await self._get(STATUS_PATH)
        return self._shape(STATUS_PATH, nz.to_status, data)

    async def epoch_ticks(self, epoch: int, page: int, page_size: int) -> EpochPage:
        path = EPOCH_TICKS_PATH.format(epoch=epoch)
        data = await self._get(path, {"page": page, "pageSize": page_size})
        return self._shape(path, nz.to_epoch_page, data, epoch, page, page_size)

    async def tick_transactions(self, tick_number: int) -> list[TransactionRecord]:
        path = TICK_TXS_PATH.format(tick=tick_number)
        data = await self._get(path)
        return self._shape(path, nz.to_transactions, data, tick_number)

    async def probe_transactions(self, tick_number: int) -> None:
        await self._get(TICK_TXS_PATH.format(tick=tick_number), {"page": 0, "pageSize": 1})

    async def _first(self, resource: str, ident: str, convert: Callable[[Any], T | None],
                     params: Mapping[str, Any] | None = None) -> T | None:
        for template in ENDPOINT_TEMPLATES[resource]:
            path = template.format(id=ident)
            try:
                data = await self._get(path, params)
            except UpstreamUnavailable as e:
                log.debug("%s endpoint %s failed: %s", resource, path, e)
                continue
            out = convert(data)
            if out is not None:
                return out
        log.warning("no %s data found for %s", resource, ident)
        return None

    async def asset(self, asset_id: str) -> AssetInfo | None:
        return await self._first("asset", asset_id, nz.to_asset)

    async def asset_holders(self, asset_id: str, page: int = 0, page_size: int = 10) -> tuple[list[AssetHolder], int]:
        res = await self._first("asset_holders", asset_id, nz.to_holders, {"page": page, "size": page_size})
        return res if res is not None else ([], 0)

    async def exchange(self, exchange_id: str) -> ExchangeInfo | None:
        return await self._first("exchange", exchange_id, nz.to_exchange)

    async def pair(self, pair_id: str) -> PairInfo | None:
        return await self._first("pair", pair_id, nz.to_pair)

    async def aclose(self) -> None:
        await self.client.aclose()
