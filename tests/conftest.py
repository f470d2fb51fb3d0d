"""
Shared fixtures: an in-memory tick ledger speaking the RPC port, and a clock
the tests can move by hand.
"""

from collections import Counter
from typing import Iterable

import pytest

from tickbridge.adapters import normalize as nz
from tickbridge.config import Settings
from tickbridge.domain.errors import UpstreamUnavailable
from tickbridge.domain.models import EpochPage, HeadSnapshot, StatusSnapshot, Tick
from tickbridge.domain.value_types import EpochId, TickNumber

BASE_TS_MS = 1_700_000_000_000


def ts_of(n: int) -> int:
    """One second per tick."""
    return BASE_TS_MS + n * 1000


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRPC:
    """Epoch -> tick numbers ledger with failure injection and call counters."""

    def __init__(
        self,
        epochs: dict[int, Iterable[int]],
        *,
        head: int | None = None,
        current_epoch: int | None = None,
        descending: bool = False,
        report_totals: bool = True,
        empty_ticks: Iterable[int] = (),
        transactions: dict[int, list[dict]] | None = None,
        untimed_ticks: Iterable[int] = (),
    ):
        self.epochs = {e: sorted(ns) for e, ns in epochs.items()}
        all_ticks = [n for ns in self.epochs.values() for n in ns]
        self.head = head if head is not None else (max(all_ticks) if all_ticks else 0)
        self.current_epoch = current_epoch if current_epoch is not None else max(self.epochs, default=0)
        self.descending = descending
        self.report_totals = report_totals
        self.empty_ticks = set(empty_ticks)
        self.untimed_ticks = set(untimed_ticks)
        self.txs = transactions or {}
        self.assets: dict[str, dict] = {}
        self.pairs: dict[str, dict] = {}
        self.exchanges: dict[str, dict] = {}

        self.calls: Counter = Counter()
        self.page_calls: list[tuple[int, int]] = []
        self.probe_calls: list[int] = []
        self.fail_pages: set[tuple[int, int]] = set()
        self.fail_epochs: set[int] = set()
        self.fail_txs: set[int] = set()
        self.fail_probe: set[int] = set()
        self.status_down = False
        self.head_down = False

    def _tick(self, n: int, epoch: int) -> Tick:
        return Tick(
            number=TickNumber(n),
            timestamp_ms=0 if n in self.untimed_ticks else ts_of(n),
            epoch_id=EpochId(epoch),
            is_empty=n in self.empty_ticks,
        )

    async def latest_tick(self) -> HeadSnapshot:
        self.calls["latest_tick"] += 1
        if self.head_down:
            raise UpstreamUnavailable("head down", endpoint="/v1/latestTick")
        return HeadSnapshot(latest_tick=self.head)

    async def status(self) -> StatusSnapshot:
        self.calls["status"] += 1
        if self.status_down:
            raise UpstreamUnavailable("status down", endpoint="/v1/status")
        return StatusSnapshot(epoch_id=EpochId(self.current_epoch), last_tick=self.head)

    async def epoch_ticks(self, epoch: int, page: int, page_size: int) -> EpochPage:
        self.calls["epoch_ticks"] += 1
        self.page_calls.append((epoch, page))
        if epoch in self.fail_epochs or (epoch, page) in self.fail_pages:
            raise UpstreamUnavailable(f"epoch {epoch} page {page} down", endpoint=f"/v2/epochs/{epoch}/ticks")
        nums = self.epochs.get(epoch, [])
        if self.descending:
            nums = list(reversed(nums))
        chunk = nums[page * page_size:(page + 1) * page_size]
        total = -(-len(nums) // page_size)
        return EpochPage(
            epoch_id=EpochId(epoch),
            page=page,
            page_size=page_size,
            ticks=tuple(self._tick(n, epoch) for n in chunk),
            total_pages=total if self.report_totals else None,
            total_records=len(nums) if self.report_totals else None,
        )

    async def tick_transactions(self, tick_number: int):
        self.calls["tick_transactions"] += 1
        if tick_number in self.fail_txs:
            raise UpstreamUnavailable(f"tick {tick_number} txs down")
        return nz.to_transactions({"transactions": self.txs.get(tick_number, [])}, tick_number)

    async def probe_transactions(self, tick_number: int) -> None:
        self.calls["probe_transactions"] += 1
        self.probe_calls.append(tick_number)
        if tick_number in self.fail_probe:
            raise UpstreamUnavailable(f"tick {tick_number} not servable")

    async def asset(self, asset_id: str):
        return nz.to_asset(self.assets.get(asset_id))

    async def asset_holders(self, asset_id: str, page: int = 0, page_size: int = 10):
        return nz.to_holders(self.assets.get(asset_id, {}).get("holders_payload")) or ([], 0)

    async def exchange(self, exchange_id: str):
        return nz.to_exchange(self.exchanges.get(exchange_id))

    async def pair(self, pair_id: str):
        return nz.to_pair(self.pairs.get(pair_id))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(page_size=10)


@pytest.fixture
def ledger():
    """Three epochs of 100 dense ticks each: 0 -> 1000..1099, 1 -> 1100..1199, 2 -> 1200..1299."""
    return FakeRPC({0: range(1000, 1100), 1: range(1100, 1200), 2: range(1200, 1300)}, head=1299)
