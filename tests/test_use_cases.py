import pytest

from tickbridge.application.use_cases import TickChainService, build_service
from tickbridge.config import Settings
from tickbridge.domain.errors import TickNotFound, UpstreamUnavailable

from conftest import BASE_TS_MS, FakeRPC, ts_of


class FlakyRPC(FakeRPC):
    """Pages in `fail_once` fail on their first read only."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_once: set[tuple[int, int]] = set()

    async def epoch_ticks(self, epoch, page, page_size):
        if (epoch, page) in self.fail_once:
            self.fail_once.discard((epoch, page))
            raise UpstreamUnavailable(f"epoch {epoch} page {page} flaked")
        return await super().epoch_ticks(epoch, page, page_size)


@pytest.fixture
def svc(ledger, settings, clock):
    return TickChainService(ledger, settings, clock=clock)


class TestBlockByNumber:
    @pytest.mark.asyncio
    async def test_twice_gives_identical_ticks(self, svc, ledger):
        a = await svc.resolve_block_by_number(1234)
        calls = ledger.calls["epoch_ticks"]
        b = await svc.resolve_block_by_number(1234)
        assert a == b
        assert (a.number, a.timestamp_ms, a.epoch_id) == (1234, ts_of(1234), 2)
        assert ledger.calls["epoch_ticks"] == calls

    @pytest.mark.asyncio
    async def test_nearest_is_returned_for_gaps(self, settings, clock):
        rpc = FakeRPC({0: [n for n in range(1000, 1100) if n not in (1050, 1051)]})
        svc = TickChainService(rpc, settings, clock=clock)
        t = await svc.resolve_block_by_number(1051)
        assert t.number == 1052

    @pytest.mark.asyncio
    async def test_negative_number(self, svc):
        with pytest.raises(TickNotFound):
            await svc.resolve_block_by_number(-5)


class TestBlockByTimestamp:
    @pytest.mark.asyncio
    async def test_newest_tick_at_or_before(self, svc):
        t = await svc.resolve_block_by_timestamp(ts_of(1150) + 500)
        assert t.number == 1150

    @pytest.mark.asyncio
    async def test_exact_timestamp_in_current_epoch(self, svc):
        t = await svc.resolve_block_by_timestamp(ts_of(1234))
        assert t.number == 1234

    @pytest.mark.asyncio
    async def test_untimed_ticks_are_ignored(self, settings, clock):
        rpc = FakeRPC({0: range(1000, 1100), 1: range(1100, 1200)}, untimed_ticks={1150})
        svc = TickChainService(rpc, settings, clock=clock)
        t = await svc.resolve_block_by_timestamp(ts_of(1150))
        assert t.number == 1149

    @pytest.mark.asyncio
    async def test_falls_back_to_latest_safe_when_nothing_is_old_enough(self, svc, ledger):
        t = await svc.resolve_block_by_timestamp(BASE_TS_MS)
        assert t.number == ledger.head - 10
        assert ledger.probe_calls == [ledger.head - 10]

    @pytest.mark.asyncio
    async def test_lookback_is_bounded(self, clock):
        epochs = {e: range(1000 + e * 10, 1010 + e * 10) for e in range(10)}
        rpc = FakeRPC(epochs)
        svc = TickChainService(rpc, Settings(page_size=10, timestamp_epoch_lookback=2), clock=clock)
        # tick 1005 lives in epoch 0, outside the 3 epochs searched
        t = await svc.resolve_block_by_timestamp(ts_of(1005))
        assert t.number == rpc.head - 10
        assert {e for e, _ in rpc.page_calls} >= {9, 8, 7}
        assert 0 not in {e for e, _ in rpc.page_calls}

    @pytest.mark.asyncio
    async def test_closed_epoch_listing_answers_without_paging(self, settings, clock):
        rpc = FakeRPC({0: range(1000, 1100), 1: range(1100, 1200)}, report_totals=False)
        svc = TickChainService(rpc, settings, clock=clock)
        await svc.ranges.collect(1000, 1010)
        calls = rpc.calls["epoch_ticks"]
        # epoch 1 (current) has nothing that old, so epoch 0 answers from its listing
        t = await svc.resolve_block_by_timestamp(ts_of(1042))
        assert t.number == 1042
        assert all(e == 1 for e, _ in rpc.page_calls[calls:])

    @pytest.mark.asyncio
    async def test_failed_page_mid_search_raises_instead_of_older_epoch(self, svc, ledger):
        ledger.fail_pages.add((2, 4))
        with pytest.raises(UpstreamUnavailable):
            await svc.resolve_block_by_timestamp(ts_of(1250))

    @pytest.mark.asyncio
    async def test_transient_page_failure_is_read_around(self, settings, clock):
        rpc = FlakyRPC({0: range(1000, 1100), 1: range(1100, 1200), 2: range(1200, 1300)})
        rpc.fail_once.add((2, 4))
        svc = TickChainService(rpc, settings, clock=clock)
        t = await svc.resolve_block_by_timestamp(ts_of(1250))
        assert t.number == 1250

    @pytest.mark.asyncio
    async def test_unreadable_epoch_raises(self, svc, ledger):
        ledger.fail_pages.add((2, 0))
        with pytest.raises(UpstreamUnavailable):
            await svc.resolve_block_by_timestamp(ts_of(1150))


class TestAuxiliary:
    @pytest.mark.asyncio
    async def test_lookups_pass_through(self, svc, ledger):
        ledger.pairs["P1"] = {"id": "P1", "token0": "A", "token1": "B"}
        ledger.exchanges["F"] = {"factoryAddress": "F", "name": "Dex"}
        ledger.assets["QX"] = {"id": "QX", "name": "Qx", "symbol": "QX",
                               "holders_payload": {"holders": [{"address": "H", "balance": "9"}]}}
        assert (await svc.pair("P1")).asset1_id == "B"
        assert (await svc.exchange("F")).name == "Dex"
        assert (await svc.asset("QX")).symbol == "QX"
        holders, total = await svc.asset_holders("QX")
        assert holders[0].quantity == "9" and total == 1
        assert await svc.pair("nope") is None


def test_build_service_wires_httpx_adapter():
    svc = build_service(Settings(rpc_url="https://rpc.test", http2=False, page_size=50))
    assert svc.pages.page_size == 50
    assert svc.rpc.rpc_url == "https://rpc.test"
