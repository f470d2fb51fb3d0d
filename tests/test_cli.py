import json

import pytest
from typer.testing import CliRunner

from tickbridge.application.use_cases import TickChainService
from tickbridge.presentation import cli

from conftest import FakeRPC, ts_of

runner = CliRunner()


@pytest.fixture
def rpc(monkeypatch):
    ledger = FakeRPC(
        {0: range(1000, 1100), 1: range(1100, 1200)},
        transactions={1000: [{"id": "a", "type": "SWAP", "amount0In": 1}]},
    )
    monkeypatch.setattr(cli, "build_service", lambda s: TickChainService(ledger, s))
    for name in ("TICKBRIDGE_PAGE_SIZE", "TICKBRIDGE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return ledger


def test_latest_block(rpc):
    res = runner.invoke(cli.app, ["latest-block"])
    assert res.exit_code == 0, res.output
    assert '"blockNumber": 1189' in res.output
    assert f'"blockTimestamp": {ts_of(1189) // 1000}' in res.output


def test_block_by_number_and_timestamp(rpc):
    res = runner.invoke(cli.app, ["block", "--number", "1042"])
    assert res.exit_code == 0, res.output
    assert '"blockNumber": 1042' in res.output
    res = runner.invoke(cli.app, ["block", "--timestamp", str(ts_of(1150) // 1000)])
    assert res.exit_code == 0, res.output
    assert '"blockNumber": 1150' in res.output


def test_block_needs_exactly_one_selector(rpc):
    assert runner.invoke(cli.app, ["block"]).exit_code != 0
    assert runner.invoke(cli.app, ["block", "-n", "1", "-t", "2"]).exit_code != 0


def test_events_with_parquet_export(rpc, tmp_path):
    res = runner.invoke(cli.app, ["events", "1000", "1005", "--parquet-out", str(tmp_path)])
    assert res.exit_code == 0, res.output
    assert '"txn_id": "a"' in res.output
    assert (tmp_path / "events_1000_1005.parquet").exists()


def test_upstream_failure_exits_non_zero(rpc):
    rpc.head_down = True
    res = runner.invoke(cli.app, ["latest-block"])
    assert res.exit_code == 1
    assert "UpstreamUnavailable" in res.output


def test_missing_pair(rpc):
    res = runner.invoke(cli.app, ["pair", "nope"])
    assert res.exit_code == 1
    assert "not found" in res.output


def test_exchange_lookup(rpc):
    rpc.exchanges["F"] = {"factoryAddress": "F", "name": "Dex"}
    res = runner.invoke(cli.app, ["exchange", "F"])
    assert res.exit_code == 0, res.output
    assert json.loads(res.stdout)["exchange"]["name"] == "Dex"
