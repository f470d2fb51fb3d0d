import asyncio, json, logging, os
from collections import Counter
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.parquet_sink import ParquetEventSink, range_filename
from ..application.use_cases import TickChainService, build_service
from ..config import Settings, load_settings
from ..domain.errors import TickbridgeError
from ..domain.models import Event, Tick

app = typer.Typer(help="tickbridge: block and event views over the Qubic tick ledger.", no_args_is_help=True)
console = Console()
T = TypeVar("T")

_state: dict[str, Settings] = {}


@app.callback()
def main(
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Override TICKBRIDGE_RPC_URL"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING ..."),
):
    try:
        s = load_settings()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    if rpc_url or log_level:
        d = asdict(s)
        if rpc_url: d["rpc_url"] = rpc_url
        if log_level: d["log_level"] = log_level.upper()
        s = Settings(**d)
    logging.basicConfig(
        level=s.log_level, format="%(message)s", datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
    )
    _state["settings"] = s


def _run(fn: Callable[[TickChainService], Awaitable[T]]) -> T:
    async def go() -> T:
        svc = build_service(_state["settings"])
        try:
            return await fn(svc)
        finally:
            await svc.aclose()
    try:
        return asyncio.run(go())
    except TickbridgeError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e


def _block(t: Tick) -> dict[str, int]:
    return {"blockNumber": t.number, "blockTimestamp": t.timestamp_ms // 1000}


def _event(e: Event) -> dict[str, Any]:
    d = asdict(e)
    d["block_timestamp"] = d.pop("block_timestamp_ms") // 1000
    return {k: v for k, v in d.items() if v is not None}


def _emit(payload: Any) -> None:
    console.print_json(json.dumps(payload))


@app.command("latest-block")
def latest_block():
    """Latest tick whose transactions are guaranteed to be servable."""
    _emit({"block": _block(_run(lambda svc: svc.resolve_latest_safe_block()))})


@app.command()
def block(
    number: Optional[int] = typer.Option(None, "--number", "-n", help="Tick number"),
    timestamp: Optional[int] = typer.Option(None, "--timestamp", "-t", help="Unix time in seconds"),
):
    """Resolve a block by number (exact or nearest) or by timestamp."""
    if (number is None) == (timestamp is None):
        raise click.UsageError("pass exactly one of --number / --timestamp")
    if number is not None:
        tick = _run(lambda svc: svc.resolve_block_by_number(number))
    else:
        tick = _run(lambda svc: svc.resolve_block_by_timestamp(timestamp * 1000))
    _emit({"block": _block(tick)})


@app.command()
def events(
    from_block: int = typer.Argument(..., help="First tick, inclusive"),
    to_block: int = typer.Argument(..., help="Last tick, inclusive"),
    parquet_out: Optional[str] = typer.Option(None, "--parquet-out", help="File or directory for a Parquet export"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print the summary"),
):
    """All swap / join / exit / creation events in [FROM_BLOCK, TO_BLOCK]."""
    evs = _run(lambda svc: svc.list_events_in_range(from_block, to_block))
    if not quiet:
        _emit({"events": [_event(e) for e in evs]})

    counts = Counter(e.event_type for e in evs)
    table = Table(title=f"events {from_block}..{to_block}")
    table.add_column("type")
    table.add_column("count", justify="right")
    for kind in ("creation", "swap", "join", "exit"):
        table.add_row(kind, str(counts.get(kind, 0)))
    table.add_row("[bold]total[/bold]", f"[bold]{len(evs)}[/bold]")
    Console(stderr=True).print(table)

    if parquet_out:
        path = parquet_out
        if parquet_out.endswith(os.sep) or os.path.isdir(parquet_out):
            path = os.path.join(parquet_out, range_filename(from_block, to_block))
        written = asyncio.run(ParquetEventSink().write_events(path, evs))
        console.print(f"[green]wrote[/green] {len(evs)} events -> {written}", highlight=False)


@app.command()
def pair(pair_id: str):
    """Pair metadata."""
    info = _run(lambda svc: svc.pair(pair_id))
    if info is None:
        raise click.ClickException(f"pair {pair_id} not found")
    d = asdict(info)
    d["created_at_timestamp"] = d.pop("created_at_timestamp_ms") // 1000
    _emit({"pair": d})


@app.command()
def asset(
    asset_id: str,
    holders: int = typer.Option(0, "--holders", help="Also list this many holders"),
):
    """Asset metadata (and optionally its top holders)."""
    async def fetch(svc: TickChainService):
        info = await svc.asset(asset_id)
        top = await svc.asset_holders(asset_id, 0, holders) if holders > 0 else ([], 0)
        return info, top
    info, (top, total) = _run(fetch)
    if info is None:
        raise click.ClickException(f"asset {asset_id} not found")
    out: dict[str, Any] = {"asset": asdict(info)}
    if holders > 0:
        out["holders"] = [asdict(h) for h in top]
        out["totalHolders"] = total
    _emit(out)


@app.command()
def exchange(exchange_id: str):
    """Exchange (factory) metadata."""
    info = _run(lambda svc: svc.exchange(exchange_id))
    if info is None:
        raise click.ClickException(f"exchange {exchange_id} not found")
    _emit({"exchange": asdict(info)})


if __name__ == "__main__":
    app()
