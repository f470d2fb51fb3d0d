from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

import pyarrow as pa

from tickbridge.domain.models import Event, Reserves, Tick, TransactionRecord
from tickbridge.domain.value_types import EventType


# Upstream transaction type -> event type. Anything else is dropped.
EVENT_TYPES: dict[str, EventType] = {
    "PAIR_CREATED":       "creation",
    "PAIR_CREATE":        "creation",
    "CREATE_PAIR":        "creation",
    "SWAP":               "swap",
    "EXCHANGE":           "swap",
    "ADD_LIQUIDITY":      "join",
    "JOIN_POOL":          "join",
    "PROVIDE_LIQUIDITY":  "join",
    "REMOVE_LIQUIDITY":   "exit",
    "EXIT_POOL":          "exit",
    "WITHDRAW_LIQUIDITY": "exit",
}

# ---------- amount helpers ----------------------------------------------------

def format_amount(v: Any) -> str:
    """Strings pass through untouched; numbers get 6 fractional digits; missing -> '0.0'."""
    if v is None or isinstance(v, bool):
        return "0.0"
    if isinstance(v, str):
        return v
    if isinstance(v, (int, float, Decimal)):
        try:
            return f"{Decimal(str(v)):.6f}"
        except InvalidOperation:
            return "0.0"
    return "0.0"

def _reserves(raw: Mapping[str, Any] | None) -> Reserves:
    raw = raw or {}
    a0 = raw.get("token0", raw.get("asset0"))
    a1 = raw.get("token1", raw.get("asset1"))
    return Reserves(asset0=format_amount(a0), asset1=format_amount(a1))

def fee_bps(fee: Any) -> int:
    """0.003 -> 30; values above 1 are taken as already in basis points."""
    if not fee:
        return 30
    f = float(fee)
    return round(f * 10_000) if f <= 1 else int(f)

# ---------------------------- public API --------------------------------------

def decode_event(tx: TransactionRecord, tick: Tick) -> Event | None:
    """Map one transaction to zero or one Event via EVENT_TYPES."""
    if not tx.tx_type:
        return None
    event_type = EVENT_TYPES.get(tx.tx_type.upper())
    if event_type is None:
        return None

    am = tx.amounts
    base = dict(
        block_number=tick.number,
        block_timestamp_ms=tick.timestamp_ms,
        txn_id=tx.tx_id,
        txn_index=tx.index,
        event_index=tx.event_index if tx.event_index is not None else tx.index,
        maker=tx.maker,
        pair_id=tx.pair_id,
        event_type=event_type,
    )
    if event_type == "creation":
        return Event(**base)
    if event_type == "swap":
        return Event(
            **base,
            asset0_in=format_amount(am.get("amount0In")),
            asset1_in=format_amount(am.get("amount1In")),
            asset0_out=format_amount(am.get("amount0Out")),
            asset1_out=format_amount(am.get("amount1Out")),
            reserves=_reserves(tx.reserves),
        )
    # join / exit
    return Event(
        **base,
        amount0=format_amount(am.get("amount0")),
        amount1=format_amount(am.get("amount1")),
        reserves=_reserves(tx.reserves),
    )

def decode_tick(tick: Tick, txs: Iterable[TransactionRecord]) -> list[Event]:
    out: list[Event] = []
    for tx in txs:
        ev = decode_event(tx, tick)
        if ev is not None:
            out.append(ev)
    return out

def sort_events(events: Iterable[Event]) -> list[Event]:
    # stable: ties keep input order
    return sorted(events, key=Event.sort_key)

# ---------------------------- columnar export ---------------------------------

EVENT_SCHEMA = pa.schema([
    pa.field("block_number",       pa.int64()),
    pa.field("block_timestamp_ms", pa.int64()),
    pa.field("txn_id",             pa.large_string()),
    pa.field("txn_index",          pa.int32()),
    pa.field("event_index",        pa.int32()),
    pa.field("maker",              pa.large_string()),
    pa.field("pair_id",            pa.large_string()),
    pa.field("event_type",         pa.large_string()),
    pa.field("asset0_in",          pa.large_string()),
    pa.field("asset1_in",          pa.large_string()),
    pa.field("asset0_out",         pa.large_string()),
    pa.field("asset1_out",         pa.large_string()),
    pa.field("amount0",            pa.large_string()),
    pa.field("amount1",            pa.large_string()),
    pa.field("reserve0",           pa.large_string()),
    pa.field("reserve1",           pa.large_string()),
])

COLS = [f.name for f in EVENT_SCHEMA]

def events_to_columns(events: Iterable[Event]) -> dict[str, list]:
    out: dict[str, list] = {name: [] for name in COLS}
    for e in events:
        out["block_number"].append(e.block_number)
        out["block_timestamp_ms"].append(e.block_timestamp_ms)
        out["txn_id"].append(e.txn_id)
        out["txn_index"].append(e.txn_index)
        out["event_index"].append(e.event_index)
        out["maker"].append(e.maker)
        out["pair_id"].append(e.pair_id)
        out["event_type"].append(e.event_type)
        out["asset0_in"].append(e.asset0_in)
        out["asset1_in"].append(e.asset1_in)
        out["asset0_out"].append(e.asset0_out)
        out["asset1_out"].append(e.asset1_out)
        out["amount0"].append(e.amount0)
        out["amount1"].append(e.amount1)
        out["reserve0"].append(e.reserves.asset0 if e.reserves else None)
        out["reserve1"].append(e.reserves.asset1 if e.reserves else None)
    return out

def events_to_table(events: Iterable[Event]) -> pa.Table:
    cols = events_to_columns(events)
    arrays = {k: pa.array(v, type=EVENT_SCHEMA.field(k).type) for k, v in cols.items()}
    return pa.Table.from_pydict(arrays, schema=EVENT_SCHEMA).sort_by([
        ("block_number", "ascending"),
        ("event_index", "ascending"),
    ])
