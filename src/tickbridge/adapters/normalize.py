"""Upstream payload -> domain type conversion.

Every response the adapter receives passes through here once, so nothing past
the adapter boundary has to guess between ``tickNumber`` and ``number`` or
between flat and nested transaction records.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from ..domain.decoding import fee_bps, format_amount
from ..domain.models import (
    AssetHolder, AssetInfo, EpochPage, ExchangeInfo, HeadSnapshot, PairInfo,
    StatusSnapshot, Tick, TransactionRecord,
)
from ..domain.value_types import EpochId, TickNumber

_SECONDS_CUTOFF = 100_000_000_000  # below this an epoch timestamp is in seconds
_AMOUNT_KEYS = ("amount0In", "amount1In", "amount0Out", "amount1Out", "amount0", "amount1")


class PayloadError(ValueError):
    """Upstream returned JSON that doesn't have the expected shape."""


def _as_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        return int(v)
    if isinstance(v, str):
        s = v.strip()
        if s.lstrip("-").isdigit():
            return int(s)
    return None

def parse_timestamp_ms(v: Any) -> int | None:
    """Accepts epoch seconds, epoch millis (int or digit string) and ISO-8601 strings."""
    n = _as_int(v)
    if n is not None:
        return n * 1000 if abs(n) < _SECONDS_CUTOFF else n
    if isinstance(v, str) and v.strip():
        s = v.strip().replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    return None

def tick_number_of(raw: Mapping[str, Any]) -> int | None:
    n = _as_int(raw.get("tickNumber"))
    return n if n is not None else _as_int(raw.get("number"))

# ---------------------------- ticks & epochs ----------------------------------

def to_tick(raw: Mapping[str, Any], epoch_id: int | None = None) -> Tick | None:
    number = tick_number_of(raw)
    if number is None or number < 0:
        return None
    ep = _as_int(raw.get("epoch"))
    if ep is None:
        ep = epoch_id
    return Tick(
        number=TickNumber(number),
        timestamp_ms=parse_timestamp_ms(raw.get("timestamp")) or 0,   # 0 = unknown
        epoch_id=EpochId(ep) if ep is not None else None,
        is_empty=bool(raw.get("isEmpty", False)),
        raw=dict(raw),
    )

def to_epoch_page(payload: Any, epoch: int, page: int, page_size: int) -> EpochPage:
    if not isinstance(payload, Mapping):
        raise PayloadError(f"epoch {epoch} page {page}: expected an object, got {type(payload).__name__}")
    items = payload.get("ticks") or []
    if not isinstance(items, list):
        raise PayloadError(f"epoch {epoch} page {page}: 'ticks' is not a list")
    ticks = tuple(t for t in (to_tick(it, epoch) for it in items if isinstance(it, Mapping)) if t is not None)
    pg = payload.get("pagination") if isinstance(payload.get("pagination"), Mapping) else {}
    return EpochPage(
        epoch_id=EpochId(epoch),
        page=page,
        page_size=page_size,
        ticks=ticks,
        total_pages=_as_int(pg.get("totalPages")),
        total_records=_as_int(pg.get("totalRecords")),
    )

def to_head(payload: Any) -> HeadSnapshot:
    n = _as_int(payload.get("latestTick")) if isinstance(payload, Mapping) else None
    if n is None:
        raise PayloadError("latest tick response carries no 'latestTick'")
    return HeadSnapshot(latest_tick=n)

def to_status(payload: Any) -> StatusSnapshot:
    if not isinstance(payload, Mapping):
        raise PayloadError("status response is not an object")
    last = payload.get("lastProcessedTick") if isinstance(payload.get("lastProcessedTick"), Mapping) else {}
    epoch = _as_int(last.get("epoch"))
    if epoch is None:
        epoch = _as_int(payload.get("epoch"))
    if epoch is None:
        raise PayloadError("status response carries no epoch")
    return StatusSnapshot(epoch_id=EpochId(epoch), last_tick=tick_number_of(last))

# ---------------------------- transactions ------------------------------------

def to_transaction(entry: Mapping[str, Any], tick_number: int, position: int) -> TransactionRecord:
    body: dict[str, Any] = {k: v for k, v in entry.items() if k != "transaction"}
    nested = entry.get("transaction")
    if isinstance(nested, Mapping):
        body.update(nested)
    idx = _as_int(body.get("index"))
    tx_id = body.get("id") or body.get("txId") or body.get("hash") or f"{tick_number}:{position}"
    reserves = body.get("reserves")
    return TransactionRecord(
        tick_number=TickNumber(tick_number),
        index=idx if idx is not None else position,
        tx_id=str(tx_id),
        tx_type=str(body["type"]) if body.get("type") else None,
        maker=str(body.get("sender") or body.get("from") or body.get("sourceId") or "unknown"),
        pair_id=str(body.get("pairId") or "unknown"),
        event_index=_as_int(body.get("eventIndex")),
        amounts={k: body[k] for k in _AMOUNT_KEYS if k in body},
        reserves=dict(reserves) if isinstance(reserves, Mapping) else None,
        raw=dict(entry),
    )

def to_transactions(payload: Any, tick_number: int) -> list[TransactionRecord]:
    if not isinstance(payload, Mapping):
        raise PayloadError(f"tick {tick_number}: transactions response is not an object")
    items = payload.get("transactions") or []
    if not isinstance(items, list):
        raise PayloadError(f"tick {tick_number}: 'transactions' is not a list")
    return [to_transaction(it, tick_number, i) for i, it in enumerate(items) if isinstance(it, Mapping)]

# ---------------------------- auxiliary lookups -------------------------------

def to_asset(payload: Any) -> AssetInfo | None:
    if not isinstance(payload, Mapping) or not payload.get("id"):
        return None
    aid = str(payload["id"])
    return AssetInfo(
        id=aid,
        name=str(payload.get("name") or f"Asset {aid[:8]}"),
        symbol=str(payload.get("symbol") or aid[:4].upper()),
        total_supply=str(payload.get("totalSupply") or "0"),
        circulating_supply=str(payload.get("circulatingSupply") or "0"),
        holders_count=_as_int(payload.get("holdersCount")) or 0,
    )

def to_holders(payload: Any) -> tuple[list[AssetHolder], int] | None:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("holders"), list):
        return None
    holders = [
        AssetHolder(address=str(h.get("address", "")), quantity=format_amount(h.get("balance", h.get("quantity", 0))))
        for h in payload["holders"] if isinstance(h, Mapping)
    ]
    total = _as_int(payload.get("totalCount"))
    return holders, total if total is not None else len(holders)

def to_exchange(payload: Any) -> ExchangeInfo | None:
    if not isinstance(payload, Mapping) or not payload.get("factoryAddress"):
        return None
    return ExchangeInfo(
        factory_address=str(payload["factoryAddress"]),
        name=str(payload.get("name") or "Qubic DEX"),
        logo_url=str(payload.get("logoURL") or ""),
    )

def to_pair(payload: Any) -> PairInfo | None:
    if not isinstance(payload, Mapping) or not payload.get("id"):
        return None
    created = _as_int(payload.get("createdAtTickNumber"))
    if created is None:
        created = _as_int(payload.get("createdAtBlockNumber"))
    return PairInfo(
        id=str(payload["id"]),
        asset0_id=str(payload.get("token0") or payload.get("asset0Id") or ""),
        asset1_id=str(payload.get("token1") or payload.get("asset1Id") or ""),
        created_at_tick=created or 0,
        created_at_timestamp_ms=parse_timestamp_ms(payload.get("createdAtTimestamp")) or 0,
        created_at_tx_id=str(payload.get("createdAtTxId") or ""),
        factory_address=str(payload.get("factoryAddress") or ""),
        fee_bps=fee_bps(payload.get("fee")),
    )
