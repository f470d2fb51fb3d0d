from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Mapping
from .errors import PartiallyDegraded
from .value_types import EpochId, EventType, MatchKind, TickNumber

@dataclass(slots=True, frozen=True)
class Tick:
    number: TickNumber
    timestamp_ms: int
    epoch_id: EpochId | None
    is_empty: bool = False
    verified: bool = True           # False only for placeholders, never a real chain tick
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

@dataclass(slots=True, frozen=True)
class EpochPage:
    epoch_id: EpochId
    page: int
    page_size: int
    ticks: tuple[Tick, ...]
    total_pages: int | None = None
    total_records: int | None = None

    def bounds(self) -> tuple[int, int] | None:
        if not self.ticks: return None
        nums = [t.number for t in self.ticks]
        return min(nums), max(nums)

    def descending(self) -> bool | None:
        """Listing order as served upstream, None when one tick can't tell."""
        if len(self.ticks) < 2: return None
        return self.ticks[0].number > self.ticks[-1].number

@dataclass(slots=True, frozen=True)
class EpochRange:
    epoch_id: EpochId
    min_tick_seen: int
    max_tick_seen: int

    def contains(self, tick_number: int) -> bool:
        return self.min_tick_seen <= tick_number <= self.max_tick_seen

    def overlaps(self, start: int, end: int) -> bool:
        return self.min_tick_seen <= end and start <= self.max_tick_seen

    def widen(self, lo: int, hi: int) -> "EpochRange":
        # observed bounds only ever grow
        return replace(self, min_tick_seen=min(self.min_tick_seen, lo), max_tick_seen=max(self.max_tick_seen, hi))

@dataclass(slots=True, frozen=True)
class EpochLayout:
    """Pagination shape of one epoch listing, learned by probing its first and last page."""
    epoch_id: EpochId
    total_pages: int | None
    descending: bool
    range: EpochRange | None

    @property
    def mappable(self) -> bool:
        return not self.descending or self.total_pages is not None

    def physical(self, logical: int) -> int:
        """Map a logical page (ascending tick order) to the page index upstream serves."""
        if not self.descending: return logical
        if self.total_pages is None:
            raise ValueError(f"epoch {self.epoch_id}: descending listing with unknown page count")
        return self.total_pages - 1 - logical

@dataclass(slots=True, frozen=True)
class Reserves:
    asset0: str
    asset1: str

@dataclass(slots=True, frozen=True)
class TransactionRecord:
    tick_number: TickNumber
    index: int
    tx_id: str
    tx_type: str | None
    maker: str
    pair_id: str
    event_index: int | None = None
    amounts: Mapping[str, Any] = field(default_factory=dict)
    reserves: Mapping[str, Any] | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

@dataclass(slots=True, frozen=True)
class Event:
    block_number: int
    block_timestamp_ms: int
    txn_id: str
    txn_index: int
    event_index: int
    maker: str
    pair_id: str
    event_type: EventType
    asset0_in: str | None = None     # swap only
    asset1_in: str | None = None
    asset0_out: str | None = None
    asset1_out: str | None = None
    amount0: str | None = None       # join / exit only
    amount1: str | None = None
    reserves: Reserves | None = None

    def sort_key(self) -> tuple[int, int]:
        return self.block_number, self.event_index

@dataclass(slots=True, frozen=True)
class TickMatch:
    requested: int
    tick: Tick
    kind: MatchKind

    def degradation(self) -> PartiallyDegraded | None:
        if self.kind == "exact": return None
        return PartiallyDegraded(f"tick {self.requested} resolved as {self.kind} tick {self.tick.number}")

@dataclass(slots=True, frozen=True)
class RangeResult:
    start: int
    end: int
    ticks: tuple[Tick, ...]
    epochs: tuple[int, ...] = ()
    pages_fetched: int = 0
    pages_failed: int = 0

@dataclass(slots=True, frozen=True)
class HeadSnapshot:
    latest_tick: int

@dataclass(slots=True, frozen=True)
class StatusSnapshot:
    epoch_id: EpochId
    last_tick: int | None = None

# ---- auxiliary lookups (asset / exchange / pair) -----------------------------

@dataclass(slots=True, frozen=True)
class AssetInfo:
    id: str
    name: str
    symbol: str
    total_supply: str
    circulating_supply: str
    holders_count: int

@dataclass(slots=True, frozen=True)
class AssetHolder:
    address: str
    quantity: str

@dataclass(slots=True, frozen=True)
class ExchangeInfo:
    factory_address: str
    name: str
    logo_url: str

@dataclass(slots=True, frozen=True)
class PairInfo:
    id: str
    asset0_id: str
    asset1_id: str
    created_at_tick: int
    created_at_timestamp_ms: int
    created_at_tx_id: str
    factory_address: str
    fee_bps: int
