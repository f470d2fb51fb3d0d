from __future__ import annotations

from typing import Protocol
from ..domain.models import (
    AssetHolder, AssetInfo, EpochPage, ExchangeInfo, HeadSnapshot, PairInfo,
    StatusSnapshot, TransactionRecord,
)


class TickRPC(Protocol):
    """Port for the tick ledger's upstream API.

    Implementations return normalized domain types only and raise
    UpstreamUnavailable for every failure they do not recover from.
    """

    async def latest_tick(self) -> HeadSnapshot:
        """Return the absolute latest tick number."""

    async def status(self) -> StatusSnapshot:
        """Return the current epoch (and last processed tick when known)."""

    async def epoch_ticks(self, epoch: int, page: int, page_size: int) -> EpochPage:
        """Return one page of the epoch's tick listing; an empty page is not an error."""

    async def tick_transactions(self, tick_number: int) -> list[TransactionRecord]:
        """Return every transaction recorded in the tick."""

    async def probe_transactions(self, tick_number: int) -> None:
        """Lightweight existence check of the tick's transaction endpoint (page 0, size 1)."""

    async def asset(self, asset_id: str) -> AssetInfo | None: ...

    async def asset_holders(self, asset_id: str, page: int = 0, page_size: int = 10) -> tuple[list[AssetHolder], int]: ...

    async def exchange(self, exchange_id: str) -> ExchangeInfo | None: ...

    async def pair(self, pair_id: str) -> PairInfo | None: ...
