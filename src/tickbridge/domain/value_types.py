from __future__ import annotations
from typing import NewType, Literal

TickNumber = NewType("TickNumber", int)   # ledger position, >= 0
EpochId    = NewType("EpochId", int)      # weekly grouping of ticks, >= 0
EventType  = Literal["creation", "swap", "join", "exit"]
MatchKind  = Literal["exact", "nearest", "placeholder"]
