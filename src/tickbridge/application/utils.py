import time
from typing import Iterable

from ..domain.models import Tick


def now_ms() -> int:
    return int(time.time() * 1000)


def closest(ticks: Iterable[Tick], target: int) -> Tick | None:
    # ties go to the older tick
    return min(ticks, key=lambda t: (abs(t.number - target), t.number), default=None)


def closer(a: Tick | None, b: Tick | None, target: int) -> Tick | None:
    if a is None or b is None:
        return a or b
    return closest((a, b), target)
