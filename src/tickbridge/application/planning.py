from __future__ import annotations
from typing import Iterator

def merge_intervals(intervals: list[tuple[int,int]]) -> list[tuple[int,int]]:
    if not intervals: return []
    intervals = sorted(intervals)
    merged: list[list[int]] = [[intervals[0][0], intervals[0][1]]]
    for s, e in intervals[1:]:
        ms, me = merged[-1]
        if s <= me + 1: merged[-1][1] = max(me, e)
        else: merged.append([s, e])
    return [(s, e) for s, e in merged]

def subtract_interval(iv: tuple[int,int], covered: list[tuple[int,int]]) -> list[tuple[int,int]]:
    """Parts of `iv` not covered by the merged, sorted `covered` list."""
    s, e = iv
    if s > e: return []
    if not covered: return [iv]
    res: list[tuple[int,int]] = []
    cur = s
    for cs, ce in covered:
        if ce < cur: continue
        if cs > e: break
        if cs > cur: res.append((cur, min(e, cs - 1)))
        cur = max(cur, ce + 1)
        if cur > e: break
    if cur <= e: res.append((cur, e))
    return res

def probe_order(head: int, *, forward: int = 1, lowest: int = 0) -> Iterator[int]:
    """head, head-1, head+1, head-2, head+2 ... ; forward side stops at head+forward."""
    yield head
    step = 1
    while head - step >= lowest or step <= forward:
        if head - step >= lowest: yield head - step
        if step <= forward: yield head + step
        step += 1

def estimate_logical_page(tick_number: int, page_size: int, epoch_min: int | None = None) -> int:
    # epoch-relative when the epoch's first tick is known, absolute otherwise
    if epoch_min is None:
        return max(0, tick_number // page_size)
    return max(0, (tick_number - epoch_min) // page_size)

def clamp_page(page: int, total_pages: int | None) -> int:
    page = max(0, page)
    if total_pages is not None and total_pages > 0:
        page = min(page, total_pages - 1)
    return page
