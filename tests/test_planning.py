from tickbridge.application.planning import (
    clamp_page, estimate_logical_page, merge_intervals, probe_order, subtract_interval,
)


def test_merge_joins_adjacent_and_overlapping():
    assert merge_intervals([(10, 20), (1, 5), (6, 8), (18, 30)]) == [(1, 8), (10, 30)]
    assert merge_intervals([]) == []


def test_subtract_reports_gaps():
    assert subtract_interval((1, 100), [(10, 20), (50, 60)]) == [(1, 9), (21, 49), (61, 100)]
    assert subtract_interval((10, 20), [(1, 100)]) == []
    assert subtract_interval((5, 4), []) == []


def test_probe_order_alternates_and_bounds_forward():
    assert list(probe_order(5, forward=1)) == [5, 4, 6, 3, 2, 1, 0]
    assert list(probe_order(1, forward=2)) == [1, 0, 2, 3]
    assert list(probe_order(0, forward=0)) == [0]


def test_page_estimate_is_epoch_relative():
    assert estimate_logical_page(21_180_040, 500, epoch_min=21_170_000) == 20
    assert estimate_logical_page(1234, 500) == 2
    assert estimate_logical_page(5, 500, epoch_min=10) == 0


def test_clamp_page():
    assert clamp_page(-3, 4) == 0
    assert clamp_page(9, 4) == 3
    assert clamp_page(9, None) == 9
