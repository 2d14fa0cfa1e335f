from __future__ import annotations

from decimal import Decimal

import pytest

from book_core.errors import DecodeError, SequenceGap
from book_core.local_orderbook import OrderBook
from book_core.types import Side
from tests._messages import delta, snap


def _book_at_10() -> OrderBook:
    return OrderBook.from_snapshot(
        snap(10, bids=[("new", 100, 1), ("new", 99, 2)], asks=[("new", 101, 1), ("new", 102, 3)])
    )


def test_snapshot_replaces_both_sides():
    book = _book_at_10()
    book.apply_snapshot(snap(20, bids=[("new", 50, 1)], asks=[("new", 60, 1)]))

    assert book.last_sequence == 20
    assert [lv.price for lv in book.depth(Side.BID)] == [Decimal("50")]
    assert [lv.price for lv in book.depth(Side.ASK)] == [Decimal("60")]


def test_snapshot_later_entry_for_same_price_wins():
    book = OrderBook.from_snapshot(snap(1, bids=[("new", 100, 1), ("change", 100, 4)], asks=[]))
    assert book.best_bid().quantity == Decimal("4")

    book = OrderBook.from_snapshot(snap(1, bids=[("new", 100, 1), ("delete", 100, 0)], asks=[]))
    assert book.best_bid() is None


def test_chained_delta_is_applied_and_advances_sequence():
    book = _book_at_10()
    book.apply_delta(delta(10, 11, bids=[("new", 100.5, 2)], asks=[("delete", 101, 0)]))

    assert book.last_sequence == 11
    assert book.best_bid().price == Decimal("100.5")
    assert book.best_ask().price == Decimal("102")


def test_mismatched_prev_sequence_rejected_without_mutation():
    book = _book_at_10()
    before = book.copy()

    for prev in (9, 11, 40):
        with pytest.raises(SequenceGap) as excinfo:
            book.apply_delta(delta(prev, prev + 1, bids=[("new", 105, 1)], asks=[("delete", 101, 0)]))
        assert excinfo.value.expected == 10
        assert excinfo.value.got == prev

    assert book.last_sequence == 10
    assert book.bids == before.bids
    assert book.asks == before.asks


def test_out_of_order_deltas_only_succeed_in_causal_order():
    d1 = delta(10, 11, bids=[("new", 100.5, 1)])
    d2 = delta(11, 12, asks=[("new", 100.75, 1)])

    reordered = _book_at_10()
    with pytest.raises(SequenceGap):
        reordered.apply_delta(d2)
    assert reordered.last_sequence == 10
    assert reordered.best_ask().price == Decimal("101")

    ordered = _book_at_10()
    ordered.apply_delta(d1)
    ordered.apply_delta(d2)
    assert ordered.last_sequence == 12
    assert ordered.best_ask().price == Decimal("100.75")


def test_delta_on_empty_book_is_a_gap():
    with pytest.raises(SequenceGap):
        OrderBook().apply_delta(delta(0, 1, bids=[("new", 1, 1)]))


def test_delta_applies_repeated_price_in_list_order():
    book = _book_at_10()
    book.apply_delta(delta(10, 11, bids=[("change", 100, 5), ("delete", 100, 0), ("new", 100, 8)]))
    assert book.bids.get(100) == Decimal("8")


def test_crossed_book_detected():
    book = _book_at_10()
    assert not book.is_crossed()
    book.apply_delta(delta(10, 11, bids=[("new", 101.5, 1)]))
    assert book.is_crossed()


def test_invalid_level_rejects_whole_delta_without_mutation():
    book = _book_at_10()
    before = book.copy()

    with pytest.raises(DecodeError):
        book.apply_delta(delta(10, 11, bids=[("new", 100.5, 1)], asks=[("new", 101, -1)]))

    assert book.last_sequence == 10
    assert book.bids == before.bids
    assert book.asks == before.asks


def test_invalid_snapshot_level_keeps_previous_book():
    book = _book_at_10()

    with pytest.raises(DecodeError):
        book.apply_snapshot(snap(20, bids=[("new", 50, 1)], asks=[("new", "NaN", 1)]))

    assert book.last_sequence == 10
    assert book.best_bid().price == Decimal("100")
