from __future__ import annotations

from decimal import Decimal

from book_core.local_orderbook import OrderBook
from book_core.types import Side
from tests._messages import delta, snap


def _levels(book, side, limit):
    return [(lv.price, lv.quantity) for lv in book.depth(side, limit)]


def test_local_orderbook_depth_sorted():
    book = OrderBook.from_snapshot(
        snap(
            10,
            bids=[("new", "101", "1"), ("new", "100", "2")],
            asks=[("new", "103", "1"), ("new", "102", "1")],
        )
    )

    assert _levels(book, Side.BID, 1) == [(Decimal("101"), Decimal("1"))]
    assert _levels(book, Side.ASK, 1) == [(Decimal("102"), Decimal("1"))]

    # remove 101 bid, add 105 bid, remove 102 ask, add 101.5 ask
    book.apply_delta(
        delta(
            10,
            11,
            bids=[("new", "105", "1"), ("delete", "101", "0")],
            asks=[("change", "102", "0"), ("new", "101.5", "2")],
        )
    )

    assert _levels(book, Side.BID, 2) == [(Decimal("105"), Decimal("1")), (Decimal("100"), Decimal("2"))]
    assert _levels(book, Side.ASK, 2) == [(Decimal("101.5"), Decimal("2")), (Decimal("103"), Decimal("1"))]
    assert book.depth(Side.BID, 0) == []
