from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .errors import DecodeError, SequenceGap
from .price_levels import PriceLevelMap
from .types import Delta, LevelUpdate, PriceLevel, Side, Snapshot, to_decimal


@dataclass
class OrderBook:
    """In-memory L2 book: two price-level maps plus the last applied sequence."""

    bids: PriceLevelMap = field(default_factory=lambda: PriceLevelMap(Side.BID))
    asks: PriceLevelMap = field(default_factory=lambda: PriceLevelMap(Side.ASK))
    last_sequence: Optional[int] = None

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "OrderBook":
        book = cls()
        book.apply_snapshot(snapshot)
        return book

    @staticmethod
    def _apply_levels(side: PriceLevelMap, updates: Iterable[LevelUpdate]) -> None:
        # list order; a later update for the same price wins
        for update in updates:
            side.apply(update)

    @staticmethod
    def _check_levels(label: str, updates: Iterable[LevelUpdate]) -> None:
        for update in updates:
            try:
                price = to_decimal(update.price)
                qty = to_decimal(update.quantity)
            except (ValueError, ArithmeticError) as exc:
                raise DecodeError(f"{label}: invalid level {update!r}: {exc}") from exc
            if not price.is_finite() or not qty.is_finite() or price <= 0 or qty < 0:
                raise DecodeError(f"{label}: out-of-range level {update!r}")

    def apply_snapshot(self, snapshot: Snapshot) -> None:
        """Replace both sides. Raises DecodeError (book untouched) on an invalid level."""
        self._check_levels("bids", snapshot.bids)
        self._check_levels("asks", snapshot.asks)

        bids = PriceLevelMap(Side.BID)
        asks = PriceLevelMap(Side.ASK)
        self._apply_levels(bids, snapshot.bids)
        self._apply_levels(asks, snapshot.asks)

        self.bids = bids
        self.asks = asks
        self.last_sequence = int(snapshot.sequence)

    def apply_delta(self, delta: Delta) -> None:
        """Apply a delta chained to the current sequence.

        Raises SequenceGap (book untouched) when delta.prev_sequence does not
        match last_sequence, including when no snapshot was loaded yet, and
        DecodeError (book untouched) when any level on either side is invalid.
        """
        if self.last_sequence is None or int(delta.prev_sequence) != self.last_sequence:
            raise SequenceGap(self.last_sequence, int(delta.prev_sequence), int(delta.sequence))
        self._check_levels("bids", delta.bids)
        self._check_levels("asks", delta.asks)

        self._apply_levels(self.bids, delta.bids)
        self._apply_levels(self.asks, delta.asks)

        self.last_sequence = int(delta.sequence)

    def best_bid(self) -> Optional[PriceLevel]:
        return self.bids.best()

    def best_ask(self) -> Optional[PriceLevel]:
        return self.asks.best()

    def side(self, side: Side | str) -> PriceLevelMap:
        return self.bids if Side(side) is Side.BID else self.asks

    def depth(self, side: Side | str, limit: Optional[int] = None) -> List[PriceLevel]:
        return self.side(side).depth(limit)

    def is_crossed(self) -> bool:
        bid = self.bids.best()
        ask = self.asks.best()
        if bid is None or ask is None:
            return False
        return bid.price >= ask.price

    def copy(self) -> "OrderBook":
        return OrderBook(bids=self.bids.copy(), asks=self.asks.copy(), last_sequence=self.last_sequence)
