from __future__ import annotations

from decimal import Decimal
from itertools import islice
from typing import Iterator, List, Optional

from sortedcontainers import SortedDict

from .types import LevelStatus, LevelUpdate, PriceLevel, Side, to_decimal


class PriceLevelMap:
    """Aggregated levels for one side of the book, keyed by price ascending.

    Zero quantities are never stored: an upsert with quantity 0 removes the
    level. The "best" level is the highest price for bids and the lowest for
    asks.
    """

    def __init__(self, side: Side) -> None:
        self.side = Side(side)
        self._levels: SortedDict = SortedDict()

    def upsert(self, price, quantity) -> None:
        px = to_decimal(price)
        qty = to_decimal(quantity)
        if qty < 0:
            raise ValueError(f"quantity must be non-negative (got {quantity!r} at {price!r})")
        if qty == 0:
            self._levels.pop(px, None)
        else:
            self._levels[px] = qty

    def remove(self, price) -> None:
        # Deletes for levels already gone are expected from coalescing feeds.
        self._levels.pop(to_decimal(price), None)

    def apply(self, update: LevelUpdate) -> None:
        if update.status is LevelStatus.DELETE:
            self.remove(update.price)
        else:
            self.upsert(update.price, update.quantity)

    def best(self) -> Optional[PriceLevel]:
        if not self._levels:
            return None
        idx = -1 if self.side is Side.BID else 0
        price, qty = self._levels.peekitem(idx)
        return PriceLevel(price, qty)

    def _iter_best_first(self) -> Iterator[PriceLevel]:
        items = reversed(self._levels.items()) if self.side is Side.BID else iter(self._levels.items())
        for price, qty in items:
            yield PriceLevel(price, qty)

    def depth(self, limit: Optional[int] = None) -> List[PriceLevel]:
        if limit is None:
            return list(self._iter_best_first())
        if limit <= 0:
            return []
        return list(islice(self._iter_best_first(), limit))

    def get(self, price) -> Optional[Decimal]:
        return self._levels.get(to_decimal(price))

    def clear(self) -> None:
        self._levels.clear()

    def copy(self) -> "PriceLevelMap":
        out = PriceLevelMap(self.side)
        out._levels = self._levels.copy()
        return out

    def __len__(self) -> int:
        return len(self._levels)

    def __contains__(self, price) -> bool:
        return to_decimal(price) in self._levels

    def __eq__(self, other) -> bool:
        if not isinstance(other, PriceLevelMap):
            return NotImplemented
        return self.side is other.side and dict(self._levels) == dict(other._levels)

    def __repr__(self) -> str:
        return f"PriceLevelMap(side={self.side.value}, levels={len(self._levels)})"
