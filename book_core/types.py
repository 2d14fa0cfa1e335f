from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


class LevelStatus(str, Enum):
    NEW = "new"
    CHANGE = "change"
    DELETE = "delete"


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class PriceLevel:
    price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class LevelUpdate:
    """One instruction against one side of the book."""

    status: LevelStatus
    price: Decimal
    quantity: Decimal = Decimal(0)

    @classmethod
    def create(cls, status, price, quantity=0) -> "LevelUpdate":
        if not isinstance(status, LevelStatus):
            status = LevelStatus(str(status).lower())
        return cls(status, to_decimal(price), to_decimal(quantity))


@dataclass(frozen=True)
class Snapshot:
    sequence: int
    bids: Tuple[LevelUpdate, ...] = field(default_factory=tuple)
    asks: Tuple[LevelUpdate, ...] = field(default_factory=tuple)
    instrument: Optional[str] = None
    timestamp_ms: Optional[int] = None


@dataclass(frozen=True)
class Delta:
    prev_sequence: int
    sequence: int
    bids: Tuple[LevelUpdate, ...] = field(default_factory=tuple)
    asks: Tuple[LevelUpdate, ...] = field(default_factory=tuple)
    instrument: Optional[str] = None
    timestamp_ms: Optional[int] = None


BookMessage = Union[Snapshot, Delta]
