from __future__ import annotations

import sys
from datetime import datetime
from typing import Optional, TextIO

from book_core.sync_engine import ReconciliationController
from book_core.types import PriceLevel

CLEAR_SCREEN = "\033[2J\033[H"


def _fmt_level(label: str, level: Optional[PriceLevel]) -> str:
    if level is None:
        return f"{label}\t-\t\t-"
    return f"{label}\t{level.price}\t\t{level.quantity}"


def format_top_of_book(
    instrument: str,
    bid: Optional[PriceLevel],
    ask: Optional[PriceLevel],
    *,
    now: datetime,
    last_sequence: Optional[int] = None,
    stale_reason: Optional[str] = None,
) -> str:
    lines = [
        "",
        f"Symbol  : {instrument}",
        f"Time    : {now.strftime('%a %b %d %H:%M:%S %Y')}",
    ]
    if stale_reason is not None:
        lines.append(f"Status  : STALE (resyncing: {stale_reason})")
    elif last_sequence is not None:
        lines.append(f"Seq     : {last_sequence}")
    lines += [
        "",
        "\tPrice \t\tQuantity",
        _fmt_level("BestBid", bid),
        _fmt_level("BestAsk", ask),
    ]
    return "\n".join(lines)


class TopOfBookRenderer:
    """Periodic terminal view of the best bid/ask; doubles as the on_resync hook."""

    def __init__(self, controller: ReconciliationController, out: TextIO | None = None, clear: bool = True) -> None:
        self.controller = controller
        self.out = out or sys.stdout
        self.clear = clear
        self.stale_reason: Optional[str] = None

    def mark_stale(self, reason: str) -> None:
        self.stale_reason = reason

    def render(self, now: Optional[datetime] = None) -> str:
        bid, ask = self.controller.current_best()
        if self.controller.is_live:
            self.stale_reason = None
        elif self.stale_reason is None:
            self.stale_reason = "awaiting snapshot"
        return format_top_of_book(
            self.controller.instrument,
            bid,
            ask,
            now=now or datetime.now().astimezone(),
            last_sequence=self.controller.last_sequence,
            stale_reason=self.stale_reason,
        )

    def draw(self) -> None:
        text = self.render()
        if self.clear:
            self.out.write(CLEAR_SCREEN)
        self.out.write(text + "\n")
        self.out.flush()
