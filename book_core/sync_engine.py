from __future__ import annotations

import logging
import random
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Iterable, List, Optional, Protocol, Tuple

from .errors import DecodeError, DesynchronizationExceeded, FeedUnavailable, SequenceGap
from .local_orderbook import OrderBook
from .types import BookMessage, Delta, PriceLevel, Side, Snapshot

log = logging.getLogger("book_core.sync")


class SyncState(str, Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_SNAPSHOT = "awaiting_snapshot"
    LIVE = "live"
    RESYNCING = "resyncing"


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    FAIL_FAST = "fail_fast"


@dataclass
class SyncResult:
    action: str  # "ignored" | "skipped" | "buffered" | "discarded" | "synced" | "applied" | "gap"
    details: str = ""


@dataclass(frozen=True)
class SyncConfig:
    max_consecutive_resyncs: int = 5
    # deltas a LIVE period must apply before the resync budget is restored
    stable_after_deltas: int = 10
    buffer_pending_deltas: bool = True
    max_buffer_size: int = 10_000
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    resync_backoff_s: float = 0.5
    resync_backoff_max_s: float = 10.0
    stop_on_stream_end: bool = False

    def __post_init__(self) -> None:
        if self.max_consecutive_resyncs < 0:
            raise ValueError("max_consecutive_resyncs must be >= 0")
        if self.max_buffer_size < 1:
            raise ValueError("max_buffer_size must be >= 1")
        if self.stable_after_deltas < 1:
            raise ValueError("stable_after_deltas must be >= 1")
        object.__setattr__(self, "overflow_policy", OverflowPolicy(self.overflow_policy))
        object.__setattr__(self, "resync_backoff_s", max(0.0, float(self.resync_backoff_s)))
        object.__setattr__(
            self, "resync_backoff_max_s", max(self.resync_backoff_s, float(self.resync_backoff_max_s))
        )


class FeedSource(Protocol):
    def subscribe(self, instrument: str) -> Iterable[Any]:
        """Return a fresh, lazy stream of raw messages starting with a snapshot.

        Streams may yield None as an idle tick so the consumer can observe stop
        requests while the feed is quiet.
        """
        ...


def passthrough_decoder(raw: Any) -> Optional[BookMessage]:
    if raw is None or isinstance(raw, (Snapshot, Delta)):
        return raw
    raise DecodeError(f"unsupported message type {type(raw).__name__}")


def _close_stream(stream: Any) -> None:
    close = getattr(stream, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception:
        log.exception("Failed to close feed stream")


class ReconciliationController:
    """Keeps one OrderBook consistent with a snapshot + delta feed.

    `feed_message` is the I/O-free state machine step and can be driven
    directly (tests, replay). `run` owns the subscribe/consume/resync loop:

      - buffer (or discard) deltas until a snapshot arrives
      - apply deltas strictly chained on prev_sequence once LIVE
      - on a gap, discard the book, fire on_resync and resubscribe
      - give up with DesynchronizationExceeded after too many consecutive resyncs

    Reads (`current_best`, `current_depth`, `book_copy`) and applies share one
    lock, so a reader in another thread never sees a half-applied message.
    """

    def __init__(
        self,
        feed: FeedSource,
        instrument: str,
        *,
        decoder: Optional[Callable[[Any], Optional[BookMessage]]] = None,
        config: Optional[SyncConfig] = None,
        on_resync: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.feed = feed
        self.instrument = instrument
        self.decoder = decoder or passthrough_decoder
        self.config = config or SyncConfig()
        self.on_resync = on_resync

        self.book: Optional[OrderBook] = None
        self.state = SyncState.UNINITIALIZED
        self.buffer: Deque[Delta] = deque()

        self.resync_count = 0
        self.consecutive_resyncs = 0
        self.snapshots_applied = 0
        self.deltas_applied = 0
        self.decode_errors = 0
        self.buffer_dropped = 0
        self.last_resync_reason: Optional[str] = None

        self._live_deltas = 0
        self._crossed = False
        self._lock = threading.RLock()
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # consumer interface

    @property
    def is_live(self) -> bool:
        return self.state is SyncState.LIVE

    @property
    def last_sequence(self) -> Optional[int]:
        with self._lock:
            return None if self.book is None else self.book.last_sequence

    def current_best(self) -> Tuple[Optional[PriceLevel], Optional[PriceLevel]]:
        with self._lock:
            if self.book is None or self.state is not SyncState.LIVE:
                return None, None
            return self.book.best_bid(), self.book.best_ask()

    def current_depth(self, side: Side | str, limit: Optional[int] = None) -> List[PriceLevel]:
        with self._lock:
            if self.book is None or self.state is not SyncState.LIVE:
                return []
            return self.book.depth(side, limit)

    def book_copy(self) -> Optional[OrderBook]:
        with self._lock:
            if self.book is None or self.state is not SyncState.LIVE:
                return None
            return self.book.copy()

    # ------------------------------------------------------------------
    # state machine

    def begin_sync(self) -> None:
        if self.state is SyncState.UNINITIALIZED:
            self.state = SyncState.AWAITING_SNAPSHOT
            log.info("Awaiting snapshot for %s", self.instrument)

    def feed_message(self, raw: Any) -> SyncResult:
        """Decode and apply one raw feed message."""
        if self.state is SyncState.UNINITIALIZED:
            raise RuntimeError("begin_sync() must be called before feeding messages")

        try:
            msg = self.decoder(raw)
        except DecodeError as exc:
            return self._skip_invalid(exc)

        if msg is None:
            return SyncResult("ignored", "control_message")

        if not isinstance(msg, (Snapshot, Delta)):
            self.decode_errors += 1
            log.warning("Decoder returned unsupported %s; skipping", type(msg).__name__)
            return SyncResult("skipped", f"decode_error: unsupported {type(msg).__name__}")

        if msg.instrument is not None and msg.instrument != self.instrument:
            log.warning("Ignoring message for %s (engine tracks %s)", msg.instrument, self.instrument)
            return SyncResult("ignored", f"instrument={msg.instrument}")

        try:
            if isinstance(msg, Snapshot):
                return self._on_snapshot(msg)
            return self._on_delta(msg)
        except DecodeError as exc:
            # invalid levels are rejected before the book is touched
            return self._skip_invalid(exc)

    def _skip_invalid(self, exc: DecodeError) -> SyncResult:
        self.decode_errors += 1
        log.warning("Skipping undecodable message: %s", exc)
        return SyncResult("skipped", f"decode_error: {exc}")

    def _on_snapshot(self, snap: Snapshot) -> SyncResult:
        book = OrderBook.from_snapshot(snap)
        with self._lock:
            if self.state is SyncState.LIVE:
                log.info("Snapshot received while live; replacing book at seq=%s", self.book.last_sequence)
            pending = list(self.buffer)
            self.buffer.clear()

            drained = 0
            stale = 0
            for delta in pending:
                if int(delta.sequence) <= book.last_sequence:
                    stale += 1
                    continue
                try:
                    book.apply_delta(delta)
                except (SequenceGap, DecodeError) as exc:
                    return self._enter_resync(f"buffered delta does not chain to snapshot: {exc}")
                drained += 1

            self.book = book
            self.state = SyncState.LIVE
            self.snapshots_applied += 1
            self.deltas_applied += drained
            self._live_deltas = drained
            self._check_stable()
            self._check_crossed()

        log.info(
            "Snapshot applied seq=%s bids=%d asks=%d drained=%d stale=%d",
            book.last_sequence,
            len(book.bids),
            len(book.asks),
            drained,
            stale,
        )
        return SyncResult("synced", f"last_sequence={book.last_sequence} drained={drained}")

    def _on_delta(self, delta: Delta) -> SyncResult:
        if self.state is not SyncState.LIVE:
            return self._buffer_delta(delta)

        with self._lock:
            try:
                self.book.apply_delta(delta)
            except SequenceGap as exc:
                return self._enter_resync(str(exc))
            self.deltas_applied += 1
            self._live_deltas += 1
            self._check_stable()
            self._check_crossed()
            seq = self.book.last_sequence
        return SyncResult("applied", f"last_sequence={seq}")

    def _buffer_delta(self, delta: Delta) -> SyncResult:
        # Cannot be validated until a snapshot exists; never applied to a stale book.
        if not self.config.buffer_pending_deltas:
            return SyncResult("discarded", "no_snapshot")

        if len(self.buffer) >= self.config.max_buffer_size:
            if self.config.overflow_policy is OverflowPolicy.FAIL_FAST:
                self.buffer.clear()
                return self._enter_resync("buffer_overflow")
            self.buffer.popleft()
            self.buffer_dropped += 1
            if self.buffer_dropped == 1 or self.buffer_dropped % 1000 == 0:
                log.warning("Pending delta buffer full (%d); dropped %d oldest", len(self.buffer), self.buffer_dropped)

        self.buffer.append(delta)
        return SyncResult("buffered", "no_snapshot")

    def _check_stable(self) -> None:
        if self.consecutive_resyncs and self._live_deltas >= self.config.stable_after_deltas:
            log.info("Book stable for %d deltas; resync budget restored", self._live_deltas)
            self.consecutive_resyncs = 0

    def _check_crossed(self) -> None:
        crossed = self.book.is_crossed()
        if crossed and not self._crossed:
            log.warning(
                "Crossed book at seq=%s bid=%s ask=%s",
                self.book.last_sequence,
                self.book.best_bid(),
                self.book.best_ask(),
            )
        self._crossed = crossed

    def _enter_resync(self, reason: str) -> SyncResult:
        """Discard local state; the next subscribe re-acquires a snapshot."""
        with self._lock:
            self.book = None
            self.buffer.clear()
            self.state = SyncState.RESYNCING
            self._live_deltas = 0
            self._crossed = False
            self.resync_count += 1
            self.consecutive_resyncs += 1
            self.last_resync_reason = reason
            consecutive = self.consecutive_resyncs

        log.warning("Resync #%d (%d consecutive): %s", self.resync_count, consecutive, reason)
        if consecutive > self.config.max_consecutive_resyncs:
            log.error("Resync budget exhausted after %d consecutive resyncs", consecutive)
            raise DesynchronizationExceeded(consecutive, reason)

        if self.on_resync is not None:
            try:
                self.on_resync(reason)
            except Exception:
                log.exception("on_resync callback failed")
        return SyncResult("gap", reason)

    # ------------------------------------------------------------------
    # consumption loop

    def stop(self) -> None:
        """Stop after the in-flight message; no further subscribe is issued."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _backoff_delay(self) -> float:
        base = self.config.resync_backoff_s
        cap = self.config.resync_backoff_max_s
        if base <= 0.0 or cap <= 0.0:
            return 0.0
        delay = min(cap, base * (2 ** max(0, self.consecutive_resyncs - 1)))
        return delay * (0.7 + 0.6 * random.random())

    def _run_session(self) -> bool:
        """Subscribe and consume one stream. Returns True when a resync is pending."""
        try:
            stream = self.feed.subscribe(self.instrument)
        except FeedUnavailable as exc:
            self._enter_resync(f"feed_unavailable: {exc}")
            return True

        try:
            for raw in stream:
                if self._stop.is_set():
                    return False
                result = self.feed_message(raw)
                if result.action == "gap":
                    return True
        except FeedUnavailable as exc:
            if self._stop.is_set():
                return False
            self._enter_resync(f"feed_unavailable: {exc}")
            return True
        finally:
            _close_stream(stream)

        if self._stop.is_set() or self.config.stop_on_stream_end:
            return False
        self._enter_resync("feed_unavailable: stream ended")
        return True

    def run(self) -> None:
        """Consume the feed until stop() or until the resync budget is exhausted.

        Raises DesynchronizationExceeded when the feed cannot be followed.
        """
        self.begin_sync()
        while not self._stop.is_set():
            if not self._run_session():
                break
            delay = self._backoff_delay()
            if delay > 0:
                log.info("Resubscribing to %s in %.2fs", self.instrument, delay)
                if self._stop.wait(delay):
                    break
        log.info("Sync loop stopped for %s (state=%s)", self.instrument, self.state.value)
