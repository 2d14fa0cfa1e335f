from __future__ import annotations

import threading
import time
from decimal import Decimal

import pytest

from book_core.errors import DesynchronizationExceeded, FeedUnavailable
from book_core.sync_engine import ReconciliationController, SyncConfig, SyncState
from tests._messages import ScriptedFeed, delta, snap


def _config(**kw) -> SyncConfig:
    kw.setdefault("resync_backoff_s", 0.0)
    return SyncConfig(**kw)


def test_gap_resyncs_once_and_serves_new_snapshot():
    feed = ScriptedFeed(
        [
            [snap(50, bids=[("new", 100, 1)], asks=[("new", 101, 1)]), delta(40, 41, bids=[("new", 100.5, 1)])],
            [snap(60, bids=[("new", 98, 2)], asks=[("new", 99, 3)]), delta(60, 61, asks=[("change", 99, 4)])],
        ]
    )
    seen_during_resync = []

    def on_resync(reason):
        seen_during_resync.append((reason, eng.current_best()))

    eng = ReconciliationController(
        feed, "ETH-PERPETUAL", config=_config(stop_on_stream_end=True), on_resync=on_resync
    )
    eng.run()

    assert len(seen_during_resync) == 1
    reason, best = seen_during_resync[0]
    assert "prev=40" in reason
    assert best == (None, None)

    assert feed.subscribes == 2
    assert eng.state is SyncState.LIVE
    assert eng.last_sequence == 61
    bid, ask = eng.current_best()
    assert (bid.price, ask.price, ask.quantity) == (Decimal("98"), Decimal("99"), Decimal("4"))


def test_feed_unavailable_is_retried():
    feed = ScriptedFeed(
        [
            FeedUnavailable("connect refused"),
            [snap(10, bids=[("new", 1, 1)]), FeedUnavailable("connection reset")],
            [snap(20, bids=[("new", 2, 1)])],
        ]
    )
    reasons = []
    eng = ReconciliationController(
        feed, "ETH-PERPETUAL", config=_config(stop_on_stream_end=True), on_resync=reasons.append
    )

    eng.run()

    assert feed.subscribes == 3
    assert eng.resync_count == 2
    assert all(r.startswith("feed_unavailable") for r in reasons)
    assert eng.last_sequence == 20


def test_persistent_feed_failure_exhausts_budget():
    class DownFeed:
        subscribes = 0

        def subscribe(self, instrument):
            self.subscribes += 1
            raise FeedUnavailable("exchange down")

    feed = DownFeed()
    eng = ReconciliationController(feed, "ETH-PERPETUAL", config=_config(max_consecutive_resyncs=3))

    with pytest.raises(DesynchronizationExceeded) as excinfo:
        eng.run()

    assert feed.subscribes == 4
    assert excinfo.value.resyncs == 4
    assert "exchange down" in excinfo.value.reason


def test_stream_end_counts_as_feed_failure():
    feed = ScriptedFeed([[snap(10)], [snap(20)]])
    eng = ReconciliationController(feed, "ETH-PERPETUAL", config=_config(max_consecutive_resyncs=1))

    with pytest.raises(DesynchronizationExceeded):
        eng.run()

    assert feed.subscribes == 2
    assert eng.last_resync_reason == "feed_unavailable: stream ended"


def test_repeated_gaps_do_not_grow_the_stack():
    streams = [[snap(10 * i), delta(0, 1)] for i in range(1, 400)]
    feed = ScriptedFeed(streams)
    eng = ReconciliationController(
        feed, "ETH-PERPETUAL", config=_config(max_consecutive_resyncs=1000, stop_on_stream_end=True)
    )

    eng.run()

    assert eng.resync_count == 399
    assert feed.subscribes == 400


def test_stop_from_resync_hook_prevents_resubscribe():
    feed = ScriptedFeed([[snap(10), delta(3, 4)], [snap(20)]])
    eng = ReconciliationController(feed, "ETH-PERPETUAL", config=_config())
    eng.on_resync = lambda reason: eng.stop()

    eng.run()

    assert feed.subscribes == 1
    assert eng.stopped
    assert eng.state is SyncState.RESYNCING


def test_stop_completes_in_flight_message_only():
    class OneShotFeed:
        closed = False

        def subscribe(self, instrument):
            return self._stream()

        def _stream(self):
            try:
                yield snap(10)
                yield delta(10, 11)
                eng.stop()
                yield delta(11, 12)
                yield delta(12, 13)
            finally:
                OneShotFeed.closed = True

    eng = ReconciliationController(OneShotFeed(), "ETH-PERPETUAL", config=_config())
    eng.run()

    assert eng.last_sequence == 11
    assert OneShotFeed.closed


def test_stop_from_another_thread_while_feed_is_idle():
    class IdleFeed:
        def subscribe(self, instrument):
            return self._stream()

        def _stream(self):
            yield snap(10, bids=[("new", 100, 1)])
            while True:
                time.sleep(0.001)
                yield None

    eng = ReconciliationController(IdleFeed(), "ETH-PERPETUAL", config=_config())
    worker = threading.Thread(target=eng.run, daemon=True)
    worker.start()

    deadline = time.monotonic() + 5.0
    while not eng.is_live and time.monotonic() < deadline:
        time.sleep(0.005)
    assert eng.current_best()[0].price == Decimal("100")

    eng.stop()
    worker.join(timeout=5.0)
    assert not worker.is_alive()
