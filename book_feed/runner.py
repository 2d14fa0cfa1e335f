# book_feed/runner.py

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from book_core.errors import DesynchronizationExceeded
from book_core.sync_engine import OverflowPolicy, ReconciliationController
from book_feed import settings
from book_feed.deribit import decode_message
from book_feed.logging_config import setup_logging
from book_feed.render import TopOfBookRenderer
from book_feed.replay import RecordingFeed, ReplayFeed
from book_feed.ws_stream import DeribitWSFeed

log = logging.getLogger("book_feed.runner")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Maintain a local Deribit L2 book and show its top of book.")
    p.add_argument("--instrument", default=settings.INSTRUMENT)
    p.add_argument("--url", default=settings.DERIBIT_WS_URL)
    p.add_argument("--interval", default=settings.BOOK_INTERVAL, help="book channel interval, e.g. 100ms or raw")
    p.add_argument("--replay", nargs="+", default=None, help="replay recorded NDJSON(.gz) files instead of the live feed")
    p.add_argument("--record", default=None, help="append raw feed messages to this NDJSON(.gz) file")
    p.add_argument("--max-resyncs", type=int, default=None)
    p.add_argument("--buffer-policy", choices=[policy.value for policy in OverflowPolicy], default=None)
    p.add_argument("--render-interval", type=float, default=settings.RENDER_INTERVAL_S)
    p.add_argument("--no-render", action="store_true")
    p.add_argument("--log-level", default=settings.LOG_LEVEL)
    p.add_argument("--log-dir", default="logs")
    return p


def _log_status(typ: str, details: dict) -> None:
    level = logging.WARNING if typ in ("ws_close", "ws_error", "ws_no_data", "ws_connect_failed") else logging.INFO
    log.log(level, "feed status %s %s", typ, details)


def build_feed(args: argparse.Namespace):
    if args.replay:
        feed = ReplayFeed([Path(p) for p in args.replay])
    else:
        feed = DeribitWSFeed(
            args.url,
            args.interval,
            on_status=_log_status,
            open_timeout_s=settings.WS_OPEN_TIMEOUT_S,
            ping_interval_s=settings.WS_PING_INTERVAL_S,
            recv_timeout_s=settings.WS_RECV_TIMEOUT_S,
            no_data_timeout_s=settings.WS_NO_DATA_TIMEOUT_S,
            heartbeat_interval_s=settings.HEARTBEAT_INTERVAL_S,
        )
    if args.record:
        feed = RecordingFeed(feed, Path(args.record))
    return feed


class SyncThread(threading.Thread):
    """Runs the reconciliation loop and keeps whatever stopped it."""

    def __init__(self, controller: ReconciliationController) -> None:
        super().__init__(name="book-sync", daemon=True)
        self.controller = controller
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self.controller.run()
        except DesynchronizationExceeded as exc:
            self.error = exc
        except Exception as exc:
            log.exception("Sync loop crashed")
            self.error = exc


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    render = not args.no_render

    log_path = setup_logging(
        args.log_level,
        component="book_feed",
        subdir=args.instrument,
        base_dir=args.log_dir,
        console=not render,
    )
    log.info("Logging to %s", log_path)

    feed = build_feed(args)
    config = settings.sync_config(
        max_consecutive_resyncs=args.max_resyncs,
        overflow_policy=args.buffer_policy,
        stop_on_stream_end=bool(args.replay),
    )
    controller = ReconciliationController(feed, args.instrument, decoder=decode_message, config=config)
    renderer = TopOfBookRenderer(controller)
    controller.on_resync = renderer.mark_stale

    worker = SyncThread(controller)
    worker.start()
    try:
        while worker.is_alive():
            if render:
                renderer.draw()
            worker.join(timeout=max(0.05, args.render_interval))
    except KeyboardInterrupt:
        log.info("Interrupted; stopping after the in-flight message")
        controller.stop()
        worker.join()
    finally:
        if isinstance(feed, RecordingFeed):
            feed.close()

    if worker.error is not None:
        log.error("Book sync halted: %s", worker.error)
        print(f"book sync halted: {worker.error}", file=sys.stderr)
        return 2

    if render:
        renderer.draw()
    log.info(
        "Stopped: snapshots=%d deltas=%d resyncs=%d decode_errors=%d last_sequence=%s",
        controller.snapshots_applied,
        controller.deltas_applied,
        controller.resync_count,
        controller.decode_errors,
        controller.last_sequence,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
