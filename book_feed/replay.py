from __future__ import annotations

import gzip
import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, TextIO

from book_core.errors import FeedUnavailable
from book_core.sync_engine import FeedSource

log = logging.getLogger("book_feed.replay")


def _open_text(path: Path, mode: str) -> TextIO:
    if path.suffix == ".gz":
        return gzip.open(path, mode + "t", encoding="utf-8")
    return open(path, mode, encoding="utf-8")


def iter_ndjson(paths: Iterable[Path]) -> Iterator[Any]:
    """Yield recorded messages in file order.

    Lines that are not valid JSON are yielded as raw text so the decoder
    reports them instead of them disappearing here.
    """
    for path in paths:
        path = Path(path)
        if not path.exists():
            raise FeedUnavailable(f"recording not found: {path}")
        try:
            with _open_text(path, "r") as fh:
                for line in fh:
                    line = line.rstrip("\n")
                    if not line:
                        continue
                    try:
                        yield json.loads(line)
                    except ValueError:
                        yield line
        except (OSError, EOFError) as exc:
            raise FeedUnavailable(f"failed reading {path}: {exc}") from exc


class ReplayFeed:
    """FeedSource replaying recorded raw messages.

    All subscriptions share one cursor: a resync resumes from where the
    previous stream stopped, which is where the recorded session resubscribed.
    """

    def __init__(self, paths: List[Path] | Path) -> None:
        if isinstance(paths, (str, Path)):
            paths = [Path(paths)]
        self.paths = [Path(p) for p in paths]
        self._source = iter_ndjson(self.paths)
        self.subscriptions = 0
        self.messages = 0

    def subscribe(self, instrument: str) -> Iterator[Any]:
        self.subscriptions += 1
        log.info("Replay subscription #%d for %s", self.subscriptions, instrument)
        return self._stream()

    def _stream(self) -> Iterator[Any]:
        for payload in self._source:
            self.messages += 1
            yield payload


class RecordingFeed:
    """Wraps a FeedSource and appends every raw message it yields to NDJSON."""

    def __init__(self, inner: FeedSource, path: Path) -> None:
        self.inner = inner
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: Optional[TextIO] = _open_text(self.path, "a")
        self._lock = threading.Lock()
        self.lines_written = 0

    def subscribe(self, instrument: str) -> Iterator[Any]:
        return self._record(self.inner.subscribe(instrument))

    def _record(self, stream: Iterable[Any]) -> Iterator[Any]:
        try:
            for raw in stream:
                if raw is not None:
                    self.write(raw)
                yield raw
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

    def write(self, raw: Any) -> None:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        line = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False, default=str)
        with self._lock:
            if self._fh is None:
                raise RuntimeError(f"recording {self.path} is closed")
            self._fh.write(line.replace("\n", " ") + "\n")
            self._fh.flush()
            self.lines_written += 1

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
