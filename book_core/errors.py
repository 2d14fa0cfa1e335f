"""Failure taxonomy for book synchronization."""

from __future__ import annotations

from typing import Optional


class BookSyncError(Exception):
    pass


class DecodeError(BookSyncError):
    """A raw feed message could not be turned into a Snapshot or Delta."""


class SequenceGap(BookSyncError):
    def __init__(self, expected: Optional[int], got: int, sequence: int) -> None:
        self.expected = expected
        self.got = got
        self.sequence = sequence
        super().__init__(f"sequence gap: book at {expected}, delta prev={got} seq={sequence}")


class FeedUnavailable(BookSyncError):
    """The feed could not deliver a stream (connect/read failure, stream ended)."""


class DesynchronizationExceeded(BookSyncError):
    def __init__(self, resyncs: int, reason: str) -> None:
        self.resyncs = resyncs
        self.reason = reason
        super().__init__(f"gave up after {resyncs} consecutive resyncs (last reason: {reason})")
