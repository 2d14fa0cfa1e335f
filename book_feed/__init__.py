"""Deribit feed, replay/recording, rendering and the CLI around book_core."""

from .deribit import decode_message
from .replay import RecordingFeed, ReplayFeed
from .ws_stream import DeribitWSFeed

__all__ = ["decode_message", "DeribitWSFeed", "RecordingFeed", "ReplayFeed"]
