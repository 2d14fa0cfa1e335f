from __future__ import annotations

import logging
from pathlib import Path

from book_feed.logging_config import setup_logging


def test_setup_logging_writes_daily_file_under_subdir(tmp_path: Path):
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        log_path = setup_logging("debug", component="book_feed", subdir="ETH-PERPETUAL", base_dir=tmp_path, console=False)
        logging.getLogger("book_core.sync").info("hello from sync")

        assert log_path.parent == tmp_path / "book_feed" / "ETH-PERPETUAL"
        assert log_path.suffix == ".log"
        assert root.level == logging.DEBUG
        assert not any(type(h) is logging.StreamHandler for h in root.handlers)

        for h in root.handlers:
            h.flush()
        assert "hello from sync" in log_path.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            root.removeHandler(h)
            if isinstance(h, logging.FileHandler):
                h.close()
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
