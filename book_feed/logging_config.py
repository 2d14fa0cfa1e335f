import logging
from pathlib import Path
from datetime import datetime
from zoneinfo import ZoneInfo


def setup_logging(
    level: str = "INFO",
    component: str = "book_feed",
    subdir: str = "default",
    base_dir: str | Path = "logs",
    console: bool = True,
) -> Path:
    """
    Configure the root logger:
      - Daily log file in <base_dir>/<component>/<subdir>/YYYY-MM-DD.log (Berlin date)
      - Console (stderr) unless disabled; the terminal renderer owns stdout and
        clears the screen, so the runner turns console output off while rendering.

    Returns:
      Path to the "current" daily log file.
    """

    log_dir = Path(base_dir) / component / subdir
    log_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(ZoneInfo("Europe/Berlin")).strftime("%Y-%m-%d")
    log_path = log_dir / f"{date_str}.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setFormatter(fmt)
        root.addHandler(handler)
    return log_path
