# src/maday/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL waits for input.

    The ticker logs from a background thread, so only its warnings reach the
    console. Everything outside maday.* shows at ERROR only. The log file gets it all.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("maday.tracking.ticker"):
            return record.levelno >= logging.WARNING
        if name.startswith("maday."):
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/maday",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> None:
    """Console (filtered) plus maday.log in `log_dir` (full detail)."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    logfile = logging.FileHandler(str(log_dir / "maday.log"), encoding="utf-8")
    logfile.setLevel(file_level)
    logfile.setFormatter(fmt)
    root.addHandler(logfile)

    # sqlite3 and asyncio warnings end up in maday.log as "py.warnings"
    logging.captureWarnings(True)
