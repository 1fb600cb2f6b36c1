# src/maday/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store into the accumulator and AppState,
- closes sessions a previous crash left open.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..tracking.accumulator import SessionAccumulator
from ..tracking.store import DailyTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.log_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = DailyTaskStore(settings.db_path)
    try:
        store.close_stale_sessions()
    except Exception:
        logger.exception("Failed to close stale sessions.")

    return AppState(
        settings=settings,
        store=store,
        accumulator=SessionAccumulator(store),
    )
