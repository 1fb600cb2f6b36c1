# src/maday/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..tracking.accumulator import SessionAccumulator
from ..tracking.store import DailyTaskStore


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: object

    store: DailyTaskStore
    accumulator: SessionAccumulator

    # Console thread and ticker thread both drive the accumulator.
    lock: threading.RLock = field(default_factory=threading.RLock)
