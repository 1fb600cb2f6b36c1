# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from maday.core.state import AppState
from maday.tracking.accumulator import SessionAccumulator
from maday.tracking.store import DailyTaskStore

from .fakes import FakeClock, InMemoryTaskRepo, RecordingListener


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="maday-test",
        log_level="DEBUG",
        console_enabled=False,
        tick_seconds=0.05,
        data_dir=tmp_path,
        db_path=tmp_path / "maday.sqlite3",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def repo() -> InMemoryTaskRepo:
    return InMemoryTaskRepo()


@pytest.fixture()
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture()
def acc(repo: InMemoryTaskRepo, clock: FakeClock, listener: RecordingListener) -> SessionAccumulator:
    accumulator = SessionAccumulator(repo, clock=clock)
    accumulator.subscribe(listener)
    return accumulator


@pytest.fixture()
def store(settings: SimpleNamespace) -> DailyTaskStore:
    return DailyTaskStore(settings.db_path)


@pytest.fixture()
def state(settings: SimpleNamespace, store: DailyTaskStore, clock: FakeClock) -> AppState:
    """
    AppState wired with a real SQLite store and a deterministic clock.

    NOTE: We keep the real store here because its correctness is part of what we want to test.
    """
    return AppState(
        settings=settings,
        store=store,
        accumulator=SessionAccumulator(store, clock=clock),
    )
