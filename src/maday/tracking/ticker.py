# src/maday/tracking/ticker.py

from __future__ import annotations

"""
Tracker clock.

A small loop that delivers one tick per interval to the accumulator while it is
running. The loop itself never stops on errors; cancel the coroutine (or stop the
background runner) to end it. On the way out the last partial delta is flushed.
"""

import asyncio
import contextlib
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .accumulator import SessionAccumulator
from .models import TimerState

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 0.05


def _locked(lock: threading.RLock | None):
    return lock if lock is not None else contextlib.nullcontext()


async def run_ticker(
        accumulator: SessionAccumulator,
        *,
        interval_seconds: float = 1.0,
        lock: threading.RLock | None = None,
        clock: Callable[[], float] = time.time,
        stop_event: asyncio.Event | None = None,
) -> None:
    """
    Tick loop.

    Every interval_seconds:
    - if the accumulator is RUNNING, call tick(clock()) (under `lock` when given)
    - otherwise just wait

    Runs until cancelled or until stop_event is set.
    """
    sleep_s = max(MIN_INTERVAL_SECONDS, float(interval_seconds))
    logger.debug("Ticker started interval=%.2fs", sleep_s)

    try:
        while stop_event is None or not stop_event.is_set():
            try:
                with _locked(lock):
                    if accumulator.state == TimerState.RUNNING:
                        accumulator.tick(clock())
            except Exception:
                logger.exception("tick failed")

            if stop_event is None:
                await asyncio.sleep(sleep_s)
            else:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=sleep_s)
    finally:
        try:
            with _locked(lock):
                accumulator.flush_pending()
        except Exception:
            logger.exception("final flush failed")
        logger.debug("Ticker stopped")


@dataclass
class TickerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal ticker stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_ticker_in_background(state: AppState) -> TickerBackgroundRunner | None:
    """
    Start the tick loop in a background thread (so the console REPL can block on input()).
    """
    interval = float(getattr(state.settings, "tick_seconds", 1.0))

    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(
                run_ticker(
                    state.accumulator,
                    interval_seconds=interval,
                    lock=state.lock,
                    stop_event=stop_event,
                )
            )
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="maday-ticker", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Ticker thread did not initialize properly.")
        return None

    logger.info("Ticker background thread started (interval=%.2fs).", interval)
    return TickerBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
