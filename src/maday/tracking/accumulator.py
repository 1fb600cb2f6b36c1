# src/maday/tracking/accumulator.py

from __future__ import annotations

"""
Session accumulator.

Tracks elapsed time for at most one daily task at a time:
- start / pause / resume / stop with one open Session per contiguous run,
- every tick persists its delta (a crash loses at most one tick),
- a one-time goal prompt per run (continue or stop),
- store failures never drop time: deltas stay in a backlog and are retried.

Not thread-safe by itself: callers serialize access (AppState.lock).
"""

import logging
import time
from collections.abc import Callable

from ..core.ports import DailyTaskRepo, TimerListener
from .models import DailyTaskInstance, EventKind, GoalState, TimerEvent, TimerState

logger = logging.getLogger(__name__)


class SessionAccumulator:
    def __init__(self, repo: DailyTaskRepo, *, clock: Callable[[], float] = time.time) -> None:
        self._repo = repo
        self._clock = clock
        self._listeners: list[TimerListener] = []

        self._state = TimerState.IDLE
        self._active: DailyTaskInstance | None = None
        self._goal_state = GoalState.NOT_REACHED

        self._persisted = 0.0  # last total confirmed by the store for the active task
        self._running_total = 0.0
        self._elapsed = 0.0
        self._session_id: int | None = None
        self._last_tick: float | None = None

        # (instance_id, session_id) -> seconds not yet written
        self._backlog: dict[tuple[int, int | None], float] = {}
        # (session_id, end) closes not yet written
        self._unclosed: list[tuple[int, float]] = []
        self._last_error: str | None = None

    # ---- observable state ----

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def active(self) -> DailyTaskInstance | None:
        return self._active

    @property
    def goal_state(self) -> GoalState:
        return self._goal_state

    @property
    def is_prompting(self) -> bool:
        return self._goal_state == GoalState.PROMPTED

    @property
    def running_total(self) -> float:
        return self._running_total

    @property
    def elapsed(self) -> float:
        return self._elapsed

    @property
    def accumulated(self) -> float:
        """Total for the active task: persisted value plus anything still unflushed."""
        if self._active is None:
            return 0.0
        return self._persisted + self._unflushed_for(self._active.id)

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def has_pending(self) -> bool:
        return bool(self._backlog or self._unclosed)

    def live_elapsed(self, instance: DailyTaskInstance) -> float:
        if self._active is not None and self._active.id == instance.id:
            return self.accumulated
        return instance.accumulated_seconds + self._unflushed_for(instance.id)

    def subscribe(self, listener: TimerListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- operations ----

    def reload(self) -> None:
        """Re-read the active task after an edit (goal, title). Timing is untouched."""
        if self._active is None:
            return
        self._active = self._refresh(self._active)

    def select(self, task: DailyTaskInstance | None) -> None:
        """
        Make `task` the candidate for timing.

        A different task that is running or paused is stopped first (delta flushed,
        session closed). Does not start timing.
        """
        if task is None:
            self.stop()
            self._active = None
            self._persisted = 0.0
            self._reset_run()
            self._goal_state = GoalState.NOT_REACHED
            self._set_state(TimerState.IDLE)
            return

        if self._active is not None and self._active.id == task.id:
            return

        if self._state in (TimerState.RUNNING, TimerState.PAUSED):
            self.stop()

        fresh = self._refresh(task)
        self._active = fresh
        self._persisted = fresh.accumulated_seconds
        self._reset_run()
        self._goal_state = GoalState.NOT_REACHED
        self._set_state(TimerState.FINISHED if self.accumulated > 0 else TimerState.IDLE)

    def start(self, task: DailyTaskInstance | None = None) -> None:
        if task is not None and (self._active is None or self._active.id != task.id):
            self.select(task)

        if self._active is None:
            logger.debug("start ignored: no task selected")
            return
        if self._state not in (TimerState.IDLE, TimerState.FINISHED):
            logger.debug("start ignored in state=%s", self._state.value)
            return

        if not self._open_run():
            return

        self._running_total = 0.0
        self._elapsed = 0.0
        self._goal_state = GoalState.NOT_REACHED
        self._set_state(TimerState.RUNNING)
        logger.info("Tracking started task=%s session=%s", self._active.id, self._session_id)

    def tick(self, now: float | None = None) -> None:
        if self._state != TimerState.RUNNING or self._active is None:
            return

        if now is None:
            now = self._clock()

        if not self._capture(now):
            return

        self._emit(EventKind.TICK)
        self._check_goal()

    def pause(self) -> None:
        if self._state != TimerState.RUNNING or self._active is None:
            logger.debug("pause ignored in state=%s", self._state.value)
            return

        self._close_run(self._clock())
        self._set_state(TimerState.PAUSED)
        logger.info("Tracking paused task=%s total=%.1f", self._active.id, self.accumulated)

    def resume(self) -> None:
        if self._state != TimerState.PAUSED or self._active is None:
            logger.debug("resume ignored in state=%s", self._state.value)
            return

        if self._goal_state == GoalState.PROMPTED:
            self.continue_after_goal()
            return

        if not self._open_run():
            return
        self._set_state(TimerState.RUNNING)
        logger.info("Tracking resumed task=%s session=%s", self._active.id, self._session_id)

    def stop(self) -> None:
        if self._active is None:
            return
        if self._state not in (TimerState.RUNNING, TimerState.PAUSED):
            return

        if self._goal_state == GoalState.PROMPTED:
            self._goal_state = GoalState.ACKNOWLEDGED

        if self._state == TimerState.RUNNING:
            self._close_run(self._clock())

        if self.has_pending:
            self._flush_backlog()

        self._reset_run()
        self._set_state(TimerState.FINISHED)
        logger.info("Tracking stopped task=%s total=%.1f", self._active.id, self.accumulated)

    def continue_after_goal(self) -> None:
        """Answer the goal prompt with "continue": keep tracking, counter back to 0."""
        if self._goal_state != GoalState.PROMPTED or self._state != TimerState.PAUSED:
            return
        if self._active is None:
            return

        # stay PROMPTED when the session cannot be opened so the user can retry
        if not self._open_run():
            return

        self._goal_state = GoalState.ACKNOWLEDGED
        self._elapsed = 0.0
        self._set_state(TimerState.RUNNING)
        logger.info("Goal acknowledged, tracking continues task=%s", self._active.id)

    def stop_after_goal(self) -> None:
        """Answer the goal prompt with "stop"."""
        if self._goal_state != GoalState.PROMPTED:
            return
        self.stop()

    def flush_pending(self) -> bool:
        """
        Retry unflushed deltas and session closes.

        Returns True when nothing is left pending.
        """
        if self._state == TimerState.RUNNING:
            self._capture(self._clock())
        if not self.has_pending:
            return True
        return self._flush_backlog()

    # ---- internals ----

    def _refresh(self, task: DailyTaskInstance) -> DailyTaskInstance:
        try:
            fresh = self._repo.get_instance(task.id)
        except Exception:
            logger.exception("get_instance failed id=%s; using caller snapshot", task.id)
            return task
        return fresh if fresh is not None else task

    def _reset_run(self) -> None:
        self._running_total = 0.0
        self._elapsed = 0.0
        self._session_id = None
        self._last_tick = None

    def _open_run(self) -> bool:
        assert self._active is not None
        now = self._clock()
        try:
            session_id = self._repo.create_session(self._active.id, now)
        except Exception as exc:
            self._mark_failed("create_session", exc)
            return False

        self._session_id = session_id
        self._last_tick = now
        if not self.has_pending:
            self._mark_recovered()
        return True

    def _close_run(self, now: float) -> None:
        self._capture(now)

        session_id = self._session_id
        self._session_id = None
        self._last_tick = None
        if session_id is None:
            return

        try:
            self._repo.close_session(session_id, now)
        except Exception as exc:
            self._unclosed.append((session_id, now))
            self._mark_failed("close_session", exc)

    def _capture(self, now: float) -> bool:
        """Account for time since the last tick. Returns True when a delta was applied."""
        last = self._last_tick
        self._last_tick = now
        if last is None or self._active is None:
            return False

        delta = now - last
        if delta <= 0:
            # clock went backwards or did not move: never subtract time
            return False

        self._running_total += delta
        self._elapsed += delta

        key = (self._active.id, self._session_id)
        self._backlog[key] = self._backlog.get(key, 0.0) + delta
        self._flush_backlog()
        return True

    def _flush_backlog(self) -> bool:
        failure: tuple[str, Exception] | None = None

        for key, amount in list(self._backlog.items()):
            instance_id, session_id = key
            try:
                total = self._repo.add_elapsed(instance_id, amount, session_id=session_id)
            except Exception as exc:
                failure = ("add_elapsed", exc)
                continue
            del self._backlog[key]
            if self._active is not None and self._active.id == instance_id:
                self._persisted = total

        for item in list(self._unclosed):
            session_id, end = item
            try:
                self._repo.close_session(session_id, end)
            except Exception as exc:
                failure = ("close_session", exc)
                continue
            self._unclosed.remove(item)

        if failure is not None:
            self._mark_failed(*failure)
            return False

        self._mark_recovered()
        return True

    def _unflushed_for(self, instance_id: int) -> float:
        return sum(v for (iid, _), v in self._backlog.items() if iid == instance_id)

    def _check_goal(self) -> None:
        active = self._active
        if active is None or not active.has_goal:
            return
        if self._goal_state != GoalState.NOT_REACHED:
            return
        if self.accumulated < active.goal_seconds:
            return

        self._goal_state = GoalState.PROMPTED
        self._close_run(self._last_tick if self._last_tick is not None else self._clock())
        self._set_state(TimerState.PAUSED)
        logger.info(
            "Goal reached task=%s total=%.1f goal=%s", active.id, self.accumulated, active.goal_seconds
        )
        self._emit(EventKind.GOAL_REACHED, goal_seconds=active.goal_seconds)

    def _mark_failed(self, op: str, exc: Exception) -> None:
        first = self._last_error is None
        self._last_error = f"{op} failed: {exc}"
        if first:
            logger.error("Store write failed (%s); keeping unflushed time", op, exc_info=exc)
        else:
            logger.warning("Store write still failing (%s): %s", op, exc)
        self._emit(EventKind.PERSISTENCE_FAILED, error=self._last_error)

    def _mark_recovered(self) -> None:
        if self._last_error is None:
            return
        self._last_error = None
        logger.info("Store writes recovered; backlog flushed")
        self._emit(EventKind.PERSISTENCE_RECOVERED)

    def _set_state(self, new_state: TimerState) -> None:
        old = self._state
        self._state = new_state
        self._emit(EventKind.STATE_CHANGED, previous=old.value)

    def _emit(self, kind: EventKind, *, error: str | None = None, **extra: object) -> None:
        if not self._listeners:
            return
        event = TimerEvent(
            kind=kind,
            state=self._state,
            instance_id=self._active.id if self._active is not None else None,
            accumulated=self.accumulated,
            elapsed=self._elapsed,
            goal_state=self._goal_state,
            error=error,
            extra=dict(extra),
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Timer listener failed kind=%s", kind.value)
