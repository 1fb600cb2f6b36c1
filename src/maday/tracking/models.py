# src/maday/tracking/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum


class TimerState(StrEnum):
    """
    Stopwatch lifecycle for the selected daily task.

    Notes:
    - IDLE means "selected, never timed today".
    - FINISHED means "selected and has recorded time, not currently timed".
    """

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    FINISHED = "finished"


class GoalState(StrEnum):
    """Per-run goal prompt bookkeeping (reset on a fresh start)."""

    NOT_REACHED = "not_reached"
    PROMPTED = "prompted"
    ACKNOWLEDGED = "acknowledged"


class EventKind(StrEnum):
    STATE_CHANGED = "state_changed"
    TICK = "tick"
    GOAL_REACHED = "goal_reached"
    PERSISTENCE_FAILED = "persistence_failed"
    PERSISTENCE_RECOVERED = "persistence_recovered"


@dataclass(frozen=True, slots=True)
class Category:
    id: int
    name: str
    color: str
    display_order: int
    created_at: float
    updated_at: float


@dataclass(frozen=True, slots=True)
class TaskTemplate:
    id: int
    title: str
    category_id: int | None
    default_goal_seconds: int
    default_checklist: list[str]
    description: str
    color: str | None
    created_at: float
    updated_at: float


@dataclass(frozen=True, slots=True)
class DailyTaskInstance:
    id: int
    day: date
    template_id: int | None

    # snapshot copied from the template at creation
    title: str
    checklist: list[str]
    goal_seconds: int
    description: str
    color: str | None

    accumulated_seconds: float
    is_completed: bool
    checklist_state: list[bool]
    display_order: int
    priority: int

    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def has_goal(self) -> bool:
        return self.goal_seconds > 0

    @property
    def goal_reached(self) -> bool:
        return self.has_goal and self.accumulated_seconds >= self.goal_seconds


@dataclass(frozen=True, slots=True)
class Session:
    id: int
    daily_task_id: int
    start_at: float
    end_at: float | None
    duration_seconds: float

    @property
    def is_open(self) -> bool:
        return self.end_at is None


@dataclass(frozen=True, slots=True)
class TimerEvent:
    """
    What the accumulator tells its listeners.

    `accumulated` is the task total (persisted + unflushed),
    `elapsed` is the display counter of the current run.
    """

    kind: EventKind
    state: TimerState
    instance_id: int | None
    accumulated: float
    elapsed: float
    goal_state: GoalState
    error: str | None = None
    extra: dict[str, object] = field(default_factory=dict)
