# src/maday/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The accumulator depends on Protocols instead of concrete implementations.
This keeps storage swappable and makes testing easier.
"""

from collections.abc import Callable
from datetime import date
from typing import Protocol

from ..tracking.models import DailyTaskInstance, TimerEvent

TimerListener = Callable[[TimerEvent], None]
# Receives accumulator events (state changes, ticks, goal prompt, persistence errors).


class DailyTaskRepo(Protocol):
    """
    Store boundary the accumulator relies on.

    add_elapsed must be an atomic read-modify-write per instance.
    """

    def get_instance(self, instance_id: int) -> DailyTaskInstance | None: ...
    def get_instances_for_day(self, day: date) -> list[DailyTaskInstance]: ...
    def create_instance(self, template_id: int, day: date, order: int) -> DailyTaskInstance: ...

    def add_elapsed(
            self,
            instance_id: int,
            delta_seconds: float,
            *,
            session_id: int | None = None,
    ) -> float: ...

    def set_completion(self, instance_id: int, completed: bool) -> None: ...
    def set_checklist_state(self, instance_id: int, state: list[bool]) -> None: ...

    def create_session(self, instance_id: int, start: float) -> int: ...
    def close_session(self, session_id: int, end: float) -> None: ...

