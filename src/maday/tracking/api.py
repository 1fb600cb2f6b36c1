# src/maday/tracking/api.py

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date

from ..core.state import AppState
from .models import DailyTaskInstance

logger = logging.getLogger(__name__)


def today() -> date:
    return date.today()


def plan_day(
    state: AppState,
    day: date,
    template_ids: Iterable[int],
) -> list[DailyTaskInstance]:
    """
    Copy templates into the given day.

    A template already planned for that day is skipped, so calling this twice is safe.
    New instances are ordered after the ones that already exist.
    """
    existing = state.store.get_instances_for_day(day)
    planned = {i.template_id for i in existing if i.template_id is not None}
    next_order = max((i.display_order for i in existing), default=-1) + 1

    created: list[DailyTaskInstance] = []
    for template_id in template_ids:
        if template_id in planned:
            logger.debug("Template %s already planned for %s", template_id, day)
            continue
        inst = state.store.create_instance(template_id, day, next_order)
        planned.add(template_id)
        next_order += 1
        created.append(inst)

    if created:
        logger.info("Planned %d task(s) for %s", len(created), day)
    return created


def toggle_completion(state: AppState, instance_id: int) -> bool:
    """Flip the completion flag; returns the new value."""
    inst = state.store.get_instance(instance_id)
    if inst is None:
        raise ValueError(f"daily task {instance_id} not found")
    new_value = not inst.is_completed
    state.store.set_completion(instance_id, new_value)
    return new_value


def toggle_checklist_item(state: AppState, instance_id: int, index: int) -> list[bool]:
    """Flip one checklist entry (0-based); returns the new checklist state."""
    inst = state.store.get_instance(instance_id)
    if inst is None:
        raise ValueError(f"daily task {instance_id} not found")
    if not 0 <= index < len(inst.checklist_state):
        raise ValueError(f"checklist index {index} out of range")

    new_state = list(inst.checklist_state)
    new_state[index] = not new_state[index]
    state.store.set_checklist_state(instance_id, new_state)
    return new_state
