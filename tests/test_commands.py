# tests/test_commands.py

from __future__ import annotations

import pytest

from maday.cli.commands import CommandRegistry, parse_duration, registry
from maday.tracking.api import plan_day, today
from maday.tracking.models import TimerState


def test_command_registry_routes_2_and_3_params(state) -> None:
    reg = CommandRegistry()
    called = {"h2": 0, "h3": 0}

    def h2(state, args):
        called["h2"] += 1
        return "h2"

    def h3(state, args, emit):
        called["h3"] += 1
        if emit is not None:
            emit("note")
        return "h3"

    reg.register("a", h2, "a")
    reg.register("b", h3, "b")

    assert reg.handle(state, "/a x") == "h2"
    assert reg.handle(state, "/b y", emit=lambda _: None) == "h3"
    assert called["h2"] == 1
    assert called["h3"] == 1


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello") is None
    assert "Unknown command" in (reg.handle(state, "/nope") or "")


def test_validation_errors_are_replies(state) -> None:
    assert (registry.handle(state, "/select abc") or "").startswith("Error:")
    assert (registry.handle(state, "/template add") or "").startswith("Error:")


def test_parse_duration() -> None:
    assert parse_duration("90") == 5400
    assert parse_duration("1h30m") == 5400
    assert parse_duration("45m") == 2700
    assert parse_duration("20s") == 20
    with pytest.raises(ValueError):
        parse_duration("soon")


def test_console_flow(state, clock) -> None:
    assert "created" in (registry.handle(state, "/category add Deep Work #4A90E2") or "")
    reply = registry.handle(state, "/template add Write report goal=2s cat=1 check=outline;final_pass")
    assert reply == "Template #1 Write report created."

    assert "Planned: #1 Write report" in (registry.handle(state, "/plan 1") or "")
    assert "Nothing new" in (registry.handle(state, "/plan 1") or "")

    assert "Tracking #1" in (registry.handle(state, "/start 1") or "")
    clock.advance(1)
    state.accumulator.tick()
    clock.advance(1)
    state.accumulator.tick()

    assert state.accumulator.is_prompting
    assert "Continuing" in (registry.handle(state, "/continue") or "")
    clock.advance(3)
    state.accumulator.tick()

    assert "Paused" in (registry.handle(state, "/pause") or "")
    assert "Resumed" in (registry.handle(state, "/resume") or "")
    assert "Stopped" in (registry.handle(state, "/stop") or "")
    assert state.accumulator.state == TimerState.FINISHED
    assert "Nothing to stop" in (registry.handle(state, "/stop") or "")

    inst = state.store.get_instance(1)
    assert inst is not None and inst.accumulated_seconds == 5

    checklist = registry.handle(state, "/check 1 2") or ""
    assert "[x] final pass" in checklist
    assert "marked done" in (registry.handle(state, "/done 1") or "")

    today = registry.handle(state, "/today") or ""
    assert "#1 Write report: 5s" in today
    assert "[1/2]" in today

    report = registry.handle(state, "/report") or ""
    assert "Deep Work: 100%" in report

    status = registry.handle(state, "/status") or ""
    assert "State: finished" in status


def test_status_without_selection(state) -> None:
    assert "no task selected" in (registry.handle(state, "/status") or "")
    assert "No task selected" in (registry.handle(state, "/start") or "")


def test_category_and_template_edit(state) -> None:
    registry.handle(state, "/category add Work")
    assert registry.handle(state, "/category edit 1 Deep Work #FF3B30") == "Category #1 updated."
    cat = state.store.get_category(1)
    assert cat is not None and (cat.name, cat.color) == ("Deep Work", "#FF3B30")
    assert "Nothing to change" in (registry.handle(state, "/category edit 1") or "")

    registry.handle(state, "/template add Read goal=10m")
    (planned,) = plan_day(state, today(), [1])

    reply = registry.handle(state, "/template edit 1 Reading goal=20m cat=1 check=ch1;notes desc=before_bed")
    assert "updated" in (reply or "")
    tpl = state.store.get_template(1)
    assert tpl is not None
    assert tpl.title == "Reading"
    assert tpl.default_goal_seconds == 1200
    assert tpl.category_id == 1
    assert tpl.default_checklist == ["ch1", "notes"]
    assert tpl.description == "before bed"

    # the planned copy keeps the values it was planned with
    inst = state.store.get_instance(planned.id)
    assert inst is not None and (inst.title, inst.goal_seconds) == ("Read", 600)

    assert (registry.handle(state, "/template edit 1 bogus=1") or "").startswith("Error: unknown option")
    assert (registry.handle(state, "/template edit 99 title") or "").startswith("Error:")


def test_task_edit_reaches_running_task(state, clock) -> None:
    registry.handle(state, "/template add Read goal=10m")
    registry.handle(state, "/plan 1")
    registry.handle(state, "/start 1")

    assert registry.handle(state, "/task edit 1 goal=2s priority=3 desc=evening") == "#1 Read updated."

    clock.advance(1)
    state.accumulator.tick()
    clock.advance(1)
    state.accumulator.tick()
    assert state.accumulator.is_prompting

    inst = state.store.get_instance(1)
    assert inst is not None
    assert (inst.goal_seconds, inst.priority, inst.description) == (2, 3, "evening")
    assert (registry.handle(state, "/task edit 1 colour=red") or "").startswith("Error: unknown option")


def test_task_order_and_remove(state, clock) -> None:
    for title in ("A", "B", "C"):
        registry.handle(state, f"/template add {title}")
    registry.handle(state, "/plan 1 2 3")

    assert registry.handle(state, "/task order 3 1 2") == "Order updated."
    assert [i.id for i in state.store.get_instances_for_day(today())] == [3, 1, 2]
    assert (registry.handle(state, "/task order 1 99") or "").startswith("Error: not on today's list")

    registry.handle(state, "/start 3")
    clock.advance(2)
    state.accumulator.tick()

    assert "removed" in (registry.handle(state, "/task rm 3") or "")
    assert state.accumulator.active is None
    assert state.accumulator.state == TimerState.IDLE
    assert state.store.get_instance(3) is None
    assert state.store.list_sessions(3) == []
    assert [i.id for i in state.store.get_instances_for_day(today())] == [1, 2]
