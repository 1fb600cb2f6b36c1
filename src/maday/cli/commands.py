# src/maday/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
import re
from collections.abc import Callable
from datetime import date
from typing import cast

from ..core.state import AppState
from ..reports.weekly import build_weekly_report, format_clock, format_duration
from ..tracking.api import plan_day, today, toggle_checklist_item, toggle_completion
from ..tracking.models import DailyTaskInstance, TimerState
from ..tracking.store import DEFAULT_CATEGORY_COLOR

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /start, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except ValueError as e:
            # validation errors from the store are user errors, not crashes
            return f"Error: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def parse_duration(raw: str) -> int:
    """
    "90" -> 90 minutes, "1h30m", "45m", "20s" -> seconds.
    """
    raw = raw.strip().lower()
    if raw.isdigit():
        return int(raw) * 60
    m = _DURATION_RE.match(raw)
    if not raw or not m or not any(m.groups()):
        raise ValueError(f"bad duration: {raw!r} (use e.g. 45m, 1h30m, 90)")
    h, mnt, s = (int(g) if g else 0 for g in m.groups())
    return h * 3600 + mnt * 60 + s


def _parse_id(args: list[str], usage: str) -> int:
    if not args:
        raise ValueError(f"usage: {usage}")
    try:
        return int(args[0])
    except ValueError:
        raise ValueError(f"not an id: {args[0]!r}") from None


def _parse_ids(args: list[str]) -> list[int]:
    try:
        return [int(a) for a in args]
    except ValueError:
        raise ValueError(f"ids must be numbers: {' '.join(args)!r}") from None


def _split_options(tokens: list[str]) -> tuple[list[str], dict[str, str]]:
    """
    Split "word word key=value" tokens into free words and options.

    Underscores in option values stand for spaces ("check=read_ch1;notes").
    """
    words: list[str] = []
    opts: dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if sep and key:
            opts[key.lower()] = value
        else:
            words.append(token)
    return words, opts


def _opt_text(value: str) -> str:
    return value.replace("_", " ")


def _opt_checklist(value: str) -> list[str]:
    return [_opt_text(c) for c in value.split(";") if c]


def _instance_line(state: AppState, inst: DailyTaskInstance) -> str:
    acc = state.accumulator
    mark = "x" if inst.is_completed else " "
    live = acc.live_elapsed(inst)
    goal = f" / {format_duration(inst.goal_seconds)}" if inst.has_goal else ""
    active = ""
    if acc.active is not None and acc.active.id == inst.id:
        active = f"  <{acc.state.value}>"
    checklist = ""
    if inst.checklist:
        checklist = f"  [{sum(inst.checklist_state)}/{len(inst.checklist)}]"
    return f"  [{mark}] #{inst.id} {inst.title}: {format_duration(live)}{goal}{checklist}{active}"


def _find_instance(state: AppState, instance_id: int) -> DailyTaskInstance:
    inst = state.store.get_instance(instance_id)
    if inst is None:
        raise ValueError(f"daily task {instance_id} not found")
    return inst


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    if acc.active is None:
        return "Status: no task selected. Use /today and /select <id>."
    lines = [
        "Status:",
        f"  Task: #{acc.active.id} {acc.active.title}",
        f"  State: {acc.state.value}",
        f"  Current run: {format_clock(acc.elapsed)}",
        f"  Total today: {format_clock(acc.accumulated)}",
    ]
    if acc.active.has_goal:
        lines.append(f"  Goal: {format_duration(acc.active.goal_seconds)} ({acc.goal_state.value})")
    if acc.last_error:
        lines.append(f"  Storage problem: {acc.last_error} (time is kept and retried)")
    return "\n".join(lines)


def cmd_categories(state: AppState, args: list[str]) -> str:
    cats = state.store.list_categories()
    if not cats:
        return "No categories. Use /category add <name> [#color]."
    lines = ["Categories:"]
    for c in cats:
        lines.append(f"  #{c.id} {c.name} ({c.color})")
    return "\n".join(lines)


def cmd_category(state: AppState, args: list[str]) -> str:
    """
    /category add <name> [#color]
    /category edit <id> [<new name>] [#color]
    /category rm <id>
    """
    usage = "Usage: /category add <name> [#color] | edit <id> [name] [#color] | rm <id>"
    if not args:
        return usage

    sub, rest = args[0].lower(), args[1:]
    if sub == "add":
        color = None
        if rest and rest[-1].startswith("#"):
            color = rest.pop()
        cat = state.store.create_category(name=" ".join(rest), color=color or DEFAULT_CATEGORY_COLOR)
        return f"Category #{cat.id} {cat.name} created."

    if sub == "edit":
        category_id = _parse_id(rest, "/category edit <id> [name] [#color]")
        words = rest[1:]
        color = words.pop() if words and words[-1].startswith("#") else None
        if not words and color is None:
            return "Nothing to change. Give a new name and/or #color."
        state.store.update_category(category_id, name=" ".join(words) if words else None, color=color)
        return f"Category #{category_id} updated."

    if sub in ("rm", "del", "delete"):
        category_id = _parse_id(rest, "/category rm <id>")
        state.store.delete_category(category_id)
        return f"Category #{category_id} deleted (its templates are kept)."

    return usage


def cmd_templates(state: AppState, args: list[str]) -> str:
    templates = state.store.list_templates()
    if not templates:
        return "No templates. Use /template add <title> [goal=45m] [cat=<id>] [check=a;b]."
    lines = ["Templates:"]
    for t in templates:
        goal = f" goal {format_duration(t.default_goal_seconds)}" if t.default_goal_seconds else ""
        cat = f" cat #{t.category_id}" if t.category_id is not None else ""
        checks = f" checklist {len(t.default_checklist)}" if t.default_checklist else ""
        lines.append(f"  #{t.id} {t.title}{goal}{cat}{checks}")
    return "\n".join(lines)


_TEMPLATE_OPTIONS = {"goal", "cat", "check", "desc", "color"}


def _template_fields(opts: dict[str, str]) -> dict[str, object]:
    unknown = set(opts) - _TEMPLATE_OPTIONS
    if unknown:
        raise ValueError(f"unknown option(s): {', '.join(sorted(unknown))}")

    fields: dict[str, object] = {}
    if "goal" in opts:
        fields["default_goal_seconds"] = parse_duration(opts["goal"])
    if "cat" in opts:
        fields["category_id"] = _parse_id([opts["cat"]], "cat=<id>")
    if "check" in opts:
        fields["default_checklist"] = _opt_checklist(opts["check"])
    if "desc" in opts:
        fields["description"] = _opt_text(opts["desc"])
    if "color" in opts:
        fields["color"] = opts["color"]
    return fields


def cmd_template(state: AppState, args: list[str]) -> str:
    """
    /template add <title words...> [goal=45m] [cat=<id>] [check=a;b;c] [desc=..] [color=#..]
    /template edit <id> [<new title>] [same options as add]
    /template rm <id>

    Edits only affect days planned afterwards.
    """
    usage = (
        "Usage: /template add <title> [goal=45m] [cat=<id>] [check=a;b] | "
        "edit <id> [title] [options] | rm <id>"
    )
    if not args:
        return usage

    sub, rest = args[0].lower(), args[1:]
    if sub == "add":
        words, opts = _split_options(rest)
        t = state.store.create_template(title=" ".join(words), **_template_fields(opts))
        return f"Template #{t.id} {t.title} created."

    if sub == "edit":
        template_id = _parse_id(rest, "/template edit <id> [title] [options]")
        words, opts = _split_options(rest[1:])
        fields = _template_fields(opts)
        if words:
            fields["title"] = " ".join(words)
        if not fields:
            return "Nothing to change."
        state.store.update_template(template_id, **fields)
        return f"Template #{template_id} updated (already planned days keep their copy)."

    if sub in ("rm", "del", "delete"):
        template_id = _parse_id(rest, "/template rm <id>")
        state.store.delete_template(template_id)
        return f"Template #{template_id} deleted (planned tasks are kept)."

    return usage


def cmd_task(state: AppState, args: list[str]) -> str:
    """
    /task edit <id> [goal=45m] [priority=N] [desc=..]
    /task order <id> <id> ...   -> new display order for today's list
    /task rm <id>
    """
    usage = "Usage: /task edit <id> [goal=45m] [priority=N] [desc=..] | order <id> <id> ... | rm <id>"
    if not args:
        return usage

    acc = state.accumulator
    sub, rest = args[0].lower(), args[1:]
    if sub == "edit":
        inst = _find_instance(state, _parse_id(rest, "/task edit <id> [options]"))
        words, opts = _split_options(rest[1:])
        unknown = set(opts) - {"goal", "priority", "desc"}
        if words or unknown:
            raise ValueError(f"unknown option(s): {', '.join(sorted(unknown) or words)}")
        if not opts:
            return "Nothing to change."
        state.store.update_instance(
            inst.id,
            goal_seconds=parse_duration(opts["goal"]) if "goal" in opts else None,
            priority=_parse_id([opts["priority"]], "priority=<n>") if "priority" in opts else None,
            description=_opt_text(opts["desc"]) if "desc" in opts else None,
        )
        if acc.active is not None and acc.active.id == inst.id:
            acc.reload()
        return f"#{inst.id} {inst.title} updated."

    if sub == "order":
        ids = _parse_ids(rest)
        if not ids:
            return "Usage: /task order <id> <id> ..."
        todays = {i.id for i in state.store.get_instances_for_day(today())}
        foreign = [i for i in ids if i not in todays]
        if foreign:
            raise ValueError(f"not on today's list: {', '.join(f'#{i}' for i in foreign)}")
        state.store.reorder_instances(ids)
        return "Order updated."

    if sub in ("rm", "del", "delete"):
        inst = _find_instance(state, _parse_id(rest, "/task rm <id>"))
        if acc.active is not None and acc.active.id == inst.id:
            acc.select(None)
        state.store.delete_instance(inst.id)
        return f"#{inst.id} {inst.title} removed with its sessions."

    return usage


def cmd_plan(state: AppState, args: list[str]) -> str:
    """/plan <template_id> [<template_id> ...] -> add templates to today."""
    if not args:
        return "Usage: /plan <template_id> [<template_id> ...]"
    ids = _parse_ids(args)
    created = plan_day(state, today(), ids)
    if not created:
        return "Nothing new to plan (already on today's list)."
    return "Planned: " + ", ".join(f"#{i.id} {i.title}" for i in created)


def cmd_today(state: AppState, args: list[str]) -> str:
    day = today()
    items = state.store.get_instances_for_day(day)
    if not items:
        return f"Nothing planned for {day.isoformat()}. Use /templates and /plan <id>."
    total = sum(state.accumulator.live_elapsed(i) for i in items)
    lines = [f"Today ({day.isoformat()}), tracked {format_duration(total)}:"]
    lines.extend(_instance_line(state, i) for i in items)
    return "\n".join(lines)


def cmd_select(state: AppState, args: list[str]) -> str:
    inst = _find_instance(state, _parse_id(args, "/select <id>"))
    state.accumulator.select(inst)
    return f"Selected #{inst.id} {inst.title} ({state.accumulator.state.value})."


def cmd_start(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    if args:
        acc.start(_find_instance(state, _parse_id(args, "/start [id]")))
    else:
        acc.start()
    if acc.active is None:
        return "No task selected. Use /select <id> or /start <id>."
    if acc.state != TimerState.RUNNING:
        if acc.last_error:
            return f"Could not start: {acc.last_error}"
        return f"Not started: #{acc.active.id} is {acc.state.value} (use /resume or /stop)."
    return f"Tracking #{acc.active.id} {acc.active.title}."


def cmd_pause(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    acc.pause()
    if acc.state != TimerState.PAUSED:
        return "Nothing is running."
    return f"Paused at {format_clock(acc.elapsed)} (total {format_duration(acc.accumulated)})."


def cmd_resume(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    acc.resume()
    if acc.state != TimerState.RUNNING:
        return "Nothing to resume."
    return f"Resumed #{acc.active.id if acc.active else '?'}."


def cmd_stop(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    if acc.state not in (TimerState.RUNNING, TimerState.PAUSED):
        return "Nothing to stop."
    if acc.is_prompting:
        acc.stop_after_goal()
    else:
        acc.stop()
    if acc.active is None:
        return "Nothing to stop."
    return f"Stopped. #{acc.active.id} total {format_duration(acc.accumulated)}."


def cmd_continue(state: AppState, args: list[str]) -> str:
    acc = state.accumulator
    if not acc.is_prompting:
        return "No goal prompt pending."
    acc.continue_after_goal()
    if acc.state != TimerState.RUNNING:
        return f"Could not continue: {acc.last_error or 'unknown error'}"
    return "Continuing past the goal."


def cmd_done(state: AppState, args: list[str]) -> str:
    instance_id = _parse_id(args, "/done <id>")
    completed = toggle_completion(state, instance_id)
    return f"#{instance_id} marked {'done' if completed else 'not done'}."


def cmd_check(state: AppState, args: list[str]) -> str:
    """/check <id> <item number> -> toggle a checklist item (1-based)."""
    if len(args) < 2:
        return "Usage: /check <id> <item number>"
    instance_id = _parse_id(args, "/check <id> <item number>")
    new_state = toggle_checklist_item(state, instance_id, int(args[1]) - 1)
    inst = _find_instance(state, instance_id)
    lines = [f"#{inst.id} {inst.title} checklist:"]
    for text, checked in zip(inst.checklist, new_state):
        lines.append(f"  [{'x' if checked else ' '}] {text}")
    return "\n".join(lines)


def cmd_report(
    state: AppState,
    args: list[str],
    emit: CommandEmitter | None = None,
) -> str:
    """
    /report              -> this week
    /report YYYY-MM-DD   -> week containing that day
    """
    day = date.fromisoformat(args[0]) if args else today()
    if emit:
        with contextlib.suppress(Exception):
            emit("[REPORT] Collecting the week...")

    report = build_weekly_report(state.store, day)
    lines = [
        f"Week {report.start_day.isoformat()} .. {report.end_day.isoformat()}, "
        f"total {format_duration(report.total_seconds)}",
    ]
    for d in report.days:
        lines.append(f"  {d.day.strftime('%a %d %b')}: {format_duration(d.seconds)}")
        for t in d.tasks:
            lines.append(f"      {t.title}: {format_duration(t.seconds)}")
    if report.categories:
        lines.append("  By category:")
        for c in report.categories:
            lines.append(f"    {c.name}: {c.percentage:.0f}% ({format_duration(c.seconds)})")
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show the timer of the selected task.")
registry.register("categories", cmd_categories, help_text="List categories.")
registry.register(
    "category", cmd_category, help_text="/category add <name> [#color] | edit <id> [name] [#color] | rm <id>."
)
registry.register("templates", cmd_templates, help_text="List task templates.")
registry.register(
    "template",
    cmd_template,
    help_text="/template add <title> [goal=45m] [cat=<id>] [check=a;b] | edit <id> [title] [options] | rm <id>.",
)
registry.register("plan", cmd_plan, help_text="Add templates to today: /plan <id> [<id> ...].")
registry.register("today", cmd_today, help_text="Show today's tasks.", aliases=["ls"])
registry.register(
    "task", cmd_task, help_text="/task edit <id> [goal=..] [priority=N] [desc=..] | order <ids...> | rm <id>."
)
registry.register("select", cmd_select, help_text="Select a task: /select <id>.")
registry.register("start", cmd_start, help_text="Start timing: /start [id].")
registry.register("pause", cmd_pause, help_text="Pause the running task.")
registry.register("resume", cmd_resume, help_text="Resume the paused task.")
registry.register("stop", cmd_stop, help_text="Stop timing the selected task.")
registry.register("continue", cmd_continue, help_text="Keep going after the goal prompt.")
registry.register("done", cmd_done, help_text="Toggle completion: /done <id>.")
registry.register("check", cmd_check, help_text="Toggle a checklist item: /check <id> <n>.")
registry.register("report", cmd_report, help_text="Weekly report: /report [YYYY-MM-DD].")
