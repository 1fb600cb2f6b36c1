# src/maday/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..reports.weekly import format_duration
from ..tracking.models import EventKind, TimerEvent

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _on_timer_event(event: TimerEvent) -> None:
    """Surface what the user has to react to; ticks stay silent."""
    if event.kind == EventKind.GOAL_REACHED:
        goal = event.extra.get("goal_seconds", 0)
        _print_ts(
            f"[GOAL] Task #{event.instance_id} reached its goal "
            f"({format_duration(float(goal or 0))}). /continue to keep going or /stop to finish."
        )
    elif event.kind == EventKind.PERSISTENCE_FAILED:
        _print_ts(f"[STORAGE] {event.error} - tracked time is kept and will be retried.")
    elif event.kind == EventKind.PERSISTENCE_RECOVERED:
        _print_ts("[STORAGE] Saved again, nothing was lost.")


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    _print_ts("[CONSOLE] Use /help for commands, /today for today's list. Use /exit to quit.\n")

    unsubscribe = state.accumulator.subscribe(_on_timer_event)

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations
        print(f"[{_ts_local()}] {text}", flush=True)

    try:
        while True:
            try:
                user_input = input(">>> ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            try:
                with state.lock:
                    cmd_response = command_registry.handle(state, user_input, emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is None:
                cmd_response = "Commands start with '/'. Use /help to list them."
            _print_ts(cmd_response)
    finally:
        unsubscribe()

    logger.info("Console connector finished.")
