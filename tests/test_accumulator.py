# tests/test_accumulator.py

from __future__ import annotations

from maday.tracking.accumulator import SessionAccumulator
from maday.tracking.models import EventKind, GoalState, TimerState

from .fakes import FakeClock, RecordingListener


def _ticks(acc: SessionAccumulator, clock: FakeClock, n: int, step: float = 1.0) -> None:
    for _ in range(n):
        clock.advance(step)
        acc.tick()


def test_stopwatch_mode_pause_after_65_ticks(acc, repo, clock, listener) -> None:
    task = repo.add_instance("A", goal_seconds=0)

    acc.start(task)
    _ticks(acc, clock, 65)
    acc.pause()

    assert acc.state == TimerState.PAUSED
    assert acc.accumulated == 65
    assert repo.total(task.id) == 65
    assert listener.count(EventKind.GOAL_REACHED) == 0
    assert all(s["end"] is not None for s in repo.sessions_for(task.id))


def test_goal_prompt_then_stop(acc, repo, clock, listener) -> None:
    task = repo.add_instance("B", goal_seconds=5)

    acc.start(task)
    _ticks(acc, clock, 5)

    goal_events = [e for e in listener.events if e.kind == EventKind.GOAL_REACHED]
    assert len(goal_events) == 1
    assert goal_events[0].accumulated == 5
    assert acc.is_prompting

    acc.stop_after_goal()

    assert acc.state == TimerState.FINISHED
    assert acc.goal_state == GoalState.ACKNOWLEDGED
    assert acc.accumulated == 5
    assert repo.total(task.id) == 5


def test_plain_stop_during_goal_prompt_settles_it(acc, repo, clock, listener) -> None:
    task = repo.add_instance("B", goal_seconds=5)

    acc.start(task)
    _ticks(acc, clock, 5)
    assert acc.is_prompting

    acc.stop()

    assert acc.state == TimerState.FINISHED
    assert acc.goal_state == GoalState.ACKNOWLEDGED
    assert not acc.is_prompting

    acc.continue_after_goal()
    acc.stop_after_goal()
    assert acc.state == TimerState.FINISHED
    assert len(repo.sessions_for(task.id)) == 1
    assert listener.count(EventKind.GOAL_REACHED) == 1


def test_continue_after_goal_needs_pending_prompt(acc, repo, clock) -> None:
    task = repo.add_instance("B", goal_seconds=5)

    acc.continue_after_goal()
    assert acc.state == TimerState.IDLE

    acc.start(task)
    _ticks(acc, clock, 2)
    acc.continue_after_goal()
    assert acc.state == TimerState.RUNNING
    assert acc.elapsed == 2
    assert acc.goal_state == GoalState.NOT_REACHED

    acc.pause()
    acc.continue_after_goal()
    assert acc.state == TimerState.PAUSED
    assert len(repo.sessions_for(task.id)) == 1


def test_select_none_clears_goal_prompt(acc, repo, clock) -> None:
    task = repo.add_instance("B", goal_seconds=2)
    acc.start(task)
    _ticks(acc, clock, 2)
    assert acc.is_prompting

    acc.select(None)

    assert acc.goal_state == GoalState.NOT_REACHED
    assert acc.state == TimerState.IDLE


def test_goal_prompt_suspends_tracking(acc, repo, clock) -> None:
    task = repo.add_instance("B", goal_seconds=5)

    acc.start(task)
    _ticks(acc, clock, 5)
    # prompt pending: further clock edges must not accumulate
    _ticks(acc, clock, 10)

    assert acc.state == TimerState.PAUSED
    assert repo.total(task.id) == 5


def test_continue_after_goal_never_reprompts(acc, repo, clock, listener) -> None:
    task = repo.add_instance("B", goal_seconds=3)

    acc.start(task)
    _ticks(acc, clock, 3)
    assert acc.is_prompting

    acc.continue_after_goal()
    assert acc.state == TimerState.RUNNING
    assert acc.elapsed == 0
    assert acc.goal_state == GoalState.ACKNOWLEDGED

    _ticks(acc, clock, 10)
    acc.pause()
    acc.resume()
    _ticks(acc, clock, 2)

    assert listener.count(EventKind.GOAL_REACHED) == 1
    assert acc.accumulated == 15
    assert acc.elapsed == 12


def test_resume_while_prompted_counts_as_continue(acc, repo, clock, listener) -> None:
    task = repo.add_instance("B", goal_seconds=2)

    acc.start(task)
    _ticks(acc, clock, 2)
    acc.resume()

    assert acc.state == TimerState.RUNNING
    assert acc.goal_state == GoalState.ACKNOWLEDGED
    _ticks(acc, clock, 5)
    assert listener.count(EventKind.GOAL_REACHED) == 1


def test_fresh_start_resets_goal_prompt(acc, repo, clock, listener) -> None:
    task = repo.add_instance("B", goal_seconds=2)

    acc.start(task)
    _ticks(acc, clock, 2)
    acc.stop_after_goal()

    acc.start(task)
    assert acc.goal_state == GoalState.NOT_REACHED
    _ticks(acc, clock, 1)

    assert listener.count(EventKind.GOAL_REACHED) == 2
    assert acc.accumulated == 3


def test_select_while_running_stops_previous_first(acc, repo, clock, listener) -> None:
    a = repo.add_instance("A")
    c = repo.add_instance("C")

    acc.start(a)
    _ticks(acc, clock, 3)
    clock.advance(0.5)  # partial second before the switch
    listener.events.clear()

    acc.select(c)

    assert repo.total(a.id) == 3.5
    assert all(s["end"] is not None for s in repo.sessions_for(a.id))

    changes = [(e.instance_id, e.state) for e in listener.events if e.kind == EventKind.STATE_CHANGED]
    assert changes == [(a.id, TimerState.FINISHED), (c.id, TimerState.IDLE)]
    assert acc.active is not None and acc.active.id == c.id
    assert acc.state == TimerState.IDLE


def test_select_state_depends_on_prior_time(acc, repo) -> None:
    fresh = repo.add_instance("fresh")
    worked = repo.add_instance("worked", accumulated=120)

    acc.select(fresh)
    assert acc.state == TimerState.IDLE

    acc.select(worked)
    assert acc.state == TimerState.FINISHED
    assert acc.accumulated == 120


def test_select_same_task_keeps_running(acc, repo, clock) -> None:
    a = repo.add_instance("A")
    acc.start(a)
    _ticks(acc, clock, 2)

    acc.select(a)

    assert acc.state == TimerState.RUNNING
    _ticks(acc, clock, 1)
    assert acc.accumulated == 3


def test_clock_going_backwards_never_subtracts(acc, repo, clock) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 3)

    clock.advance(-10)
    acc.tick()
    assert acc.accumulated == 3

    # counting restarts from the new (earlier) reading
    _ticks(acc, clock, 2)
    assert acc.accumulated == 5
    assert repo.total(task.id) == 5


def test_zero_delta_tick_is_noop(acc, repo, clock, listener) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    writes = repo.write_calls

    acc.tick()
    acc.tick(clock.now)

    assert acc.accumulated == 0
    assert repo.write_calls == writes
    assert listener.count(EventKind.TICK) == 0


def test_invalid_transitions_are_noops(acc, repo, clock) -> None:
    acc.stop()
    acc.pause()
    acc.resume()
    acc.start()
    acc.tick(clock.advance(1))
    assert acc.state == TimerState.IDLE
    assert acc.active is None

    task = repo.add_instance("A")
    acc.select(task)
    acc.pause()
    acc.resume()
    assert acc.state == TimerState.IDLE

    acc.start()
    acc.start()  # double tap
    assert len(repo.sessions) == 1

    acc.resume()
    assert acc.state == TimerState.RUNNING

    acc.pause()
    acc.pause()
    acc.stop()
    acc.stop()
    assert acc.state == TimerState.FINISHED
    assert len(repo.sessions) == 1


def test_start_from_paused_is_rejected(acc, repo, clock) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 1)
    acc.pause()

    acc.start(task)

    assert acc.state == TimerState.PAUSED
    assert len(repo.sessions) == 1


def test_accumulated_equals_sum_of_running_deltas(acc, repo, clock) -> None:
    task = repo.add_instance("A")
    expected = 0.0

    acc.start(task)
    for step in (1.0, 1.0, 0.25, 2.0):
        clock.advance(step)
        acc.tick()
        expected += step
    acc.pause()

    clock.advance(30)  # paused time does not count
    acc.tick()
    acc.resume()
    for step in (1.0, 1.5):
        clock.advance(step)
        acc.tick()
        expected += step
    clock.advance(0.75)
    expected += 0.75
    acc.stop()

    assert acc.state == TimerState.FINISHED
    assert repo.total(task.id) == expected
    assert sum(s["duration"] for s in repo.sessions_for(task.id)) == expected
    assert len(repo.sessions_for(task.id)) == 2
    assert acc.running_total == 0
    assert acc.elapsed == 0


def test_only_one_task_accumulates(acc, repo, clock) -> None:
    a = repo.add_instance("A")
    b = repo.add_instance("B")

    acc.start(a)
    _ticks(acc, clock, 2)
    acc.start(b)
    _ticks(acc, clock, 4)

    assert repo.total(a.id) == 2
    assert repo.total(b.id) == 4
    open_sessions = [s for s in repo.sessions.values() if s["end"] is None]
    assert len(open_sessions) == 1
    assert open_sessions[0]["instance_id"] == b.id


def test_store_failure_keeps_time_and_recovers(acc, repo, clock, listener) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 1)

    repo.fail_writes = True
    _ticks(acc, clock, 2)

    assert acc.accumulated == 3
    assert repo.total(task.id) == 1
    assert acc.last_error is not None
    assert acc.has_pending
    assert listener.count(EventKind.PERSISTENCE_FAILED) >= 1

    repo.fail_writes = False
    _ticks(acc, clock, 1)

    assert repo.total(task.id) == 4
    assert acc.accumulated == 4
    assert acc.last_error is None
    assert not acc.has_pending
    assert listener.count(EventKind.PERSISTENCE_RECOVERED) == 1
    assert sum(s["duration"] for s in repo.sessions_for(task.id)) == 4


def test_failed_pause_is_retried(acc, repo, clock) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 2)

    repo.fail_writes = True
    clock.advance(1)
    acc.pause()

    assert acc.state == TimerState.PAUSED
    assert acc.accumulated == 3
    assert repo.sessions_for(task.id)[0]["end"] is None

    repo.fail_writes = False
    assert acc.flush_pending() is True
    assert repo.total(task.id) == 3
    assert repo.sessions_for(task.id)[0]["end"] is not None


def test_backlog_of_previous_task_survives_switch(acc, repo, clock) -> None:
    a = repo.add_instance("A")
    b = repo.add_instance("B")
    acc.start(a)

    repo.fail_writes = True
    _ticks(acc, clock, 2)
    acc.select(b)
    assert acc.live_elapsed(a) == 2

    repo.fail_writes = False
    acc.start(b)
    _ticks(acc, clock, 1)

    assert repo.total(a.id) == 2
    assert repo.total(b.id) == 1


def test_start_fails_when_session_cannot_be_opened(acc, repo, listener) -> None:
    task = repo.add_instance("A")
    acc.select(task)

    repo.fail_writes = True
    acc.start()

    assert acc.state == TimerState.IDLE
    assert acc.last_error is not None
    assert listener.count(EventKind.PERSISTENCE_FAILED) == 1

    repo.fail_writes = False
    acc.start()
    assert acc.state == TimerState.RUNNING


def test_listener_errors_do_not_break_tracking(repo, clock) -> None:
    acc = SessionAccumulator(repo, clock=clock)

    def broken(_event) -> None:
        raise RuntimeError("boom")

    seen = RecordingListener()
    acc.subscribe(broken)
    unsubscribe = acc.subscribe(seen)

    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 2)
    assert acc.accumulated == 2
    assert seen.count(EventKind.TICK) == 2

    unsubscribe()
    _ticks(acc, clock, 1)
    assert seen.count(EventKind.TICK) == 2


def test_live_elapsed_for_active_and_other_tasks(acc, repo, clock) -> None:
    a = repo.add_instance("A", accumulated=10)
    b = repo.add_instance("B", accumulated=7)

    acc.start(a)
    _ticks(acc, clock, 3)

    assert acc.live_elapsed(a) == 13
    assert acc.live_elapsed(b) == 7


def test_select_none_clears_candidate(acc, repo, clock) -> None:
    task = repo.add_instance("A")
    acc.start(task)
    _ticks(acc, clock, 1)

    acc.select(None)

    assert acc.active is None
    assert acc.state == TimerState.IDLE
    assert repo.total(task.id) == 1
