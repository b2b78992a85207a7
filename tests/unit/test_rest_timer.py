"""
Unit tests for the rest timer engine.

Covered:
- to_safe_rest_seconds sanitizing
- start / pause / resume / extend arithmetic
- RestTimerMonitor: single completion per instance, re-arming, run loop
"""

import asyncio
import math
from datetime import timedelta

import pytest

from liftlog_mcp.liftlog.rest_timer import (
    RestTimerMonitor,
    elapsed_seconds,
    extend_rest_timer,
    pause_rest_timer,
    remaining_seconds,
    resume_rest_timer,
    start_rest_timer,
    to_safe_rest_seconds,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# to_safe_rest_seconds
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    (90, 90),
    (90.4, 90),
    (90.5, 91),
    (-5, 0),
    (0, 0),
])
def test_to_safe_rest_seconds_rounds_and_clamps(value, expected):
    """Numbers are rounded half up and clamped at zero."""
    assert to_safe_rest_seconds(value) == expected


@pytest.mark.parametrize("value", ["abc", None, True, math.nan, math.inf, [60]])
def test_to_safe_rest_seconds_falls_back_for_non_numbers(value):
    """Anything that is not a finite number yields the fallback."""
    assert to_safe_rest_seconds(value) == 90
    assert to_safe_rest_seconds(value, fallback=45) == 45


# ---------------------------------------------------------------------------
# Timer arithmetic
# ---------------------------------------------------------------------------

def test_start_rest_timer_sanitizes_duration(t0):
    """The duration is stored as safe whole seconds."""
    timer = start_rest_timer("ex-1", 2, 59.6, now=t0)
    assert timer.duration_seconds == 60
    assert timer.set_index == 2
    assert timer.started_at == t0
    assert timer.paused_at is None
    assert timer.instance_id


def test_each_start_creates_new_instance(t0):
    """Two timers for the same set are distinct instances."""
    first = start_rest_timer("ex-1", 0, 90, now=t0)
    second = start_rest_timer("ex-1", 0, 90, now=t0)
    assert first.instance_id != second.instance_id


def test_remaining_seconds_counts_down_from_wall_clock(t0):
    """Remaining time is duration minus wall-clock elapsed time."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert remaining_seconds(timer, t0 + timedelta(seconds=30)) == 60
    assert remaining_seconds(timer, t0 + timedelta(seconds=30.9)) == 60


def test_remaining_seconds_after_suspension_is_zero(t0):
    """A process suspended for the whole interval sees the countdown finished."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert remaining_seconds(timer, t0 + timedelta(minutes=10)) == 0


def test_pause_freezes_and_resume_continues(t0):
    """After pausing at 30s and resuming much later, 60s remain."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)

    paused = pause_rest_timer(timer, t0 + timedelta(seconds=30))
    assert paused.paused_elapsed_seconds == 30
    assert remaining_seconds(paused, t0 + timedelta(seconds=200)) == 60

    resumed = resume_rest_timer(paused, t0 + timedelta(seconds=200))
    assert resumed.paused_at is None
    assert resumed.started_at == t0 + timedelta(seconds=170)
    assert remaining_seconds(resumed, t0 + timedelta(seconds=200)) == 60
    assert remaining_seconds(resumed, t0 + timedelta(seconds=230)) == 30


def test_pause_twice_is_a_noop(t0):
    """Pausing an already paused timer returns it unchanged."""
    paused = pause_rest_timer(start_rest_timer("ex-1", 0, 90, now=t0), t0)
    assert pause_rest_timer(paused, t0 + timedelta(seconds=10)) is paused


def test_resume_running_timer_is_a_noop(t0):
    """Resuming a running timer returns it unchanged."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert resume_rest_timer(timer, t0 + timedelta(seconds=10)) is timer


def test_extend_adds_to_duration(t0):
    """Extending adds seconds and clamps the result at zero."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert extend_rest_timer(timer, 30).duration_seconds == 120
    assert extend_rest_timer(timer, -200).duration_seconds == 0


def test_extend_with_invalid_amount_keeps_timer(t0):
    """A non-numeric extension leaves the timer untouched."""
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert extend_rest_timer(timer, "30") is timer
    assert extend_rest_timer(timer, None) is timer


def test_elapsed_while_paused_uses_frozen_value(t0):
    """A paused timer reports the elapsed value captured at pause."""
    paused = pause_rest_timer(start_rest_timer("ex-1", 0, 90, now=t0), t0 + timedelta(seconds=12))
    assert elapsed_seconds(paused, t0 + timedelta(hours=1)) == 12


# ---------------------------------------------------------------------------
# RestTimerMonitor
# ---------------------------------------------------------------------------

def test_monitor_fires_once_per_instance(t0):
    """Completion is delivered exactly once, however often it is checked."""
    events = []
    monitor = RestTimerMonitor()
    monitor.subscribe(events.append)
    timer = start_rest_timer("ex-1", 1, 90, now=t0)

    assert monitor.check(timer, t0 + timedelta(seconds=89)) is False
    assert monitor.check(timer, t0 + timedelta(seconds=90)) is True
    assert monitor.check(timer, t0 + timedelta(seconds=91)) is False
    assert monitor.check(timer, t0 + timedelta(seconds=500)) is False

    assert len(events) == 1
    assert events[0].instance_id == timer.instance_id
    assert events[0].exercise_id == "ex-1"
    assert events[0].set_index == 1


def test_monitor_fires_for_new_instance(t0):
    """A fresh timer after completion signals again."""
    monitor = RestTimerMonitor()
    first = start_rest_timer("ex-1", 0, 10, now=t0)
    second = start_rest_timer("ex-1", 1, 10, now=t0)

    assert monitor.check(first, t0 + timedelta(seconds=10)) is True
    assert monitor.check(second, t0 + timedelta(seconds=10)) is True


def test_monitor_rearms_after_extension(t0):
    """Extending a completed timer lets it complete once more."""
    monitor = RestTimerMonitor()
    timer = start_rest_timer("ex-1", 0, 90, now=t0)
    assert monitor.check(timer, t0 + timedelta(seconds=90)) is True

    extended = extend_rest_timer(timer, 30)
    assert monitor.check(extended, t0 + timedelta(seconds=91)) is False
    assert monitor.check(extended, t0 + timedelta(seconds=120)) is True


def test_monitor_ignores_missing_timer(t0):
    assert RestTimerMonitor().check(None, t0) is False


@pytest.mark.asyncio
async def test_monitor_run_loop_ticks_and_completes_once(clock):
    """The periodic loop reports remaining time and signals completion once."""
    timer = start_rest_timer("ex-1", 0, 60, now=clock())
    clock.advance(100)

    events, ticks = [], []
    monitor = RestTimerMonitor(clock=clock)
    monitor.subscribe(events.append)

    task = asyncio.create_task(monitor.run(lambda: timer, interval=0, on_tick=ticks.append))
    for _ in range(5):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert ticks and all(t == 0 for t in ticks)
    assert len(events) == 1
