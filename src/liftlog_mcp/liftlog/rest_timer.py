"""Rest timer arithmetic and transitions.

Elapsed time is always derived from wall-clock timestamps, never from
counting ticks, so a countdown stays correct when the process is suspended
for the whole interval and the display loop can skip ticks without drift.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from liftlog_mcp.liftlog.models import RestTimer, new_id

logger = logging.getLogger(__name__)

DEFAULT_REST_SECONDS = 90


class RestTimerCompleted(BaseModel):
    """Signalled once when a rest timer instance reaches zero."""
    instance_id: str
    exercise_id: str
    set_index: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_safe_rest_seconds(value: object, fallback: int = DEFAULT_REST_SECONDS) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if math.isnan(value) or math.isinf(value):
        return fallback
    return max(0, math.floor(value + 0.5))


def elapsed_seconds(timer: RestTimer, now: datetime | None = None) -> int:
    if timer.paused_at is not None:
        return max(0, timer.paused_elapsed_seconds or 0)
    now = now or _utcnow()
    return max(0, math.floor((now - timer.started_at).total_seconds()))


def remaining_seconds(timer: RestTimer, now: datetime | None = None) -> int:
    return max(0, timer.duration_seconds - elapsed_seconds(timer, now))


def start_rest_timer(
    exercise_id: str,
    set_index: int,
    duration_seconds: object,
    now: datetime | None = None,
) -> RestTimer:
    return RestTimer(
        exercise_id=exercise_id,
        set_index=set_index,
        duration_seconds=to_safe_rest_seconds(duration_seconds),
        started_at=now or _utcnow(),
        instance_id=new_id("rest"),
    )


def pause_rest_timer(timer: RestTimer, now: datetime | None = None) -> RestTimer:
    if timer.is_paused:
        return timer
    now = now or _utcnow()
    return timer.model_copy(update={
        "paused_at": now,
        "paused_elapsed_seconds": elapsed_seconds(timer, now),
    })


def resume_rest_timer(timer: RestTimer, now: datetime | None = None) -> RestTimer:
    """Continue counting from the frozen elapsed value.

    ``started_at`` is moved forward so that ``now - started_at`` equals the
    elapsed time captured at pause.
    """
    if not timer.is_paused:
        return timer
    now = now or _utcnow()
    paused_elapsed = max(0, timer.paused_elapsed_seconds or 0)
    return timer.model_copy(update={
        "started_at": now - timedelta(seconds=paused_elapsed),
        "paused_at": None,
    })


def extend_rest_timer(timer: RestTimer, seconds: object) -> RestTimer:
    previous = timer.duration_seconds
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return timer
    duration = to_safe_rest_seconds(previous + seconds, previous)
    return timer.model_copy(update={"duration_seconds": duration})


class RestTimerMonitor:
    """Fires the completion signal exactly once per timer instance."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._completed_instance: str | None = None
        self._sinks: list[Callable[[RestTimerCompleted], None]] = []

    def subscribe(self, sink: Callable[[RestTimerCompleted], None]) -> None:
        self._sinks.append(sink)

    def check(self, timer: RestTimer | None, now: datetime | None = None) -> bool:
        """Return True when this call delivered the completion signal."""
        if timer is None:
            return False
        now = now or self._clock()

        if remaining_seconds(timer, now) > 0:
            # an extended timer may complete again
            if self._completed_instance == timer.instance_id:
                self._completed_instance = None
            return False

        if self._completed_instance == timer.instance_id:
            return False

        self._completed_instance = timer.instance_id
        event = RestTimerCompleted(
            instance_id=timer.instance_id,
            exercise_id=timer.exercise_id,
            set_index=timer.set_index,
        )
        logger.debug("Rest timer %s completed", timer.instance_id)
        for sink in self._sinks:
            sink(event)
        return True

    async def run(
        self,
        get_timer: Callable[[], RestTimer | None],
        interval: float = 1.0,
        on_tick: Callable[[int], None] | None = None,
    ) -> None:
        """Recompute the countdown periodically until cancelled."""
        while True:
            timer = get_timer()
            if timer is not None:
                now = self._clock()
                if on_tick:
                    on_tick(remaining_seconds(timer, now))
                self.check(timer, now)
            await asyncio.sleep(interval)
