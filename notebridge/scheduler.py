"""Adaptive polling interval.

The delay until the next poll is a pure function of the clock and the
persisted counters. Rules are evaluated top to bottom, first match wins:

  1. night window          -> ``night``
  2. recent activity       -> ``accelerated``
  3. too many empty checks -> linear ramp from ``base`` to ``max_inactive``
  4. otherwise             -> ``base``
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from notebridge import config
from notebridge.state import WorkerState

_MINUTE_MS = 60 * 1000
_STALE_ACTIVITY_DAYS = 7


@dataclass(frozen=True)
class IntervalPolicy:
    base: int = 5 * _MINUTE_MS
    accelerated: int = 2 * _MINUTE_MS
    night: int = 20 * _MINUTE_MS
    max_inactive: int = 15 * _MINUTE_MS
    night_start_hour: int = 0
    night_end_hour: int = 7
    recent_window_hours: float = 1
    empty_checks_before_slowdown: int = 5
    max_empty_checks: int = 20

    @classmethod
    def from_config(cls) -> "IntervalPolicy":
        return cls(
            base=config.INTERVAL_BASE_MS,
            accelerated=config.INTERVAL_ACCELERATED_MS,
            night=config.INTERVAL_NIGHT_MS,
            max_inactive=config.INTERVAL_MAX_INACTIVE_MS,
            night_start_hour=config.NIGHT_START_HOUR,
            night_end_hour=config.NIGHT_END_HOUR,
            recent_window_hours=config.ACTIVITY_RECENT_WINDOW_HOURS,
            empty_checks_before_slowdown=config.ACTIVITY_EMPTY_CHECKS_BEFORE_SLOWDOWN,
            max_empty_checks=config.ACTIVITY_MAX_EMPTY_CHECKS,
        )


def is_night(hour: int, policy: IntervalPolicy) -> bool:
    start, end = policy.night_start_hour, policy.night_end_hour
    if start <= end:
        return start <= hour < end
    # Window spans midnight, e.g. 23 -> 7
    return hour >= start or hour < end


def has_recent_activity(state: WorkerState, now: datetime, policy: IntervalPolicy) -> bool:
    if state.last_activity_at is None:
        return False
    return now - state.last_activity_at < timedelta(hours=policy.recent_window_hours)


def adaptive_interval(empty_checks: int, policy: IntervalPolicy) -> int:
    """Interpolate between ``base`` and ``max_inactive`` by empty-check count."""
    before = policy.empty_checks_before_slowdown
    if empty_checks < before:
        return policy.base
    span = policy.max_empty_checks - before
    factor = min((empty_checks - before) / span, 1.0) if span > 0 else 1.0
    return round(policy.base + (policy.max_inactive - policy.base) * factor)


def next_delay(
    state: WorkerState, now: datetime, policy: Optional[IntervalPolicy] = None,
) -> Tuple[int, str]:
    """Return (milliseconds, reason) until the next poll.

    ``now`` should carry the local timezone; its ``hour`` decides the night
    window.
    """
    policy = policy or IntervalPolicy.from_config()

    if is_night(now.hour, policy):
        return policy.night, f"night mode ({now.hour:02d}:00)"

    if has_recent_activity(state, now, policy):
        return policy.accelerated, (
            f"accelerated: activity in the last {policy.recent_window_hours:g}h"
        )

    empty = state.empty_checks_count
    if empty >= policy.empty_checks_before_slowdown:
        return adaptive_interval(empty, policy), f"adaptive: {empty} empty checks"

    return policy.base, "base interval"


def simulate(
    state: WorkerState,
    count: int = 5,
    now: Optional[datetime] = None,
    policy: Optional[IntervalPolicy] = None,
) -> List[Dict[str, Any]]:
    """Project the next ``count`` polls assuming every one of them is empty.

    Diagnostic only: works on copies, the given state is left untouched.
    """
    policy = policy or IntervalPolicy.from_config()
    clock = now or datetime.now().astimezone()
    current = state
    entries = []
    for i in range(count):
        interval, reason = next_delay(current, clock, policy)
        clock = clock + timedelta(milliseconds=interval)
        entries.append({
            "check_number": i + 1,
            "interval": interval,
            "interval_minutes": round(interval / _MINUTE_MS),
            "reason": reason,
            "estimated_time": clock,
        })
        current = dataclasses.replace(
            current,
            empty_checks_count=current.empty_checks_count + 1,
            last_check_at=clock,
        )
    return entries


def suggestions(
    state: WorkerState,
    now: Optional[datetime] = None,
    policy: Optional[IntervalPolicy] = None,
) -> List[Tuple[str, str]]:
    """Advisory (kind, message) pairs for status output. Never used for control flow."""
    policy = policy or IntervalPolicy.from_config()
    now = now or datetime.now().astimezone()
    empty = state.empty_checks_count
    result = []

    if empty > policy.max_empty_checks:
        result.append((
            "warning",
            f"Too many empty checks in a row ({empty}); accounts may be inactive.",
        ))
    if empty > policy.empty_checks_before_slowdown * 2:
        result.append((
            "optimization",
            "Consider raising the base interval to save resources.",
        ))

    if state.last_activity_at is None:
        result.append(("info", "No activity recorded yet; waiting for triggered notes."))
    else:
        days = (now - state.last_activity_at) / timedelta(days=1)
        if days > _STALE_ACTIVITY_DAYS:
            result.append(("warning", f"No activity in {round(days)} days."))

    return result


def statistics(
    state: WorkerState,
    now: Optional[datetime] = None,
    policy: Optional[IntervalPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or IntervalPolicy.from_config()
    now = now or datetime.now().astimezone()
    interval, reason = next_delay(state, now, policy)
    return {
        "interval": interval,
        "interval_minutes": round(interval / _MINUTE_MS),
        "reason": reason,
        "current_hour": now.hour,
        "is_night": is_night(now.hour, policy),
        "recent_activity": has_recent_activity(state, now, policy),
        "empty_checks_count": state.empty_checks_count,
        "next_check_estimate": now + timedelta(milliseconds=interval),
    }
