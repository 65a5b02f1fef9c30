"""
Progress engine for Teyra

Pure functions over a ProgressRecord: milestone lookup, completion deltas,
the rolling 24h daily reset, daily rate limits and the honesty score.
Nothing here performs I/O; the service layer loads and persists records.

Callers must serialize writes per user (see database.UserRecordStore).
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from schemas import (
    Category,
    DailyLimitResult,
    GaugeView,
    HonestyMetrics,
    HonestyMood,
    Milestone,
    MilestoneView,
    Mood,
    ProgressRecord,
    ResetResult,
)

logger = logging.getLogger(__name__)

# ----------------------
# Tables
# ----------------------

MILESTONES = (
    Milestone(threshold=0, mood="overwhelmed", max_value=10),
    Milestone(threshold=10, mood="neutral", max_value=15),
    Milestone(threshold=25, mood="energized", max_value=20),
    Milestone(threshold=45, mood="excited", max_value=25),
)

RESET_INTERVAL = timedelta(hours=24)

HONESTY_WEIGHTS = {
    "task_update_frequency": 0.30,
    "status_variety": 0.30,
    "timely_updates": 0.20,
    "consistent_checkins": 0.20,
}

HONESTY_HAPPY_MIN = 70
HONESTY_NEUTRAL_MIN = 40


def _short(user_id: str) -> str:
    return user_id[-8:]


def new_progress_record(user_id: str, milestones: Sequence[Milestone] = MILESTONES) -> ProgressRecord:
    """Default record for a user seen for the first time."""
    base = resolve_milestone(0, milestones)
    return ProgressRecord(user_id=user_id, current_mood=base.mood, max_value=base.max_value)


# ----------------------
# Milestones
# ----------------------

def resolve_milestone(all_time_completed: int, milestones: Sequence[Milestone] = MILESTONES) -> Milestone:
    """Return the tier with the greatest threshold not exceeding the count.

    The table is ordered by ascending threshold and scanned from the end, so
    with duplicate thresholds the later entry wins.
    """
    if all_time_completed < 0:
        raise ValueError(f"all_time_completed must be non-negative, got {all_time_completed}")
    for tier in reversed(milestones):
        if tier.threshold <= all_time_completed:
            return tier
    raise ValueError("milestone table has no tier at threshold 0")


def milestone_index(tier: Milestone, milestones: Sequence[Milestone] = MILESTONES) -> int:
    return list(milestones).index(tier)


def gauge_value(counter: int, max_value: int) -> int:
    return min(counter, max_value)


def milestone_view(
    record: ProgressRecord,
    view: GaugeView = "lifetime",
    milestones: Sequence[Milestone] = MILESTONES,
) -> MilestoneView:
    tier = resolve_milestone(record.all_time_completed, milestones)
    counter = record.all_time_completed if view == "lifetime" else record.daily_completed_tasks
    return MilestoneView(
        mood=tier.mood,
        max_value=tier.max_value,
        threshold=tier.threshold,
        milestone_index=milestone_index(tier, milestones),
        display_value=gauge_value(counter, tier.max_value),
        view=view,
    )


# ----------------------
# Task completion
# ----------------------

def apply_task_completion_delta(
    record: ProgressRecord,
    delta: int,
    milestones: Sequence[Milestone] = MILESTONES,
) -> ProgressRecord:
    """Apply +1 (task completed) or -1 (task uncompleted) to both counters.

    The caller guarantees that a +1 corresponds to exactly one task that just
    went from incomplete to complete. Decrements floor at zero.

    A mood picked in today's check-in survives completions that stay inside
    the same tier; crossing a tier always writes the tier's mood.
    """
    if delta not in (1, -1):
        raise ValueError(f"completion delta must be +1 or -1, got {delta}")

    before = resolve_milestone(record.all_time_completed, milestones)
    all_time = max(0, record.all_time_completed + delta)
    daily = max(0, record.daily_completed_tasks + delta)
    after = resolve_milestone(all_time, milestones)

    mood = record.current_mood
    if after.threshold != before.threshold or record.daily_mood_checks == 0:
        mood = after.mood

    return record.model_copy(update={
        "all_time_completed": all_time,
        "daily_completed_tasks": min(daily, all_time),
        "current_mood": mood,
        "max_value": after.max_value,
    })


def reached_new_milestone(
    before: ProgressRecord,
    after: ProgressRecord,
    milestones: Sequence[Milestone] = MILESTONES,
) -> bool:
    old = resolve_milestone(before.all_time_completed, milestones)
    new = resolve_milestone(after.all_time_completed, milestones)
    return new.threshold > old.threshold


def apply_mood_check_in(record: ProgressRecord, mood: Mood) -> ProgressRecord:
    return record.model_copy(update={"current_mood": mood})


# ----------------------
# Daily reset
# ----------------------

def _as_utc(value: datetime) -> datetime:
    # naive timestamps are stored UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_reset_due(last_reset_date: Optional[datetime], now: datetime) -> bool:
    if last_reset_date is None:
        return True
    return _as_utc(now) - _as_utc(last_reset_date) >= RESET_INTERVAL


def check_and_apply_daily_reset(record: ProgressRecord, now: datetime) -> ResetResult:
    """Zero every daily counter if 24h have passed since the last reset.

    Lifetime fields are never touched. Calling this again inside the same
    window returns the record unchanged with did_reset False.
    """
    if not is_reset_due(record.last_reset_date, now):
        return ResetResult(record=record, did_reset=False)

    updated = record.model_copy(update={
        "daily_completed_tasks": 0,
        "daily_mood_checks": 0,
        "daily_ai_splits": 0,
        "daily_parses": 0,
        "last_reset_date": now,
    })
    logger.info("Daily reset for user %s (last reset %s)", _short(record.user_id), record.last_reset_date)
    return ResetResult(record=updated, did_reset=True)


# ----------------------
# Daily limits
# ----------------------

def daily_limit_status(
    record: ProgressRecord,
    category: Category,
    limit: int,
    is_pro: bool,
    now: datetime,
) -> DailyLimitResult:
    """Report whether the next action would be allowed, without consuming it."""
    if limit < 0:
        raise ValueError(f"daily limit must be non-negative, got {limit}")
    reset = check_and_apply_daily_reset(record, now)
    used = getattr(reset.record, category.counter_field)
    return DailyLimitResult(
        category=category,
        allowed=is_pro or used < limit,
        before=used,
        after=used,
        limit=limit,
        remaining=max(0, limit - used),
        unlimited=is_pro,
        did_reset=reset.did_reset,
        record=reset.record,
    )


def check_daily_limit(
    record: ProgressRecord,
    category: Category,
    limit: int,
    is_pro: bool,
    now: datetime,
) -> DailyLimitResult:
    """Consume one action of ``category`` if allowed.

    The daily reset runs first so a stale counter is never compared against
    the limit. Pro users are never blocked; their counter still increments.
    """
    status = daily_limit_status(record, category, limit, is_pro, now)
    if not status.allowed:
        logger.info(
            "Daily %s limit reached for user %s (%d/%d)",
            category.value, _short(record.user_id), status.before, limit,
        )
        return status

    after = status.before + 1
    updated = status.record.model_copy(update={category.counter_field: after})
    return status.model_copy(update={
        "after": after,
        "remaining": max(0, limit - after),
        "record": updated,
    })


# ----------------------
# Honesty score
# ----------------------

def _clamp01(value: float) -> float:
    return min(1.0, max(0.0, value))


def compute_honesty_score(metrics: HonestyMetrics) -> int:
    raw = 100 * sum(weight * _clamp01(getattr(metrics, name)) for name, weight in HONESTY_WEIGHTS.items())
    # half-up, not banker's rounding
    return int(math.floor(raw + 0.5))


def mood_from_honesty(score: int) -> HonestyMood:
    if score >= HONESTY_HAPPY_MIN:
        return "happy"
    if score >= HONESTY_NEUTRAL_MIN:
        return "neutral"
    return "sad"


# ----------------------
# Admin
# ----------------------

def reset_milestone_progress(record: ProgressRecord, milestones: Sequence[Milestone] = MILESTONES) -> ProgressRecord:
    """Clear today's completions and re-derive mood and gauge from the lifetime count."""
    tier = resolve_milestone(record.all_time_completed, milestones)
    return record.model_copy(update={
        "daily_completed_tasks": 0,
        "current_mood": tier.mood,
        "max_value": tier.max_value,
    })


def reset_all_time(record: ProgressRecord, milestones: Sequence[Milestone] = MILESTONES) -> ProgressRecord:
    """The only operation that lowers all_time_completed."""
    tier = resolve_milestone(0, milestones)
    logger.warning(
        "Administrative all-time reset for user %s (was %d)",
        _short(record.user_id), record.all_time_completed,
    )
    return record.model_copy(update={
        "all_time_completed": 0,
        "daily_completed_tasks": 0,
        "current_mood": tier.mood,
        "max_value": tier.max_value,
    })


def reset_daily_counter(record: ProgressRecord, category: Category) -> ProgressRecord:
    return record.model_copy(update={category.counter_field: 0})
