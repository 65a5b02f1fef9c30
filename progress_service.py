"""
Progress service

Loads a user's ProgressRecord, runs one progress_engine operation on it and
writes the changed fields back with a version-conditioned update. The lazy
daily reset runs before every operation, and the scheduled sweep goes
through the same reset path.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Sequence

import progress_engine as engine
from config import DAILY_LIMITS
from database import ConcurrentUpdateError, StoreWriteError, UserRecordStore
from schemas import (
    Category,
    CompletionResult,
    DailyLimitResult,
    GaugeView,
    Milestone,
    Mood,
    ProgressRecord,
    ResetResult,
    SweepSummary,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionStatusProvider:
    def is_pro(self, user_id: str) -> bool:
        raise NotImplementedError


class StoredSubscriptionStatus(SubscriptionStatusProvider):
    """Reads the is_pro flag that billing webhooks mirror onto the progress document."""

    def __init__(self, store: UserRecordStore):
        self.store = store

    def is_pro(self, user_id):
        record = self.store.get(user_id)
        return bool(record and record.is_pro)


class ProgressService:

    def __init__(
        self,
        store: UserRecordStore,
        clock: Clock = utcnow,
        subscriptions: Optional[SubscriptionStatusProvider] = None,
        limits: Optional[Dict[Category, int]] = None,
        milestones: Sequence[Milestone] = engine.MILESTONES,
    ):
        self.store = store
        self.clock = clock
        self.subscriptions = subscriptions or StoredSubscriptionStatus(store)
        self.limits = dict(DAILY_LIMITS if limits is None else limits)
        self.milestones = milestones

    # ----------------------
    # Persistence
    # ----------------------

    def _load(self, user_id: str) -> ProgressRecord:
        record = self.store.get(user_id)
        if record is None:
            logger.info("Creating progress for new user %s", user_id[-8:])
            record = self.store.create(engine.new_progress_record(user_id, self.milestones))
        return record

    def _write(self, before: ProgressRecord, after: ProgressRecord) -> ProgressRecord:
        old = before.model_dump(exclude={"version"})
        fields = {k: v for k, v in after.model_dump(exclude={"version"}).items() if old.get(k) != v}
        if not fields:
            return after
        if not self.store.update(before.user_id, fields, expected_version=before.version):
            raise ConcurrentUpdateError(f"Progress for {before.user_id} changed during update")
        return after.model_copy(update={"version": before.version + 1})

    def _reset_if_due(self, record: ProgressRecord) -> ResetResult:
        result = engine.check_and_apply_daily_reset(record, self.clock())
        if not result.did_reset:
            return result
        try:
            return ResetResult(record=self._write(record, result.record), did_reset=True)
        except ConcurrentUpdateError:
            # someone else wrote first, most likely the sweep; re-check once against their write
            fresh = self._load(record.user_id)
            retry = engine.check_and_apply_daily_reset(fresh, self.clock())
            if not retry.did_reset:
                return retry
            return ResetResult(record=self._write(fresh, retry.record), did_reset=True)

    def refresh(self, user_id: str) -> ResetResult:
        """Load (creating if needed) and apply the lazy daily reset."""
        return self._reset_if_due(self._load(user_id))

    # ----------------------
    # Operations
    # ----------------------

    def get_progress(self, user_id: str, view: GaugeView = "lifetime"):
        record = self.refresh(user_id).record
        return record, engine.milestone_view(record, view, self.milestones)

    def get_mood(self, user_id: str) -> Mood:
        return self.refresh(user_id).record.current_mood

    def _apply_delta(self, user_id: str, delta: int) -> CompletionResult:
        record = self.refresh(user_id).record
        updated = engine.apply_task_completion_delta(record, delta, self.milestones)
        reached = engine.reached_new_milestone(record, updated, self.milestones)
        saved = self._write(record, updated)
        if saved.max_value != record.max_value:
            logger.info(
                "User %s moved to %s tier (%d completed)",
                user_id[-8:], saved.current_mood, saved.all_time_completed,
            )
        return CompletionResult(
            record=saved,
            reached_new_milestone=reached,
            milestone=engine.milestone_view(saved, "lifetime", self.milestones),
        )

    def complete_task(self, user_id: str) -> CompletionResult:
        """Caller guarantees one task just went from incomplete to complete."""
        return self._apply_delta(user_id, 1)

    def uncomplete_task(self, user_id: str) -> CompletionResult:
        return self._apply_delta(user_id, -1)

    def limit_for(self, category: Category) -> int:
        return self.limits[category]

    def check_limit(self, user_id: str, category: Category, consume: bool = True) -> DailyLimitResult:
        record = self.refresh(user_id).record
        is_pro = self.subscriptions.is_pro(user_id)
        check = engine.check_daily_limit if consume else engine.daily_limit_status
        result = check(record, category, self.limit_for(category), is_pro, self.clock())
        return result.model_copy(update={"record": self._write(record, result.record)})

    def submit_mood(self, user_id: str, mood: Mood) -> DailyLimitResult:
        """Record a user mood check-in; counts against the mood_check limit."""
        record = self.refresh(user_id).record
        is_pro = self.subscriptions.is_pro(user_id)
        result = engine.check_daily_limit(
            record, Category.MOOD_CHECK, self.limit_for(Category.MOOD_CHECK), is_pro, self.clock(),
        )
        updated = result.record
        if result.allowed:
            updated = engine.apply_mood_check_in(updated, mood)
        return result.model_copy(update={"record": self._write(record, updated)})

    # ----------------------
    # Scheduled sweep
    # ----------------------

    def run_daily_reset_sweep(self) -> SweepSummary:
        now = self.clock()
        summary = SweepSummary()
        for record in self.store.find_due_for_reset(now - engine.RESET_INTERVAL):
            summary.examined += 1
            result = engine.check_and_apply_daily_reset(record, now)
            if not result.did_reset:
                summary.skipped += 1
                continue
            try:
                self._write(record, result.record)
            except ConcurrentUpdateError:
                # already handled by a request for this user
                summary.skipped += 1
            except StoreWriteError:
                logger.exception("Daily reset failed for user %s", record.user_id[-8:])
                summary.failed.append(record.user_id)
            else:
                summary.reset += 1
        logger.info(
            "Reset sweep: %d examined, %d reset, %d skipped, %d failed",
            summary.examined, summary.reset, summary.skipped, len(summary.failed),
        )
        return summary

    # ----------------------
    # Admin
    # ----------------------

    def reset_milestone(self, user_id: str) -> ProgressRecord:
        record = self.refresh(user_id).record
        return self._write(record, engine.reset_milestone_progress(record, self.milestones))

    def reset_all_time(self, user_id: str) -> ProgressRecord:
        record = self._load(user_id)
        return self._write(record, engine.reset_all_time(record, self.milestones))

    def reset_counter(self, user_id: str, category: Category) -> ProgressRecord:
        record = self._load(user_id)
        return self._write(record, engine.reset_daily_counter(record, category))

    def delete_user(self, user_id: str) -> bool:
        deleted = self.store.delete(user_id)
        if deleted:
            logger.info("Deleted progress for user %s", user_id[-8:])
        return deleted
