"""Tests for progress_engine - pure logic, no store or clock needed."""

from datetime import datetime, timedelta, timezone

import pytest

import progress_engine as engine
from schemas import Category, HonestyMetrics, Milestone, ProgressRecord

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def make_record(**fields) -> ProgressRecord:
    fields.setdefault("user_id", "user_2abcdefgh")
    return ProgressRecord(**fields)


def metrics(a, b, c, d) -> HonestyMetrics:
    return HonestyMetrics(
        task_update_frequency=a,
        status_variety=b,
        timely_updates=c,
        consistent_checkins=d,
    )


# =============================================================================
# Milestones
# =============================================================================


class TestResolveMilestone:

    @pytest.mark.parametrize(
        "count, threshold, mood, max_value",
        [
            (0, 0, "overwhelmed", 10),
            (9, 0, "overwhelmed", 10),
            (10, 10, "neutral", 15),
            (24, 10, "neutral", 15),
            (25, 25, "energized", 20),
            (44, 25, "energized", 20),
            (45, 45, "excited", 25),
            (1000, 45, "excited", 25),
        ],
    )
    def test_greatest_threshold_not_exceeding_count(self, count, threshold, mood, max_value):
        tier = engine.resolve_milestone(count)
        assert (tier.threshold, tier.mood, tier.max_value) == (threshold, mood, max_value)

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError):
            engine.resolve_milestone(-1)

    def test_duplicate_thresholds_prefer_later_entry(self):
        table = (
            Milestone(threshold=0, mood="sad", max_value=10),
            Milestone(threshold=5, mood="neutral", max_value=15),
            Milestone(threshold=5, mood="happy", max_value=30),
        )
        assert engine.resolve_milestone(7, table).mood == "happy"

    def test_table_without_zero_tier_is_an_error(self):
        table = (Milestone(threshold=3, mood="sad", max_value=10),)
        with pytest.raises(ValueError):
            engine.resolve_milestone(1, table)


class TestMilestoneView:

    def test_gauge_capped_at_tier_ceiling(self):
        view = engine.milestone_view(make_record(all_time_completed=60))
        assert view.max_value == 25
        assert view.display_value == 25

    def test_lifetime_view_uses_all_time_count(self):
        view = engine.milestone_view(make_record(all_time_completed=12, daily_completed_tasks=3))
        assert view.display_value == 12
        assert view.milestone_index == 1

    def test_today_view_uses_daily_count(self):
        view = engine.milestone_view(make_record(all_time_completed=12, daily_completed_tasks=3), "today")
        assert view.display_value == 3
        assert view.max_value == 15

    def test_gauge_value(self):
        assert engine.gauge_value(30, 25) == 25
        assert engine.gauge_value(4, 10) == 4


# =============================================================================
# Task completion
# =============================================================================


class TestTaskCompletionDelta:

    def test_ten_completions_reach_second_tier(self):
        record = engine.new_progress_record("user_2abcdefgh")
        for _ in range(10):
            record = engine.apply_task_completion_delta(record, 1)

        assert record.all_time_completed == 10
        assert record.daily_completed_tasks == 10
        assert record.max_value == 15
        assert record.current_mood == "neutral"
        assert engine.milestone_view(record).display_value == 10

    def test_complete_then_uncomplete_restores_counters(self):
        record = make_record(all_time_completed=5, daily_completed_tasks=2)
        restored = engine.apply_task_completion_delta(engine.apply_task_completion_delta(record, 1), -1)
        assert restored.all_time_completed == 5
        assert restored.daily_completed_tasks == 2
        assert restored.max_value == 10
        assert restored.current_mood == "overwhelmed"

    def test_uncomplete_crosses_tier_downward(self):
        record = make_record(all_time_completed=10, daily_completed_tasks=1, current_mood="neutral", max_value=15)
        updated = engine.apply_task_completion_delta(record, -1)
        assert updated.all_time_completed == 9
        assert updated.daily_completed_tasks == 0
        assert updated.max_value == 10
        assert updated.current_mood == "overwhelmed"

    def test_decrement_floors_at_zero(self):
        record = engine.new_progress_record("user_2abcdefgh")
        for _ in range(3):
            record = engine.apply_task_completion_delta(record, -1)
        assert record.all_time_completed == 0
        assert record.daily_completed_tasks == 0

    @pytest.mark.parametrize("delta", [0, 2, -2])
    def test_invalid_delta_rejected(self, delta):
        with pytest.raises(ValueError):
            engine.apply_task_completion_delta(make_record(), delta)

    def test_input_record_not_mutated(self):
        record = make_record(all_time_completed=3, daily_completed_tasks=3)
        engine.apply_task_completion_delta(record, 1)
        assert record.all_time_completed == 3

    def test_checked_in_mood_kept_within_tier(self):
        record = make_record(all_time_completed=3, daily_completed_tasks=3, daily_mood_checks=1, current_mood="happy")
        assert engine.apply_task_completion_delta(record, 1).current_mood == "happy"

    def test_tier_change_overrides_checked_in_mood(self):
        record = make_record(all_time_completed=9, daily_completed_tasks=2, daily_mood_checks=1, current_mood="happy")
        updated = engine.apply_task_completion_delta(record, 1)
        assert updated.current_mood == "neutral"
        assert updated.max_value == 15

    def test_reached_new_milestone(self):
        nine = make_record(all_time_completed=9, daily_completed_tasks=1)
        ten = engine.apply_task_completion_delta(nine, 1)
        eleven = engine.apply_task_completion_delta(ten, 1)
        assert engine.reached_new_milestone(nine, ten)
        assert not engine.reached_new_milestone(ten, eleven)
        assert not engine.reached_new_milestone(ten, nine)


# =============================================================================
# Daily reset
# =============================================================================


class TestDailyReset:

    def test_never_reset_is_due(self):
        assert engine.is_reset_due(None, NOW)

    def test_rolling_window_boundaries(self):
        assert not engine.is_reset_due(NOW - timedelta(hours=23, minutes=59), NOW)
        assert engine.is_reset_due(NOW - timedelta(hours=24), NOW)

    def test_naive_timestamp_treated_as_utc(self):
        naive = (NOW - timedelta(hours=25)).replace(tzinfo=None)
        assert engine.is_reset_due(naive, NOW)

    def test_stale_record_reset(self):
        record = make_record(
            all_time_completed=20,
            daily_completed_tasks=3,
            daily_mood_checks=1,
            daily_ai_splits=2,
            daily_parses=4,
            current_mood="neutral",
            max_value=15,
            last_reset_date=NOW - timedelta(hours=25),
        )
        result = engine.check_and_apply_daily_reset(record, NOW)

        assert result.did_reset
        assert result.record.daily_fields() == {
            "daily_completed_tasks": 0,
            "daily_mood_checks": 0,
            "daily_ai_splits": 0,
            "daily_parses": 0,
        }
        assert result.record.last_reset_date == NOW
        assert result.record.all_time_completed == 20
        assert result.record.current_mood == "neutral"
        assert result.record.max_value == 15

    def test_second_check_in_window_is_noop(self):
        record = make_record(daily_completed_tasks=3, all_time_completed=3, last_reset_date=NOW - timedelta(hours=25))
        first = engine.check_and_apply_daily_reset(record, NOW)
        second = engine.check_and_apply_daily_reset(first.record, NOW + timedelta(hours=1))
        assert not second.did_reset
        assert second.record == first.record

    def test_reset_not_realigned_to_midnight(self):
        last = datetime(2025, 3, 13, 15, 0, tzinfo=timezone.utc)
        record = make_record(last_reset_date=last)
        assert not engine.check_and_apply_daily_reset(record, datetime(2025, 3, 14, 0, 5, tzinfo=timezone.utc)).did_reset
        assert engine.check_and_apply_daily_reset(record, datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)).did_reset


# =============================================================================
# Daily limits
# =============================================================================


class TestDailyLimit:

    def fresh(self, **fields):
        return make_record(last_reset_date=NOW - timedelta(hours=1), **fields)

    def test_free_user_under_limit(self):
        result = engine.check_daily_limit(self.fresh(daily_parses=4), Category.AI_PARSE, 5, False, NOW)
        assert result.allowed
        assert (result.before, result.after, result.limit, result.remaining) == (4, 5, 5, 0)
        assert result.record.daily_parses == 5

    def test_free_user_at_limit_refused(self):
        result = engine.check_daily_limit(self.fresh(daily_parses=5), Category.AI_PARSE, 5, False, NOW)
        assert not result.allowed
        assert result.before == result.after == 5
        assert result.record.daily_parses == 5

    def test_stale_counter_reset_before_evaluation(self):
        record = make_record(daily_parses=5, last_reset_date=NOW - timedelta(hours=25))
        result = engine.check_daily_limit(record, Category.AI_PARSE, 5, False, NOW)
        assert result.allowed
        assert result.did_reset
        assert (result.before, result.after) == (0, 1)
        assert result.record.last_reset_date == NOW

    def test_pro_user_never_blocked(self):
        result = engine.check_daily_limit(self.fresh(daily_ai_splits=50), Category.AI_SPLIT, 2, True, NOW)
        assert result.allowed
        assert result.unlimited
        assert result.after == 51

    def test_status_does_not_consume(self):
        result = engine.daily_limit_status(self.fresh(daily_mood_checks=0), Category.MOOD_CHECK, 1, False, NOW)
        assert result.allowed
        assert result.after == 0
        assert result.record.daily_mood_checks == 0

    def test_zero_limit_blocks_free_users(self):
        assert not engine.check_daily_limit(self.fresh(), Category.AI_SPLIT, 0, False, NOW).allowed

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            engine.check_daily_limit(self.fresh(), Category.AI_SPLIT, -1, False, NOW)

    def test_only_named_counter_changes(self):
        record = self.fresh(daily_mood_checks=1, daily_ai_splits=1, daily_parses=1)
        updated = engine.check_daily_limit(record, Category.AI_SPLIT, 2, False, NOW).record
        assert (updated.daily_mood_checks, updated.daily_ai_splits, updated.daily_parses) == (1, 2, 1)


# =============================================================================
# Honesty score
# =============================================================================


class TestHonestyScore:

    def test_perfect_score(self):
        assert engine.compute_honesty_score(metrics(1.0, 1.0, 1.0, 1.0)) == 100

    def test_low_score(self):
        assert engine.compute_honesty_score(metrics(0.1, 0.1, 0.1, 0.1)) == 10

    def test_task_updates_and_status_variety_weigh_most(self):
        assert engine.compute_honesty_score(metrics(1.0, 1.0, 0.0, 0.0)) == 60

    def test_zero_score(self):
        assert engine.compute_honesty_score(metrics(0.0, 0.0, 0.0, 0.0)) == 0

    def test_out_of_range_inputs_clamped(self):
        assert engine.compute_honesty_score(metrics(2.0, -1.0, 1.0, 1.0)) == 70
        assert engine.compute_honesty_score(metrics(5.0, 5.0, 5.0, 5.0)) == 100

    @pytest.mark.parametrize(
        "score, mood",
        [(100, "happy"), (70, "happy"), (69, "neutral"), (40, "neutral"), (39, "sad"), (0, "sad")],
    )
    def test_mood_from_honesty(self, score, mood):
        assert engine.mood_from_honesty(score) == mood


# =============================================================================
# Admin
# =============================================================================


class TestAdminResets:

    def test_reset_milestone_progress(self):
        record = make_record(all_time_completed=30, daily_completed_tasks=4, current_mood="happy", max_value=10)
        updated = engine.reset_milestone_progress(record)
        assert updated.daily_completed_tasks == 0
        assert updated.all_time_completed == 30
        assert updated.current_mood == "energized"
        assert updated.max_value == 20

    def test_reset_all_time(self):
        record = make_record(all_time_completed=30, daily_completed_tasks=4, current_mood="energized", max_value=20)
        updated = engine.reset_all_time(record)
        assert (updated.all_time_completed, updated.daily_completed_tasks) == (0, 0)
        assert updated.current_mood == "overwhelmed"
        assert updated.max_value == 10

    def test_reset_single_counter(self):
        record = make_record(daily_ai_splits=2, daily_parses=3)
        updated = engine.reset_daily_counter(record, Category.AI_SPLIT)
        assert updated.daily_ai_splits == 0
        assert updated.daily_parses == 3
