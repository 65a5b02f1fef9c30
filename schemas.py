"""
Database Schemas for Teyra progress tracking

Each Pydantic model that is persisted corresponds to a MongoDB collection.
The collection name is given explicitly next to the model.

Collections defined:
- ProgressRecord -> "user_progress"

The remaining models are value objects passed in and out of the progress
engine and the API layer.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

# milestone tiers, honesty tiers and the check-in picker share one vocabulary
Mood = Literal[
    "overwhelmed", "neutral", "energized", "excited", "happy", "sad",
    "focused", "tired", "stressed",
]
HonestyMood = Literal["happy", "neutral", "sad"]
GaugeView = Literal["lifetime", "today"]


class Category(str, Enum):
    """Rate-limited daily actions."""
    MOOD_CHECK = "mood_check"
    AI_SPLIT = "ai_split"
    AI_PARSE = "ai_parse"

    @property
    def counter_field(self) -> str:
        return {
            Category.MOOD_CHECK: "daily_mood_checks",
            Category.AI_SPLIT: "daily_ai_splits",
            Category.AI_PARSE: "daily_parses",
        }[self]


class Milestone(BaseModel):
    threshold: int = Field(..., ge=0, description="Inclusive lower bound on all-time completions")
    mood: Mood
    max_value: int = Field(..., gt=0, description="Gauge ceiling for this tier")


class ProgressRecord(BaseModel):
    """Per-user progress document
    Collection: "user_progress"
    """
    user_id: str = Field(..., description="Identity provider user id")
    all_time_completed: int = Field(0, ge=0, description="Lifetime completed tasks")
    daily_completed_tasks: int = Field(0, ge=0, description="Completions since last reset")
    daily_mood_checks: int = Field(0, ge=0)
    daily_ai_splits: int = Field(0, ge=0)
    daily_parses: int = Field(0, ge=0)
    current_mood: Mood = Field("overwhelmed", description="Displayed mood")
    last_reset_date: Optional[datetime] = Field(None, description="UTC timestamp of last daily reset")
    max_value: int = Field(10, gt=0, description="Cached gauge ceiling of the current tier")
    is_pro: bool = Field(False, description="Subscription flag mirrored from billing")
    version: int = Field(0, ge=0, description="Bumped by the store on every write")

    def daily_fields(self) -> dict:
        return {
            "daily_completed_tasks": self.daily_completed_tasks,
            "daily_mood_checks": self.daily_mood_checks,
            "daily_ai_splits": self.daily_ai_splits,
            "daily_parses": self.daily_parses,
        }


class HonestyMetrics(BaseModel):
    """Behavioral sub-metrics, each expected in [0, 1]. Out-of-range values are clamped when scored."""
    task_update_frequency: float
    status_variety: float
    timely_updates: float
    consistent_checkins: float


class MilestoneView(BaseModel):
    mood: Mood
    max_value: int
    threshold: int
    milestone_index: int
    display_value: int
    view: GaugeView = "lifetime"


class ResetResult(BaseModel):
    record: ProgressRecord
    did_reset: bool


class DailyLimitResult(BaseModel):
    category: Category
    allowed: bool
    before: int
    after: int
    limit: int
    remaining: int
    unlimited: bool = False
    did_reset: bool = False
    record: ProgressRecord


class CompletionResult(BaseModel):
    record: ProgressRecord
    reached_new_milestone: bool = False
    milestone: MilestoneView


class SweepSummary(BaseModel):
    examined: int = 0
    reset: int = 0
    skipped: int = 0
    failed: List[str] = Field(default_factory=list)
