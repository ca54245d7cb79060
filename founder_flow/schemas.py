"""Pydantic models and enums for the founder-flow API and its stores."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .stages import CanonicalStage


class CamelModel(BaseModel):
    """Base for payloads exchanged in camelCase (snake_case accepted on input)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class StageStatus(str, Enum):
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    PENDING = "pending"


class SubscriptionStatus(str, Enum):
    """Enumerate the customer subscription states."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RoadmapLayout(str, Enum):
    NOW_NEXT_LATER = "now-next-later"
    QUARTERLY = "quarterly"

    @property
    def buckets(self) -> Tuple["Bucket", ...]:
        """Return the legal buckets for the layout, in board order."""

        return LAYOUT_BUCKETS[self]


class Bucket(str, Enum):
    NOW = "now"
    NEXT = "next"
    LATER = "later"
    Q1 = "q1"
    Q2 = "q2"
    Q3 = "q3"
    Q4 = "q4"


LAYOUT_BUCKETS: Dict[RoadmapLayout, Tuple[Bucket, ...]] = {
    RoadmapLayout.NOW_NEXT_LATER: (Bucket.NOW, Bucket.NEXT, Bucket.LATER),
    RoadmapLayout.QUARTERLY: (Bucket.Q1, Bucket.Q2, Bucket.Q3, Bucket.Q4),
}


class MilestoneCategory(str, Enum):
    FEATURE = "Feature"
    GROWTH = "Growth"
    TECH = "Tech"
    OPS = "Ops"


class MilestoneStatus(str, Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    DONE = "Done"


# ---------------------------------------------------------------------------
# Sessions and progress
# ---------------------------------------------------------------------------


class Session(CamelModel):
    """Persisted progress of one founder through the workflow."""

    session_id: str
    current_stage: CanonicalStage
    completed_stages: List[CanonicalStage] = Field(default_factory=list)
    data: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class SessionCreate(CamelModel):
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    current_stage: Optional[str] = None
    completed_stages: Optional[List[str]] = None
    data: Optional[Dict[str, Dict[str, Any]]] = None


class SessionUpdate(CamelModel):
    current_stage: Optional[str] = None
    completed_stages: Optional[List[str]] = None
    data: Optional[Dict[str, Dict[str, Any]]] = None


class StageCompletionRequest(CamelModel):
    """Body for completing a stage; ``next_stage`` overrides the default advance."""

    data: Dict[str, Any] = Field(default_factory=dict)
    next_stage: Optional[str] = None


class StageDetail(CamelModel):
    stage: CanonicalStage
    label: str
    index: int
    status: StageStatus
    has_data: bool


class ProgressSnapshot(CamelModel):
    session_id: str
    current_stage: CanonicalStage
    completed_stages: List[CanonicalStage]
    progress_percent: int
    stages_completed: int
    total_stages: int
    stage_details: List[StageDetail]


class StageCompletionResponse(CamelModel):
    session: Session
    progress: ProgressSnapshot


class TrackingRow(CamelModel):
    session_id: str
    current_stage: CanonicalStage
    progress_percent: int
    stages_completed: int
    updated_at: datetime


class TrackingSummary(CamelModel):
    total_sessions: int
    completed_workflows: int
    average_progress: int
    total_stages: int
    sessions: List[TrackingRow]


class StageDefinition(CamelModel):
    """Expose stage registry metadata to the UI."""

    id: CanonicalStage
    label: str
    order: int
    legacy_aliases: List[str]


# ---------------------------------------------------------------------------
# Customers and subscriptions
# ---------------------------------------------------------------------------


def _either(name: str, **kwargs: Any) -> Any:
    """Accept both the camelCase and snake_case spelling of a field."""

    return Field(default=None, validation_alias=AliasChoices(to_camel(name), name), **kwargs)


class Customer(BaseModel):
    """Customer subscription record; serialized in snake_case."""

    customer_id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    subscription_id: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    subscription_interval: Optional[str] = None
    plan_name: Optional[str] = None
    subscribe_plan_name: Optional[str] = None
    subscription_plan_price: Optional[int] = None
    actual_attempts: int = 0
    used_attempt: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CustomerCreate(BaseModel):
    """Incoming customer payload; camelCase and snake_case are both accepted."""

    customer_id: str = Field(
        validation_alias=AliasChoices("customerId", "customer_id"), min_length=1, max_length=128
    )
    email: Optional[str] = None
    first_name: Optional[str] = _either("first_name")
    last_name: Optional[str] = _either("last_name")
    subscription_id: Optional[str] = _either("subscription_id")
    subscription_status: Optional[SubscriptionStatus] = _either("subscription_status")
    subscription_interval: Optional[str] = _either("subscription_interval")
    plan_name: Optional[str] = _either("plan_name")
    subscribe_plan_name: Optional[str] = _either("subscribe_plan_name")
    subscription_plan_price: Optional[int] = _either("subscription_plan_price", ge=0)
    actual_attempts: Optional[int] = _either("actual_attempts", ge=0)
    used_attempt: Optional[int] = _either("used_attempt", ge=0)


class CustomerUpdate(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = _either("first_name")
    last_name: Optional[str] = _either("last_name")


class PaidSubscriptionRequest(BaseModel):
    subscription_id: str = Field(validation_alias=AliasChoices("subscriptionId", "subscription_id"), min_length=1)
    plan_name: str = Field(validation_alias=AliasChoices("planName", "plan_name"), min_length=1)
    subscription_interval: Optional[str] = _either("subscription_interval")
    subscription_plan_price: Optional[int] = _either("subscription_plan_price", ge=0)
    actual_attempts: Optional[int] = _either("actual_attempts", ge=0)


class StatusChangeRequest(BaseModel):
    status: SubscriptionStatus


class AttemptResult(BaseModel):
    """Outcome of ``complete_attempt``; ``success`` is False on soft failures."""

    success: bool
    reason: Optional[str] = None
    message: str
    subscription_status: SubscriptionStatus
    used_attempt: int
    actual_attempts: int
    remaining_attempts: int


class SubscriptionStatusView(BaseModel):
    status: SubscriptionStatus
    remaining: int
    plan_name: Optional[str] = None
    used_attempt: int
    actual_attempts: int


# ---------------------------------------------------------------------------
# Roadmaps and milestones
# ---------------------------------------------------------------------------


class Roadmap(CamelModel):
    id: int
    session_id: str
    name: str
    layout: RoadmapLayout
    created_at: datetime
    updated_at: datetime


class Milestone(CamelModel):
    id: int
    roadmap_id: int
    bucket: Bucket
    sort_index: int
    title: str
    description: Optional[str] = None
    category: MilestoneCategory = MilestoneCategory.FEATURE
    status: MilestoneStatus = MilestoneStatus.PLANNED
    owner: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    due_date: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MilestoneDraft(CamelModel):
    """A milestone that has not been persisted yet."""

    bucket: Bucket
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    category: MilestoneCategory = MilestoneCategory.FEATURE
    status: MilestoneStatus = MilestoneStatus.PLANNED
    owner: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    due_date: Optional[str] = None
    sort_index: Optional[int] = Field(default=None, ge=0)


class MilestoneUpdate(CamelModel):
    bucket: Optional[Bucket] = None
    sort_index: Optional[int] = Field(default=None, ge=0)
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[MilestoneCategory] = None
    status: Optional[MilestoneStatus] = None
    owner: Optional[str] = None
    dependencies: Optional[List[str]] = None
    due_date: Optional[str] = None


class MilestonePosition(CamelModel):
    """One ``(id, bucket, sortIndex)`` entry of a positional batch write."""

    id: int
    bucket: Bucket
    sort_index: int = Field(..., ge=0)


class ReorderRequest(CamelModel):
    milestones: List[MilestonePosition]


class MoveRequest(CamelModel):
    """Drag-and-drop result: a bucket (optionally with an index) or a target milestone."""

    bucket: Optional[Bucket] = None
    target_index: Optional[int] = None
    over_milestone_id: Optional[int] = None

    @model_validator(mode="after")
    def _require_target(self) -> "MoveRequest":
        if self.bucket is None and self.over_milestone_id is None:
            raise ValueError("Either bucket or overMilestoneId is required")
        return self


class RoadmapUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    layout: Optional[RoadmapLayout] = None


class SeedRequest(CamelModel):
    name: str = Field(default="Problem-Solution Validation", min_length=1, max_length=200)
    layout: RoadmapLayout = RoadmapLayout.NOW_NEXT_LATER
    milestones: Optional[List[MilestoneDraft]] = None


class RoadmapView(CamelModel):
    roadmap: Roadmap
    milestones: List[Milestone]
