from dataclasses import dataclass, field
from datetime import datetime, timedelta

from focusflare import utils
from focusflare.entities import (
    ActivityLevel,
    GapType,
    RawActivityEntry,
    SessionType,
)


@dataclass(frozen=True)
class FeatureVector:
    activity_id: int
    normalized_time: float
    duration_weight: float
    app_category_weight: float
    activity_level_weight: float
    context_weight: float
    interaction_weight: float

    @classmethod
    def mean(cls, vectors: list["FeatureVector"], activity_id: int = -1):
        if not vectors:
            return cls(activity_id, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
        n = len(vectors)
        return cls(
            activity_id=activity_id,
            normalized_time=sum(v.normalized_time for v in vectors) / n,
            duration_weight=sum(v.duration_weight for v in vectors) / n,
            app_category_weight=sum(v.app_category_weight for v in vectors) / n,
            activity_level_weight=sum(v.activity_level_weight for v in vectors) / n,
            context_weight=sum(v.context_weight for v in vectors) / n,
            interaction_weight=sum(v.interaction_weight for v in vectors) / n,
        )


@dataclass(frozen=True)
class Gap:
    start: datetime
    end: datetime
    type: GapType

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass
class SessionCandidate:
    """A run of activities believed to belong to one session.

    Time bounds, primary app and app set are derived from the activities so
    they always agree with them.
    """

    activities: list[RawActivityEntry]
    gaps: list[Gap] = field(default_factory=list)
    is_session_break: bool = False
    quality_score: float = 0.0
    suggested_session_type: SessionType | None = None

    @property
    def start_time(self) -> datetime:
        return self.activities[0].timestamp

    @property
    def end_time(self) -> datetime:
        return utils.span_end(self.activities)

    @property
    def total_duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def primary_app(self) -> str:
        return utils.primary_app(self.activities)

    @property
    def app_names(self) -> set[str]:
        return {activity.app_name for activity in self.activities}


@dataclass
class ActivityCluster:
    id: str
    activities: list[RawActivityEntry]
    features: FeatureVector | None = None
    coherence_score: float = 1.0
    quality_score: float = 0.0
    is_session_break: bool = False

    @property
    def start_time(self) -> datetime:
        return self.activities[0].timestamp

    @property
    def end_time(self) -> datetime:
        return utils.span_end(self.activities)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def dominant_app(self) -> str:
        return utils.most_common(a.app_name for a in self.activities) or ""

    @property
    def dominant_activity_level(self) -> ActivityLevel:
        return (
            utils.most_common(a.activity_level for a in self.activities)
            or ActivityLevel.ACTIVE
        )

    @property
    def unique_apps(self) -> set[str]:
        return {activity.app_name for activity in self.activities}

    def to_candidate(self, gaps: list[Gap] | None = None) -> SessionCandidate:
        return SessionCandidate(
            activities=list(self.activities),
            gaps=list(gaps or []),
            is_session_break=self.is_session_break,
            quality_score=self.quality_score,
        )


@dataclass(frozen=True)
class MergeDecision:
    should_merge: bool
    confidence: float
    reasoning: str
    suggested_session_type: SessionType | None = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", utils.clamp(self.confidence))


@dataclass
class ProcessingStats:
    total_activities: int = 0
    groups_detected: int = 0
    sessions_created: int = 0
    ai_classified: int = 0
    fallback_classified: int = 0
    ai_failures: int = 0
    persistence_failures: int = 0
    skipped_groups: int = 0
    cancelled: bool = False
    processing_time: timedelta = timedelta(0)
    session_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def persistence_attempts(self) -> int:
        return self.sessions_created + self.persistence_failures
