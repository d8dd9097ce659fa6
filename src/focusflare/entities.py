from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


if TYPE_CHECKING:
    from focusflare.modules.sessions.types import ProcessingStats


class SessionizationError(Exception):
    "Base class for errors raised by the sessionization pipeline."


class ClassifierError(SessionizationError):
    "Raised when the external classifier cannot produce a usable result."


class ClassifierTimeout(ClassifierError):
    "The classifier did not answer within its deadline."


class ClassifierUnavailable(ClassifierError):
    "The classifier service is unreachable, unhealthy or answered with an error."


class ClassifierMalformedResponse(ClassifierError):
    "The classifier answered but the payload could not be parsed."


class PersistenceFailure(SessionizationError):
    "A session or its activity links could not be written."


class ActivityAlreadyLinkedError(PersistenceFailure):
    def __init__(self, activity_ids: list[int]):
        self.activity_ids = activity_ids
        super().__init__(f"Activities already linked to a session: {activity_ids}")


class SessionNotFoundError(PersistenceFailure):
    def __init__(self, session_id: int):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class BatchPersistenceError(PersistenceFailure):
    """Every persistence attempt of a batch failed.

    Raised once, after all groups were attempted. The stats of the failed
    batch are attached so callers can still report them.
    """

    def __init__(self, message: str, stats: "ProcessingStats"):
        self.stats = stats
        super().__init__(message)


class ActivityLevel(StrEnum):
    ACTIVE = "active"
    PASSIVE = "passive"
    IDLE = "idle"
    BACKGROUND = "background"


class SessionType(StrEnum):
    FOCUSED_WORK = "focused-work"
    RESEARCH = "research"
    ENTERTAINMENT = "entertainment"
    BREAK = "break"
    UNCLEAR = "unclear"


class GapType(StrEnum):
    IDLE = "idle"
    SWITCH = "switch"


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class RawActivityEntry(BaseModel):
    """A single record produced by the activity monitor.

    Entries are read-only input to the pipeline. `session_id` is only set on
    entries loaded back from storage after they were linked.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: datetime
    app_name: str
    window_title: str = ""
    duration: timedelta = timedelta(0)
    interaction_count: int = 0
    cpu_usage_percent: float = 0.0
    activity_level: ActivityLevel = ActivityLevel.ACTIVE
    session_id: int | None = None

    @field_validator("duration")
    @classmethod
    def _non_negative_duration(cls, value: timedelta) -> timedelta:
        if value < timedelta(0):
            raise ValueError("duration must not be negative")
        return value

    @property
    def end_time(self) -> datetime:
        return self.timestamp + self.duration

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.timestamp, self.id)


class Classification(BaseModel):
    session_type: SessionType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp_unit(value)


class Session(BaseModel):
    id: int | None = None
    start_time: datetime
    end_time: datetime
    session_type: SessionType
    confidence_score: float = Field(ge=0.0, le=1.0)
    user_corrected: bool = False
    reasoning: str = ""
    activities: list[RawActivityEntry] = Field(default_factory=list)

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp_unit(value)

    @model_validator(mode="after")
    def _check_span(self) -> "Session":
        if self.end_time < self.start_time:
            raise ValueError("end_time must not precede start_time")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def activity_ids(self) -> list[int]:
        return [activity.id for activity in self.activities]


class UserFeedback(BaseModel):
    """A user correction of an automatic classification."""

    id: int | None = None
    session_id: int
    original_classification: SessionType
    corrected_classification: SessionType
    user_context: str = ""
    activity_pattern: str = ""
    created_at: datetime
