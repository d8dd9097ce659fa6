"""
Interfaces of the collaborators the session pipeline talks to.

The classifier and the store are injected into the pipeline, so anything
that satisfies these protocols can be plugged in.
"""

from typing import Protocol, Sequence

from focusflare.entities import (
    Classification,
    RawActivityEntry,
    Session,
    SessionType,
    UserFeedback,
)


class SessionClassifierAdapter(Protocol):
    """External classifier for a finished activity group"""

    async def classify(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None = None,
    ) -> Classification:
        """Classify the group or raise a ClassifierError subclass"""
        ...


class FeedbackProvider(Protocol):
    async def get_recent_feedback(self, days: int, limit: int) -> list[UserFeedback]:
        """Most recent user corrections, newest first"""
        ...


class SessionStore(FeedbackProvider, Protocol):
    """Persistence collaborator for sessions and activity links"""

    async def create_session(self, session: Session) -> int:
        """Insert the session row only and return its id"""
        ...

    async def link_activities(self, activity_ids: Sequence[int], session_id: int) -> None:
        """Attach unlinked activities to a session"""
        ...

    async def persist_session(self, session: Session) -> int:
        """Create the session and link its activities atomically"""
        ...

    async def get_unclassified_activities(
        self, since_hours: int
    ) -> list[RawActivityEntry]:
        """Activities not yet linked to a session and not idle"""
        ...

    async def get_sessions(self, since_hours: int) -> list[Session]:
        ...

    async def get_session(self, session_id: int) -> Session | None:
        ...

    async def update_session_classification(
        self, session_id: int, session_type: SessionType, confidence: float, reasoning: str
    ) -> bool:
        """Update an automatic classification, never touching user-corrected rows"""
        ...

    async def record_user_correction(
        self, session_id: int, session_type: SessionType, feedback: UserFeedback
    ) -> None:
        """Apply a user correction and store the feedback row"""
        ...
