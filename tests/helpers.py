import asyncio
from datetime import datetime, timedelta, timezone
from typing import Sequence

from focusflare import utils
from focusflare.entities import (
    ActivityAlreadyLinkedError,
    ActivityLevel,
    Classification,
    PersistenceFailure,
    RawActivityEntry,
    Session,
    SessionNotFoundError,
    SessionType,
    UserFeedback,
)


BASE_TIME = datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)


def make_activity(
    id: int,
    at: timedelta,
    app_name: str = "VSCode",
    window_title: str = "",
    duration: timedelta = timedelta(minutes=1),
    activity_level: ActivityLevel = ActivityLevel.ACTIVE,
    interaction_count: int = 10,
    base_time: datetime = BASE_TIME,
) -> RawActivityEntry:
    """Helper to create an activity starting `at` after the base time."""
    return RawActivityEntry(
        id=id,
        timestamp=base_time + at,
        app_name=app_name,
        window_title=window_title,
        duration=duration,
        interaction_count=interaction_count,
        activity_level=activity_level,
    )


def make_run(
    first_id: int,
    start: timedelta,
    count: int,
    app_name: str = "VSCode",
    window_title: str = "main.py - VSCode",
    duration: timedelta = timedelta(minutes=3),
    base_time: datetime = BASE_TIME,
) -> list[RawActivityEntry]:
    """Helper to create back-to-back activities in a single app."""
    return [
        make_activity(
            first_id + index,
            start + index * duration,
            app_name=app_name,
            window_title=window_title,
            duration=duration,
            base_time=base_time,
        )
        for index in range(count)
    ]


class FixedClassifier:
    """Answers every call with the same classification."""

    def __init__(self, classification: Classification, delay: float = 0.0):
        self.classification = classification
        self.delay = delay
        self.calls: list[tuple[list[RawActivityEntry], str | None]] = []
        self.active = 0
        self.max_active = 0

    async def classify(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None = None,
    ) -> Classification:
        self.calls.append((list(activities), context_hint))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return self.classification
        finally:
            self.active -= 1


class RaisingClassifier:
    def __init__(self, error: Exception):
        self.error = error
        self.calls = 0

    async def classify(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None = None,
    ) -> Classification:
        self.calls += 1
        raise self.error


class InMemorySessionStore:
    """Dict backed store with the same linking rules as the SQLite store."""

    def __init__(
        self,
        activities: Sequence[RawActivityEntry] = (),
        failing_persists: int = 0,
    ):
        self.activities = {a.id: a for a in activities}
        self.sessions: dict[int, Session] = {}
        self.feedback: list[UserFeedback] = []
        self.failing_persists = failing_persists
        self.next_session_id = 1

    async def create_session(self, session: Session) -> int:
        session_id = self.next_session_id
        self.next_session_id += 1
        self.sessions[session_id] = session.model_copy(
            update={"id": session_id, "activities": []}
        )
        return session_id

    async def link_activities(
        self, activity_ids: Sequence[int], session_id: int
    ) -> None:
        taken = [
            activity_id
            for activity_id in activity_ids
            if activity_id not in self.activities
            or self.activities[activity_id].session_id is not None
        ]
        if taken:
            raise ActivityAlreadyLinkedError(taken)
        for activity_id in activity_ids:
            self.activities[activity_id] = self.activities[activity_id].model_copy(
                update={"session_id": session_id}
            )

    async def persist_session(self, session: Session) -> int:
        if self.failing_persists:
            self.failing_persists -= 1
            raise PersistenceFailure("disk full")

        taken = [
            activity_id
            for activity_id in session.activity_ids
            if activity_id not in self.activities
            or self.activities[activity_id].session_id is not None
        ]
        if taken:
            raise ActivityAlreadyLinkedError(taken)

        session_id = await self.create_session(session)
        await self.link_activities(session.activity_ids, session_id)
        return session_id

    async def get_unclassified_activities(
        self, since_hours: int
    ) -> list[RawActivityEntry]:
        return utils.sort_and_dedupe(
            a
            for a in self.activities.values()
            if a.session_id is None and a.activity_level != ActivityLevel.IDLE
        )

    def _with_activities(self, session: Session) -> Session:
        linked = utils.sort_and_dedupe(
            a for a in self.activities.values() if a.session_id == session.id
        )
        return session.model_copy(update={"activities": linked})

    async def get_sessions(self, since_hours: int) -> list[Session]:
        return [self._with_activities(s) for s in self.sessions.values()]

    async def get_session(self, session_id: int) -> Session | None:
        session = self.sessions.get(session_id)
        return self._with_activities(session) if session else None

    async def update_session_classification(
        self,
        session_id: int,
        session_type: SessionType,
        confidence: float,
        reasoning: str,
    ) -> bool:
        session = self.sessions.get(session_id)
        if session is None or session.user_corrected:
            return False
        self.sessions[session_id] = session.model_copy(
            update={
                "session_type": session_type,
                "confidence_score": confidence,
                "reasoning": reasoning,
            }
        )
        return True

    async def record_user_correction(
        self, session_id: int, session_type: SessionType, feedback: UserFeedback
    ) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self.sessions[session_id] = session.model_copy(
            update={
                "session_type": session_type,
                "user_corrected": True,
                "confidence_score": 1.0,
            }
        )
        self.feedback.append(feedback)

    async def get_recent_feedback(self, days: int, limit: int) -> list[UserFeedback]:
        return sorted(self.feedback, key=lambda f: f.created_at, reverse=True)[:limit]
