"""Tests for user corrections and reclassification of stored sessions."""

from datetime import timedelta

import pytest

from focusflare.config import ClassifierConfig
from focusflare.entities import (
    Classification,
    Session,
    SessionNotFoundError,
    SessionType,
)
from focusflare.modules.sessions.corrections import (
    apply_user_correction,
    reclassify_sessions,
)
from focusflare.modules.sessions.tasks import SessionMaterializer
from tests.helpers import (
    FixedClassifier,
    InMemorySessionStore,
    make_activity,
    make_run,
)


async def store_with_two_sessions() -> InMemorySessionStore:
    activities = make_run(1, timedelta(0), 4) + make_run(5, timedelta(minutes=40), 4)
    store = InMemorySessionStore(activities)
    materializer = SessionMaterializer(store, config=ClassifierConfig(ai_enabled=False))
    await materializer.process_activities(activities)
    return store


class TestApplyUserCorrection:
    async def test_correction_marks_session_and_records_feedback(self):
        store = await store_with_two_sessions()

        feedback = await apply_user_correction(
            store, 1, SessionType.RESEARCH, user_context="reading the codebase"
        )

        session = await store.get_session(1)
        assert session.session_type == SessionType.RESEARCH
        assert session.user_corrected
        assert session.confidence_score == 1.0
        assert feedback.original_classification == SessionType.FOCUSED_WORK
        assert feedback.corrected_classification == SessionType.RESEARCH
        assert feedback.activity_pattern.startswith("VSCode|main.py - VSCode;;")
        assert store.feedback == [feedback]

    async def test_unknown_session(self):
        store = InMemorySessionStore()

        with pytest.raises(SessionNotFoundError):
            await apply_user_correction(store, 42, SessionType.BREAK)


class TestReclassifySessions:
    async def test_user_corrected_sessions_are_left_alone(self):
        store = await store_with_two_sessions()
        await apply_user_correction(store, 1, SessionType.BREAK)
        classifier = FixedClassifier(
            Classification(session_type=SessionType.RESEARCH, confidence=0.85)
        )
        materializer = SessionMaterializer(store, classifier=classifier)

        result = await reclassify_sessions(store, materializer, since_hours=24)

        assert result.examined == 2
        assert result.updated == 1
        assert result.skipped_user_corrected == 1
        assert result.ai_classified == 1
        assert (await store.get_session(1)).session_type == SessionType.BREAK
        assert (await store.get_session(2)).session_type == SessionType.RESEARCH
        assert (await store.get_session(2)).confidence_score == 0.85

    async def test_fallback_reclassification(self):
        store = await store_with_two_sessions()
        materializer = SessionMaterializer(store, config=ClassifierConfig(ai_enabled=False))

        result = await reclassify_sessions(store, materializer, since_hours=24)

        assert result.updated == 2
        assert result.fallback_classified == 2
        assert result.failed_session_ids == []

    async def test_sparse_break_session_stays_a_break(self):
        activities = [
            make_activity(
                1, timedelta(0), app_name="Foo", duration=timedelta(minutes=10)
            ),
            make_activity(
                2,
                timedelta(minutes=10),
                app_name="Foo",
                duration=timedelta(minutes=10, seconds=30),
            ),
        ]
        store = InMemorySessionStore(activities)
        session_id = await store.persist_session(
            Session(
                start_time=activities[0].timestamp,
                end_time=activities[-1].end_time,
                session_type=SessionType.BREAK,
                confidence_score=0.3,
                reasoning="sparse activity",
                activities=activities,
            )
        )
        materializer = SessionMaterializer(store, config=ClassifierConfig(ai_enabled=False))

        result = await reclassify_sessions(store, materializer, since_hours=24)

        assert result.updated == 1
        session = await store.get_session(session_id)
        assert session.session_type == SessionType.BREAK
        assert "treated as a break" in session.reasoning
