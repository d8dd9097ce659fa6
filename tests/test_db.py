"""Tests for the SQLite session store."""

from datetime import datetime, timedelta, timezone

import pytest

from focusflare import utils
from focusflare.db import converters
from focusflare.db.store import SqliteSessionStore
from focusflare.entities import (
    ActivityAlreadyLinkedError,
    ActivityLevel,
    Session,
    SessionNotFoundError,
    SessionType,
    UserFeedback,
)
from tests.helpers import make_activity, make_run


@pytest.fixture
async def sqlite_store(tmp_path):
    store = SqliteSessionStore(tmp_path / "data" / "focusflare.sqlite3")
    await store.setup()
    return store


def recent_run(first_id: int, count: int = 3):
    """Activities from an hour ago, inside the default lookback window."""
    return make_run(
        first_id, timedelta(0), count, base_time=utils.utc_now() - timedelta(hours=1)
    )


def session_for(activities) -> Session:
    return Session(
        start_time=activities[0].timestamp,
        end_time=activities[-1].end_time,
        session_type=SessionType.FOCUSED_WORK,
        confidence_score=0.3,
        reasoning="editor work",
        activities=activities,
    )


class TestTimestampConversion:
    def test_naive_datetimes_are_stored_as_utc(self):
        assert (
            converters.adapt_timestamp(datetime(2025, 3, 3, 9, 0))
            == "2025-03-03T09:00:00+00:00"
        )

    def test_offset_datetimes_are_normalized_to_utc(self):
        plus_two = timezone(timedelta(hours=2))

        stored = converters.adapt_timestamp(datetime(2025, 3, 3, 9, 0, tzinfo=plus_two))

        assert stored == "2025-03-03T07:00:00+00:00"

    def test_read_back_is_aware(self):
        loaded = converters.convert_date(b"2025-03-03T09:00:00")

        assert loaded == datetime(2025, 3, 3, 9, 0, tzinfo=timezone.utc)
        assert converters.convert_date(None) is None


class TestActivities:
    async def test_unclassified_activities_exclude_idle_and_old(self, sqlite_store):
        now = utils.utc_now()
        activities = recent_run(1) + [
            make_activity(
                10,
                timedelta(0),
                activity_level=ActivityLevel.IDLE,
                base_time=now - timedelta(minutes=30),
            ),
            make_activity(11, timedelta(0), base_time=now - timedelta(days=3)),
        ]
        await sqlite_store.add_activities(activities)

        loaded = await sqlite_store.get_unclassified_activities(since_hours=24)

        assert [a.id for a in loaded] == [1, 2, 3]
        assert loaded[0] == activities[0]
        assert loaded[0].timestamp.tzinfo == timezone.utc


class TestPersistSession:
    async def test_persist_links_activities(self, sqlite_store):
        activities = recent_run(1)
        await sqlite_store.add_activities(activities)

        session_id = await sqlite_store.persist_session(session_for(activities))

        session = await sqlite_store.get_session(session_id)
        assert session.id == session_id
        assert session.activity_ids == [1, 2, 3]
        assert all(a.session_id == session_id for a in session.activities)
        assert session.duration == activities[-1].end_time - activities[0].timestamp
        assert await sqlite_store.get_unclassified_activities(24) == []

    async def test_relinking_is_rejected_and_rolled_back(self, sqlite_store):
        activities = recent_run(1)
        await sqlite_store.add_activities(activities)
        first_id = await sqlite_store.persist_session(session_for(activities))

        with pytest.raises(ActivityAlreadyLinkedError) as exc_info:
            await sqlite_store.persist_session(session_for(activities))

        assert exc_info.value.activity_ids == [1, 2, 3]
        sessions = await sqlite_store.get_sessions(since_hours=24)
        assert [s.id for s in sessions] == [first_id]

    async def test_create_then_link(self, sqlite_store):
        activities = recent_run(1)
        await sqlite_store.add_activities(activities)

        session_id = await sqlite_store.create_session(session_for(activities))
        await sqlite_store.link_activities([1, 2], session_id)

        session = await sqlite_store.get_session(session_id)
        assert session.activity_ids == [1, 2]

    async def test_missing_session(self, sqlite_store):
        assert await sqlite_store.get_session(99) is None


class TestCorrections:
    async def test_user_correction_blocks_automatic_updates(self, sqlite_store):
        activities = recent_run(1)
        await sqlite_store.add_activities(activities)
        session_id = await sqlite_store.persist_session(session_for(activities))
        feedback = UserFeedback(
            session_id=session_id,
            original_classification=SessionType.FOCUSED_WORK,
            corrected_classification=SessionType.RESEARCH,
            user_context="reading docs",
            activity_pattern="VSCode|main.py - VSCode",
            created_at=utils.utc_now(),
        )

        await sqlite_store.record_user_correction(
            session_id, SessionType.RESEARCH, feedback
        )
        updated = await sqlite_store.update_session_classification(
            session_id, SessionType.BREAK, 0.9, "automatic"
        )

        session = await sqlite_store.get_session(session_id)
        assert not updated
        assert session.session_type == SessionType.RESEARCH
        assert session.user_corrected
        assert session.confidence_score == 1.0

        [stored] = await sqlite_store.get_recent_feedback(days=30, limit=10)
        assert stored.corrected_classification == SessionType.RESEARCH
        assert stored.user_context == "reading docs"

    async def test_automatic_update(self, sqlite_store):
        activities = recent_run(1)
        await sqlite_store.add_activities(activities)
        session_id = await sqlite_store.persist_session(session_for(activities))

        updated = await sqlite_store.update_session_classification(
            session_id, SessionType.BREAK, 0.55, "re-run"
        )

        session = await sqlite_store.get_session(session_id)
        assert updated
        assert session.session_type == SessionType.BREAK
        assert session.confidence_score == 0.55
        assert session.reasoning == "re-run"

    async def test_correcting_unknown_session(self, sqlite_store):
        feedback = UserFeedback(
            session_id=7,
            original_classification=SessionType.BREAK,
            corrected_classification=SessionType.RESEARCH,
            created_at=utils.utc_now(),
        )

        with pytest.raises(SessionNotFoundError):
            await sqlite_store.record_user_correction(7, SessionType.RESEARCH, feedback)

        assert await sqlite_store.get_recent_feedback(days=30, limit=10) == []
