from collections import defaultdict
from datetime import datetime, timedelta
from typing import Sequence

import aiosqlite

from focusflare import utils
from focusflare.entities import (
    ActivityAlreadyLinkedError,
    ActivityLevel,
    RawActivityEntry,
    Session,
    SessionType,
    UserFeedback,
)


def _placeholders(n: int) -> str:
    return ", ".join("?" for _ in range(n))


def _to_ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


def row_to_activity(row: aiosqlite.Row) -> RawActivityEntry:
    return RawActivityEntry(
        id=row["id"],
        timestamp=row["timestamp"],
        app_name=row["app_name"],
        window_title=row["window_title"],
        duration=timedelta(milliseconds=row["duration_ms"]),
        interaction_count=row["interaction_count"],
        cpu_usage_percent=row["cpu_usage_percent"],
        activity_level=ActivityLevel(row["activity_level"]),
        session_id=row["session_id"],
    )


def row_to_session(
    row: aiosqlite.Row, activities: list[RawActivityEntry] | None = None
) -> Session:
    return Session(
        id=row["id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        session_type=SessionType(row["session_type"]),
        confidence_score=row["confidence_score"],
        user_corrected=bool(row["user_corrected"]),
        reasoning=row["reasoning"],
        activities=activities or [],
    )


def row_to_feedback(row: aiosqlite.Row) -> UserFeedback:
    return UserFeedback(
        id=row["id"],
        session_id=row["session_id"],
        original_classification=SessionType(row["original_classification"]),
        corrected_classification=SessionType(row["corrected_classification"]),
        user_context=row["user_context"],
        activity_pattern=row["activity_pattern"],
        created_at=row["created_at"],
    )


async def insert_activities(
    conn: aiosqlite.Connection, *, activities: Sequence[RawActivityEntry]
) -> None:
    if not activities:
        return

    await conn.executemany(
        """
        INSERT INTO activities (
            id,
            timestamp,
            app_name,
            window_title,
            duration_ms,
            interaction_count,
            cpu_usage_percent,
            activity_level,
            session_id
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                activity.id,
                activity.timestamp,
                activity.app_name,
                activity.window_title,
                _to_ms(activity.duration),
                activity.interaction_count,
                activity.cpu_usage_percent,
                activity.activity_level.value,
                activity.session_id,
            )
            for activity in activities
        ],
    )


async def select_unclassified_activities(
    conn: aiosqlite.Connection, *, since: datetime
) -> list[RawActivityEntry]:
    cursor = await conn.execute(
        """
        SELECT * FROM activities
        WHERE session_id IS NULL
          AND activity_level != ?
          AND timestamp >= ?
        ORDER BY timestamp ASC, id ASC
        """,
        (ActivityLevel.IDLE.value, since),
    )
    rows = await cursor.fetchall()
    return [row_to_activity(row) for row in rows]


async def select_activities_by_session_ids(
    conn: aiosqlite.Connection, *, session_ids: Sequence[int]
) -> dict[int, list[RawActivityEntry]]:
    if not session_ids:
        return {}

    cursor = await conn.execute(
        f"""
        SELECT * FROM activities
        WHERE session_id IN ({_placeholders(len(session_ids))})
        ORDER BY timestamp ASC, id ASC
        """,
        tuple(session_ids),
    )
    rows = await cursor.fetchall()

    result: dict[int, list[RawActivityEntry]] = defaultdict(list)
    for row in rows:
        result[row["session_id"]].append(row_to_activity(row))
    return dict(result)


async def insert_session(conn: aiosqlite.Connection, *, session: Session) -> int:
    now = utils.utc_now()
    cursor = await conn.execute(
        """
        INSERT INTO sessions (
            start_time,
            end_time,
            duration_ms,
            session_type,
            confidence_score,
            user_corrected,
            reasoning,
            created_at,
            updated_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            session.start_time,
            session.end_time,
            _to_ms(session.duration),
            session.session_type.value,
            session.confidence_score,
            int(session.user_corrected),
            session.reasoning,
            now,
            now,
        ),
    )
    row = await cursor.fetchone()
    assert row is not None, "sessions insert did not return an id"
    return row["id"]


async def link_activities_to_session(
    conn: aiosqlite.Connection, *, activity_ids: Sequence[int], session_id: int
) -> None:
    """Attach activities that are still unlinked.

    Raises ActivityAlreadyLinkedError if any id is missing or already owned by
    a session. Callers run this inside a transaction so the error rolls back.
    """
    if not activity_ids:
        return

    unique_ids = list(dict.fromkeys(activity_ids))
    cursor = await conn.execute(
        f"""
        UPDATE activities
        SET session_id = ?
        WHERE id IN ({_placeholders(len(unique_ids))})
          AND session_id IS NULL
        """,
        (session_id, *unique_ids),
    )
    if cursor.rowcount == len(unique_ids):
        return

    cursor = await conn.execute(
        f"""
        SELECT id FROM activities
        WHERE id IN ({_placeholders(len(unique_ids))})
          AND session_id = ?
        """,
        (*unique_ids, session_id),
    )
    linked_now = {row["id"] for row in await cursor.fetchall()}
    raise ActivityAlreadyLinkedError(
        [activity_id for activity_id in unique_ids if activity_id not in linked_now]
    )


async def select_session(
    conn: aiosqlite.Connection, *, session_id: int
) -> Session | None:
    cursor = await conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
    row = await cursor.fetchone()
    if row is None:
        return None
    activities = await select_activities_by_session_ids(conn, session_ids=[session_id])
    return row_to_session(row, activities.get(session_id))


async def select_sessions_since(
    conn: aiosqlite.Connection, *, since: datetime
) -> list[Session]:
    cursor = await conn.execute(
        """
        SELECT * FROM sessions
        WHERE start_time >= ?
        ORDER BY start_time ASC
        """,
        (since,),
    )
    rows = await cursor.fetchall()
    activities = await select_activities_by_session_ids(
        conn, session_ids=[row["id"] for row in rows]
    )
    return [row_to_session(row, activities.get(row["id"])) for row in rows]


async def update_session_classification(
    conn: aiosqlite.Connection,
    *,
    session_id: int,
    session_type: SessionType,
    confidence: float,
    reasoning: str,
) -> bool:
    cursor = await conn.execute(
        """
        UPDATE sessions
        SET session_type = ?,
            confidence_score = ?,
            reasoning = ?,
            updated_at = ?
        WHERE id = ?
          AND user_corrected = 0
        """,
        (
            session_type.value,
            utils.clamp(confidence),
            reasoning,
            utils.utc_now(),
            session_id,
        ),
    )
    return cursor.rowcount == 1


async def update_session_user_correction(
    conn: aiosqlite.Connection, *, session_id: int, session_type: SessionType
) -> bool:
    cursor = await conn.execute(
        """
        UPDATE sessions
        SET session_type = ?,
            user_corrected = 1,
            confidence_score = 1.0,
            updated_at = ?
        WHERE id = ?
        """,
        (session_type.value, utils.utc_now(), session_id),
    )
    return cursor.rowcount == 1


async def insert_ai_feedback(
    conn: aiosqlite.Connection, *, feedback: UserFeedback
) -> int:
    cursor = await conn.execute(
        """
        INSERT INTO ai_feedback (
            session_id,
            original_classification,
            corrected_classification,
            user_context,
            activity_pattern,
            created_at
        )
        VALUES (?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            feedback.session_id,
            feedback.original_classification.value,
            feedback.corrected_classification.value,
            feedback.user_context,
            feedback.activity_pattern,
            feedback.created_at,
        ),
    )
    row = await cursor.fetchone()
    assert row is not None, "ai_feedback insert did not return an id"
    return row["id"]


async def select_recent_feedback(
    conn: aiosqlite.Connection, *, since: datetime, limit: int
) -> list[UserFeedback]:
    cursor = await conn.execute(
        """
        SELECT * FROM ai_feedback
        WHERE created_at > ?
        ORDER BY created_at DESC
        LIMIT ?
        """,
        (since, limit),
    )
    rows = await cursor.fetchall()
    return [row_to_feedback(row) for row in rows]
