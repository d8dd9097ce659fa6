from datetime import timedelta
from pathlib import Path
from typing import Sequence

from focusflare import utils
from focusflare.db import queries
from focusflare.db.db import db_setup, get_db_connection
from focusflare.entities import (
    RawActivityEntry,
    Session,
    SessionNotFoundError,
    SessionType,
    UserFeedback,
)


class SqliteSessionStore:
    """SQLite implementation of the session store.

    Every write runs in its own IMMEDIATE transaction so a session and its
    activity links are committed or rolled back together.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    async def setup(self) -> None:
        await db_setup(self.db_path)

    async def add_activities(self, activities: Sequence[RawActivityEntry]) -> None:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            await queries.insert_activities(conn, activities=activities)

    async def create_session(self, session: Session) -> int:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            return await queries.insert_session(conn, session=session)

    async def link_activities(
        self, activity_ids: Sequence[int], session_id: int
    ) -> None:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            await queries.link_activities_to_session(
                conn, activity_ids=activity_ids, session_id=session_id
            )

    async def persist_session(self, session: Session) -> int:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            session_id = await queries.insert_session(conn, session=session)
            await queries.link_activities_to_session(
                conn, activity_ids=session.activity_ids, session_id=session_id
            )
        return session_id

    async def get_unclassified_activities(
        self, since_hours: int
    ) -> list[RawActivityEntry]:
        since = utils.utc_now() - timedelta(hours=since_hours)
        async with get_db_connection(self.db_path) as conn:
            return await queries.select_unclassified_activities(conn, since=since)

    async def get_sessions(self, since_hours: int) -> list[Session]:
        since = utils.utc_now() - timedelta(hours=since_hours)
        async with get_db_connection(self.db_path) as conn:
            return await queries.select_sessions_since(conn, since=since)

    async def get_session(self, session_id: int) -> Session | None:
        async with get_db_connection(self.db_path) as conn:
            return await queries.select_session(conn, session_id=session_id)

    async def update_session_classification(
        self,
        session_id: int,
        session_type: SessionType,
        confidence: float,
        reasoning: str,
    ) -> bool:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            return await queries.update_session_classification(
                conn,
                session_id=session_id,
                session_type=session_type,
                confidence=confidence,
                reasoning=reasoning,
            )

    async def record_user_correction(
        self, session_id: int, session_type: SessionType, feedback: UserFeedback
    ) -> None:
        async with get_db_connection(self.db_path, start_transaction=True) as conn:
            updated = await queries.update_session_user_correction(
                conn, session_id=session_id, session_type=session_type
            )
            if not updated:
                raise SessionNotFoundError(session_id)
            await queries.insert_ai_feedback(conn, feedback=feedback)

    async def get_recent_feedback(self, days: int, limit: int) -> list[UserFeedback]:
        since = utils.utc_now() - timedelta(days=days)
        async with get_db_connection(self.db_path) as conn:
            return await queries.select_recent_feedback(conn, since=since, limit=limit)
