from dataclasses import dataclass, field

from loguru import logger

from focusflare import utils
from focusflare.entities import SessionNotFoundError, SessionType, UserFeedback
from focusflare.modules.sessions.feedback import activity_pattern
from focusflare.modules.sessions.tasks import ClassificationSource, SessionMaterializer
from focusflare.protocols import SessionStore


@dataclass
class ReclassificationResult:
    examined: int = 0
    updated: int = 0
    skipped_user_corrected: int = 0
    ai_classified: int = 0
    fallback_classified: int = 0
    failed_session_ids: list[int] = field(default_factory=list)


async def apply_user_correction(
    store: SessionStore,
    session_id: int,
    session_type: SessionType,
    user_context: str = "",
) -> UserFeedback:
    """Record an explicit user relabel of a session.

    The session becomes user-corrected and automated passes stop touching it.
    The feedback row feeds the learned context of future classifications.
    """
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)

    feedback = UserFeedback(
        session_id=session_id,
        original_classification=session.session_type,
        corrected_classification=session_type,
        user_context=user_context,
        activity_pattern=activity_pattern(session.activities),
        created_at=utils.utc_now(),
    )
    await store.record_user_correction(session_id, session_type, feedback)
    logger.info(
        "Session {} corrected by user: {} -> {}",
        session_id,
        session.session_type,
        session_type,
    )
    return feedback


async def reclassify_sessions(
    store: SessionStore,
    materializer: SessionMaterializer,
    since_hours: int,
    use_ai: bool | None = None,
) -> ReclassificationResult:
    result = ReclassificationResult()

    for session in await store.get_sessions(since_hours):
        assert session.id is not None
        result.examined += 1
        if session.user_corrected:
            result.skipped_user_corrected += 1
            continue
        if not session.activities:
            continue

        classified = await materializer.classify(
            session.activities,
            is_session_break=materializer.clustering_engine.is_sparse(
                session.activities
            ),
            use_ai=use_ai,
        )
        if classified.source == ClassificationSource.AI:
            result.ai_classified += 1
        else:
            result.fallback_classified += 1

        try:
            updated = await store.update_session_classification(
                session.id,
                classified.classification.session_type,
                classified.classification.confidence,
                classified.classification.reasoning,
            )
        except Exception:
            logger.exception("Failed to update classification of session {}", session.id)
            result.failed_session_ids.append(session.id)
            continue

        if updated:
            result.updated += 1
        else:
            # Corrected by the user between read and write
            result.skipped_user_corrected += 1

    logger.info(
        "Reclassification done | examined: {} | updated: {} | user corrected: {} "
        "| failed: {}",
        result.examined,
        result.updated,
        result.skipped_user_corrected,
        len(result.failed_session_ids),
    )
    return result
