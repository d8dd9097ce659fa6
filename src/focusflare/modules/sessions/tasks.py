import asyncio
from dataclasses import asdict, dataclass
from datetime import timedelta
from enum import StrEnum
import time
from typing import Sequence

from loguru import logger

from focusflare import utils
from focusflare.config import ClassifierConfig, Settings, load_settings
from focusflare.db.store import SqliteSessionStore
from focusflare.entities import (
    BatchPersistenceError,
    Classification,
    ClassifierError,
    PersistenceFailure,
    RawActivityEntry,
    Session,
    SessionType,
)
from focusflare.llm import OllamaClassifier
from focusflare.modules.sessions.boundaries import BoundaryDetector
from focusflare.modules.sessions.clustering import ClusteringEngine
from focusflare.modules.sessions.fallback_classifier import RuleBasedClassifier
from focusflare.modules.sessions.merging import (
    ClassifierMergeAdvisor,
    SmartMergeProcessor,
)
from focusflare.modules.sessions.types import ProcessingStats, SessionCandidate
from focusflare.protocols import SessionClassifierAdapter, SessionStore


class ClassificationSource(StrEnum):
    AI = "ai"
    FALLBACK = "fallback"


class GroupStatus(StrEnum):
    CREATED = "created"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    PERSISTENCE_FAILED = "persistence_failed"


@dataclass
class ClassificationResult:
    classification: Classification
    source: ClassificationSource
    ai_failed: bool = False


@dataclass
class GroupOutcome:
    status: GroupStatus
    session_id: int | None = None
    source: ClassificationSource | None = None
    ai_failed: bool = False
    error: str | None = None


class SessionMaterializer:
    """Runs the full activity to session pipeline for one batch."""

    def __init__(
        self,
        store: SessionStore,
        config: ClassifierConfig | None = None,
        boundary_detector: BoundaryDetector | None = None,
        clustering_engine: ClusteringEngine | None = None,
        merge_processor: SmartMergeProcessor | None = None,
        fallback_classifier: RuleBasedClassifier | None = None,
        classifier: SessionClassifierAdapter | None = None,
    ):
        self.store = store
        self.config = config or ClassifierConfig()
        self.boundary_detector = boundary_detector or BoundaryDetector()
        self.clustering_engine = clustering_engine or ClusteringEngine()
        self.merge_processor = merge_processor or SmartMergeProcessor()
        self.fallback_classifier = fallback_classifier or RuleBasedClassifier(
            self.config
        )
        self.classifier = classifier

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: SessionStore,
        classifier: SessionClassifierAdapter | None = None,
    ) -> "SessionMaterializer":
        advisor = (
            ClassifierMergeAdvisor(classifier)
            if classifier is not None and settings.merge.ai_merge_enabled
            else None
        )
        return cls(
            store=store,
            config=settings.classifier,
            boundary_detector=BoundaryDetector(settings.boundary),
            clustering_engine=ClusteringEngine(settings.clustering),
            merge_processor=SmartMergeProcessor(settings.merge, advisor=advisor),
            fallback_classifier=RuleBasedClassifier(settings.classifier),
            classifier=classifier,
        )

    @property
    def min_session_duration(self) -> timedelta:
        return self.boundary_detector.config.min_session_duration

    async def build_groups(
        self, activities: Sequence[RawActivityEntry]
    ) -> list[SessionCandidate]:
        candidates = self.boundary_detector.detect(activities)
        refined = self.clustering_engine.refine(candidates)
        return await self.merge_processor.merge(refined)

    async def classify(
        self,
        activities: Sequence[RawActivityEntry],
        is_session_break: bool = False,
        context_hint: str | None = None,
        use_ai: bool | None = None,
    ) -> ClassificationResult:
        ai_allowed = self.config.ai_enabled if use_ai is None else use_ai
        result: ClassificationResult | None = None

        if (
            ai_allowed
            and self.classifier is not None
            and len(activities) >= self.config.min_activities_for_ai
        ):
            try:
                classification = await asyncio.wait_for(
                    self.classifier.classify(activities, context_hint=context_hint),
                    timeout=self.config.classification_deadline.total_seconds(),
                )
                result = ClassificationResult(classification, ClassificationSource.AI)
            except (ClassifierError, asyncio.TimeoutError) as e:
                logger.warning("AI classification failed, using fallback: {!r}", e)
            except Exception:
                logger.exception("Unexpected classifier error, using fallback")

            if result is None:
                result = ClassificationResult(
                    self.fallback_classifier.classify(activities),
                    ClassificationSource.FALLBACK,
                    ai_failed=True,
                )

        if result is None:
            result = ClassificationResult(
                self.fallback_classifier.classify(activities),
                ClassificationSource.FALLBACK,
            )

        if (
            is_session_break
            and result.classification.session_type == SessionType.UNCLEAR
        ):
            result.classification = result.classification.model_copy(
                update={
                    "session_type": SessionType.BREAK,
                    "reasoning": (
                        f"{result.classification.reasoning} "
                        "(sparse activity, treated as a break)"
                    ),
                }
            )
        return result

    def group_context_hint(
        self, group: SessionCandidate, context_hint: str | None
    ) -> str | None:
        hints = [context_hint] if context_hint else []
        if group.suggested_session_type is not None:
            hints.append(f"Merge analysis suggested {group.suggested_session_type}")
        return "\n".join(hints) or None

    async def process_group(
        self,
        group: SessionCandidate,
        semaphore: asyncio.Semaphore,
        context_hint: str | None,
        use_ai: bool | None,
        cancel_event: asyncio.Event | None,
    ) -> GroupOutcome:
        if group.total_duration < self.min_session_duration:
            return GroupOutcome(status=GroupStatus.SKIPPED)

        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                return GroupOutcome(status=GroupStatus.CANCELLED)

            result = await self.classify(
                group.activities,
                is_session_break=group.is_session_break,
                context_hint=self.group_context_hint(group, context_hint),
                use_ai=use_ai,
            )

            session = Session(
                start_time=group.start_time,
                end_time=group.end_time,
                session_type=result.classification.session_type,
                confidence_score=result.classification.confidence,
                reasoning=(
                    f"{result.classification.reasoning} "
                    f"({len(group.gaps)} gaps handled)"
                ),
                activities=group.activities,
            )

            try:
                session_id = await self.store.persist_session(session)
            except PersistenceFailure as e:
                logger.warning("Failed to persist session {}: {}", session.start_time, e)
                return GroupOutcome(
                    status=GroupStatus.PERSISTENCE_FAILED,
                    source=result.source,
                    ai_failed=result.ai_failed,
                    error=str(e),
                )
            except Exception as e:
                logger.exception("Storage error while persisting session")
                return GroupOutcome(
                    status=GroupStatus.PERSISTENCE_FAILED,
                    source=result.source,
                    ai_failed=result.ai_failed,
                    error=f"{type(e).__name__}: {e}",
                )

        return GroupOutcome(
            status=GroupStatus.CREATED,
            session_id=session_id,
            source=result.source,
            ai_failed=result.ai_failed,
        )

    def aggregate(
        self, stats: ProcessingStats, outcomes: Sequence[GroupOutcome]
    ) -> None:
        for outcome in outcomes:
            if outcome.ai_failed:
                stats.ai_failures += 1
            match outcome.status:
                case GroupStatus.CREATED:
                    stats.sessions_created += 1
                    assert outcome.session_id is not None
                    stats.session_ids.append(outcome.session_id)
                    if outcome.source == ClassificationSource.AI:
                        stats.ai_classified += 1
                    else:
                        stats.fallback_classified += 1
                case GroupStatus.SKIPPED:
                    stats.skipped_groups += 1
                case GroupStatus.CANCELLED:
                    stats.cancelled = True
                case GroupStatus.PERSISTENCE_FAILED:
                    stats.persistence_failures += 1
                    stats.errors.append(outcome.error or "unknown persistence error")

    def emit_stats(self, stats: ProcessingStats) -> None:
        fields = asdict(stats)
        fields["processing_time"] = stats.processing_time.total_seconds()
        logger.bind(event="sessionization_stats", **fields).info(
            "Sessionization batch done | activities: {} | groups: {} | sessions: {} "
            "| ai: {} | fallback: {} | ai failures: {} | persistence failures: {} "
            "| skipped: {} | cancelled: {} | took: {}",
            stats.total_activities,
            stats.groups_detected,
            stats.sessions_created,
            stats.ai_classified,
            stats.fallback_classified,
            stats.ai_failures,
            stats.persistence_failures,
            stats.skipped_groups,
            stats.cancelled,
            utils.human_delta(stats.processing_time),
        )

    async def process_activities(
        self,
        activities: Sequence[RawActivityEntry],
        context_hint: str | None = None,
        use_ai: bool | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ProcessingStats:
        started = time.monotonic()
        unlinked = utils.sort_and_dedupe(a for a in activities if a.session_id is None)
        stats = ProcessingStats(total_activities=len(unlinked))

        if unlinked:
            groups = await self.build_groups(unlinked)
            stats.groups_detected = len(groups)

            semaphore = asyncio.Semaphore(self.config.max_concurrent_classifications)
            outcomes = await asyncio.gather(
                *(
                    self.process_group(
                        group, semaphore, context_hint, use_ai, cancel_event
                    )
                    for group in groups
                )
            )
            self.aggregate(stats, outcomes)

        stats.processing_time = timedelta(seconds=time.monotonic() - started)
        self.emit_stats(stats)

        if stats.persistence_failures and not stats.sessions_created:
            raise BatchPersistenceError(
                f"All {stats.persistence_failures} session writes failed", stats
            )
        return stats


async def run_sessionization(settings: Settings | None = None) -> ProcessingStats:
    settings = settings or load_settings()
    logger.info("Starting sessionization run")

    store = SqliteSessionStore(settings.db_path)
    await store.setup()

    classifier = (
        OllamaClassifier(settings.ollama, feedback_provider=store)
        if settings.classifier.ai_enabled
        else None
    )
    materializer = SessionMaterializer.from_settings(
        settings, store=store, classifier=classifier
    )

    activities = await store.get_unclassified_activities(settings.lookback_hours)
    logger.info(
        "Fetched {} unclassified activities from the last {}h",
        len(activities),
        settings.lookback_hours,
    )
    return await materializer.process_activities(activities)
