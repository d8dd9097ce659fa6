import asyncio
from datetime import timedelta
from typing import Protocol, Sequence

from loguru import logger

from focusflare import catalog, utils
from focusflare.config import MergeConfig
from focusflare.entities import ClassifierError, GapType
from focusflare.modules.sessions.types import Gap, MergeDecision, SessionCandidate
from focusflare.protocols import SessionClassifierAdapter


def _in_set(app: str, apps: frozenset[str]) -> bool:
    return any(known in app for known in apps)


def apps_related(app1: str, app2: str) -> bool:
    norm1 = app1.lower()
    norm2 = app2.lower()

    for apps in catalog.MERGE_RELATIONSHIP_SETS:
        if _in_set(norm1, apps) and _in_set(norm2, apps):
            return True

    # Work and support tools belong together
    work_or_support = catalog.WORK_APPS | catalog.SUPPORT_APPS
    return _in_set(norm1, work_or_support) and _in_set(norm2, work_or_support)


class MergeAdvisor(Protocol):
    async def decide(
        self, first: SessionCandidate, second: SessionCandidate, gap: timedelta
    ) -> MergeDecision: ...


class ClassifierMergeAdvisor:
    """Learned merge path backed by the session classifier.

    Both sides are classified independently; matching types suggest they are
    one session.
    """

    def __init__(self, classifier: SessionClassifierAdapter):
        self.classifier = classifier

    async def decide(
        self, first: SessionCandidate, second: SessionCandidate, gap: timedelta
    ) -> MergeDecision:
        hint = f"Deciding whether to merge across a {utils.human_delta(gap)} gap"
        left = await self.classifier.classify(first.activities, context_hint=hint)
        right = await self.classifier.classify(second.activities, context_hint=hint)
        confidence = min(left.confidence, right.confidence)

        if left.session_type == right.session_type:
            return MergeDecision(
                should_merge=True,
                confidence=confidence,
                reasoning=f"Both sides classified as {left.session_type}",
                suggested_session_type=left.session_type,
            )
        return MergeDecision(
            should_merge=False,
            confidence=confidence,
            reasoning=(
                f"Sides classified differently: {left.session_type} vs "
                f"{right.session_type}"
            ),
        )


class SmartMergeProcessor:
    def __init__(
        self,
        config: MergeConfig | None = None,
        advisor: MergeAdvisor | None = None,
    ):
        self.config = config or MergeConfig()
        self.advisor = advisor

    def gap_between(self, first: SessionCandidate, second: SessionCandidate):
        return max(second.start_time - first.end_time, timedelta(0))

    def rule_based_decision(
        self, first: SessionCandidate, second: SessionCandidate, gap: timedelta
    ) -> MergeDecision:
        should_merge = (
            gap <= self.config.thinking_time
            or (
                gap <= self.config.related_apps_gap
                and apps_related(first.primary_app, second.primary_app)
            )
            or (
                first.primary_app == second.primary_app
                and gap <= self.config.same_app_gap
            )
        )
        if should_merge:
            return MergeDecision(
                should_merge=True,
                confidence=self.config.rule_merge_confidence,
                reasoning=(
                    f"Rule-based merge: short gap ({utils.human_delta(gap)}) "
                    "between related activities"
                ),
            )
        return MergeDecision(
            should_merge=False,
            confidence=self.config.rule_no_merge_confidence,
            reasoning="Rule-based no-merge: gap too long or apps unrelated",
        )

    async def decide(
        self, first: SessionCandidate, second: SessionCandidate, gap: timedelta
    ) -> MergeDecision:
        if self.advisor is not None and self.config.ai_merge_enabled:
            try:
                decision = await asyncio.wait_for(
                    self.advisor.decide(first, second, gap),
                    timeout=self.config.advisor_deadline.total_seconds(),
                )
            except (ClassifierError, asyncio.TimeoutError) as e:
                logger.warning("Merge advisor unavailable, using rules: {!r}", e)
            except Exception:
                logger.exception("Merge advisor failed, using rules")
            else:
                if decision.confidence >= self.config.ai_merge_confidence_threshold:
                    return decision
        return self.rule_based_decision(first, second, gap)

    def merge_pair(
        self, first: SessionCandidate, second: SessionCandidate, gap: timedelta
    ) -> SessionCandidate:
        gap_type = (
            GapType.IDLE if gap > self.config.minimum_break_idle else GapType.SWITCH
        )
        bridge = Gap(start=first.end_time, end=second.start_time, type=gap_type)
        return SessionCandidate(
            activities=utils.sort_and_dedupe([*first.activities, *second.activities]),
            gaps=[*first.gaps, bridge, *second.gaps],
            is_session_break=first.is_session_break and second.is_session_break,
            quality_score=max(first.quality_score, second.quality_score),
            suggested_session_type=(
                first.suggested_session_type or second.suggested_session_type
            ),
        )

    async def merge(
        self, candidates: Sequence[SessionCandidate]
    ) -> list[SessionCandidate]:
        ordered = sorted(candidates, key=lambda c: c.start_time)
        merged: list[SessionCandidate] = []

        i = 0
        while i < len(ordered):
            target = ordered[i]
            j = i + 1
            while j < len(ordered):
                following = ordered[j]
                gap = self.gap_between(target, following)
                if gap > self.config.merge_lookback:
                    break
                if following.end_time - target.start_time > self.config.max_session_duration:
                    break

                decision = await self.decide(target, following, gap)
                if not (
                    decision.should_merge
                    and decision.confidence >= self.config.ai_merge_confidence_threshold
                ):
                    break

                target = self.merge_pair(target, following, gap)
                if decision.suggested_session_type is not None:
                    target.suggested_session_type = decision.suggested_session_type
                j += 1

            merged.append(target)
            i = j

        return merged
