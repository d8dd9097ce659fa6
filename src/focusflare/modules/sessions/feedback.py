from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Sequence

from focusflare import utils
from focusflare.entities import RawActivityEntry, UserFeedback


RECENT_WINDOW = timedelta(days=7)
CLOSE_SIMILARITY = 0.1


@dataclass(frozen=True)
class RelevantFeedback:
    feedback: UserFeedback
    similarity: float


def activity_text(activities: Sequence[RawActivityEntry]) -> str:
    return " ".join(f"{a.app_name} {a.window_title}" for a in activities).lower()


def activity_pattern(activities: Sequence[RawActivityEntry]) -> str:
    """Compact app/title fingerprint stored alongside a correction."""
    return ";;".join(f"{a.app_name}|{a.window_title}" for a in activities)


def find_relevant_feedback(
    feedback: Sequence[UserFeedback],
    text: str,
    threshold: float = 0.3,
    limit: int = 5,
) -> list[RelevantFeedback]:
    current = utils.keywords(text)
    matches = [
        RelevantFeedback(feedback=item, similarity=similarity)
        for item in feedback
        if (
            similarity := utils.jaccard_similarity(
                current, utils.keywords(item.activity_pattern)
            )
        )
        > threshold
    ]

    # Similarity first, recency when two similarities are close
    def compare_key(match: RelevantFeedback) -> tuple[float, float]:
        bucket = round(match.similarity / CLOSE_SIMILARITY)
        return (-bucket, -match.feedback.created_at.timestamp())

    return sorted(matches, key=compare_key)[:limit]


def feedback_insights(relevant: Sequence[RelevantFeedback], now: datetime) -> str:
    insights: list[str] = []

    corrections = Counter(
        f"{m.feedback.original_classification}->{m.feedback.corrected_classification}"
        for m in relevant
    )
    if corrections:
        top = ", ".join(
            f"{pattern} ({count}x)" for pattern, count in corrections.most_common(3)
        )
        insights.append(f"Common corrections: {top}")

    context_words = Counter(
        word
        for m in relevant
        for word in m.feedback.user_context.lower().split()
        if len(word) > 3
    )
    if context_words:
        insights.append(
            "User insights: "
            + ", ".join(word for word, _ in context_words.most_common(3))
        )

    recent = [m for m in relevant if now - m.feedback.created_at < RECENT_WINDOW]
    if recent:
        insights.append(
            f"Recent trend: {len(recent)} similar corrections in past week"
        )

    return "; ".join(insights) if insights else "No clear patterns identified"


def build_learned_context(
    activities: Sequence[RawActivityEntry],
    feedback: Sequence[UserFeedback],
    now: datetime | None = None,
    threshold: float = 0.3,
    limit: int = 5,
) -> str:
    if not feedback:
        return "No learned patterns available yet"

    relevant = find_relevant_feedback(
        feedback, activity_text(activities), threshold=threshold, limit=limit
    )
    if not relevant:
        return "No similar patterns found in user feedback"

    return f"Learned patterns: {feedback_insights(relevant, now or utils.utc_now())}"
