from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Sequence

from focusflare import catalog, utils
from focusflare.config import ClassifierConfig
from focusflare.entities import Classification, RawActivityEntry, SessionType


# Later entries win ties
SCORE_ORDER = (
    SessionType.FOCUSED_WORK,
    SessionType.RESEARCH,
    SessionType.ENTERTAINMENT,
    SessionType.BREAK,
    SessionType.UNCLEAR,
)


@dataclass
class Scorecard:
    scores: dict[SessionType, float] = field(
        default_factory=lambda: {session_type: 0.0 for session_type in SCORE_ORDER}
    )
    contributions: dict[SessionType, dict[str, float]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(float))
    )

    def add(self, session_type: SessionType, points: float, indicator: str) -> None:
        if not points:
            return
        self.scores[session_type] += points
        self.contributions[session_type][indicator] += points

    def add_group(
        self, session_type: SessionType, text: str, group: catalog.KeywordGroup
    ) -> int:
        matches = utils.count_matches(text, group.keywords)
        self.add(session_type, matches * group.weight, group.name)
        return matches

    def top(self) -> tuple[SessionType, float]:
        best = SCORE_ORDER[0]
        for session_type in SCORE_ORDER[1:]:
            if self.scores[session_type] >= self.scores[best]:
                best = session_type
        return best, self.scores[best]

    def dominant_indicator(self, session_type: SessionType) -> str | None:
        indicators = self.contributions.get(session_type)
        if not indicators:
            return None
        positive = {name: points for name, points in indicators.items() if points > 0}
        if not positive:
            return None
        return max(positive, key=lambda name: positive[name])


@dataclass(frozen=True)
class SessionMetrics:
    combined_text: str
    unique_apps: frozenset[str]
    active_time: timedelta
    average_duration: timedelta
    switches_per_minute: float

    @property
    def active_minutes(self) -> float:
        return self.active_time.total_seconds() / 60

    @classmethod
    def from_activities(cls, activities: Sequence[RawActivityEntry]):
        app_names = [a.app_name.lower() for a in activities]
        titles = [a.window_title.lower() for a in activities]
        active_time = sum((a.duration for a in activities), timedelta(0))
        minutes = active_time.total_seconds() / 60
        return cls(
            combined_text=" ".join(app_names + titles),
            unique_apps=frozenset(app_names),
            active_time=active_time,
            average_duration=active_time / len(activities),
            switches_per_minute=len(activities) / max(minutes, 1.0),
        )


class RuleBasedClassifier:
    """Deterministic keyword and duration scorer.

    Always returns a result, with a fixed low confidence, and is used whenever
    the external classifier is disabled or fails.
    """

    def __init__(self, config: ClassifierConfig | None = None):
        self.config = config or ClassifierConfig()

    def score(self, metrics: SessionMetrics) -> tuple[Scorecard, int, bool]:
        text = metrics.combined_text
        card = Scorecard()

        for group in catalog.DEVELOPMENT_TOOLS:
            card.add_group(SessionType.FOCUSED_WORK, text, group)

        extensions = utils.matched_keywords(text, catalog.CODE_EXTENSIONS)
        card.add(
            SessionType.FOCUSED_WORK,
            len(extensions) * catalog.CODE_EXTENSION_WEIGHT,
            "source code files",
        )

        for group in catalog.PROFESSIONAL_SOFTWARE:
            card.add_group(SessionType.FOCUSED_WORK, text, group)

        for group in catalog.RESEARCH_PLATFORMS:
            card.add_group(SessionType.RESEARCH, text, group)

        if "youtube" in text:
            if utils.count_matches(text, catalog.YOUTUBE_LEARNING_KEYWORDS):
                card.add(SessionType.RESEARCH, 15, "educational videos")
            elif utils.count_matches(text, catalog.YOUTUBE_MUSIC_KEYWORDS):
                if card.scores[SessionType.FOCUSED_WORK] > 10:
                    card.add(SessionType.FOCUSED_WORK, 5, "background music")
                else:
                    card.add(SessionType.ENTERTAINMENT, 5, "music videos")
            else:
                card.add(SessionType.ENTERTAINMENT, 12, "video watching")

        for group in catalog.ENTERTAINMENT_PLATFORMS:
            card.add_group(SessionType.ENTERTAINMENT, text, group)

        if metrics.average_duration < timedelta(minutes=2):
            card.add(SessionType.BREAK, 15, "short activities")
        if metrics.switches_per_minute > 3:
            card.add(SessionType.BREAK, 12, "frequent app switching")

        card.add_group(SessionType.BREAK, text, catalog.QUICK_TASK_INDICATORS)

        if utils.count_matches(text, catalog.EMAIL_KEYWORDS):
            if metrics.average_duration < timedelta(minutes=5):
                card.add(SessionType.BREAK, 10, "quick email checks")
            else:
                card.add(SessionType.FOCUSED_WORK, 5, "email work")

        card.add_group(SessionType.BREAK, text, catalog.IDLE_INDICATORS)

        if metrics.average_duration > timedelta(minutes=15):
            card.add(SessionType.FOCUSED_WORK, 10, "long uninterrupted activities")
            card.add(SessionType.RESEARCH, 8, "long uninterrupted activities")
            card.add(SessionType.BREAK, -15, "long uninterrupted activities")

        if metrics.active_minutes > 30 and len(metrics.unique_apps) <= 2:
            card.add(SessionType.FOCUSED_WORK, 8, "sustained single-app use")
            card.add(SessionType.RESEARCH, 6, "sustained single-app use")

        professional_matches = card.add_group(
            SessionType.FOCUSED_WORK, text, catalog.PROFESSIONAL_CONTEXT
        )
        card.add_group(SessionType.RESEARCH, text, catalog.LEARNING_CONTEXT)

        if utils.count_matches(text, catalog.BROWSER_KEYWORDS):
            for session_type, domains in catalog.BROWSER_DOMAINS.items():
                card.add(
                    session_type,
                    utils.count_matches(text, domains) * catalog.BROWSER_DOMAIN_WEIGHT,
                    "browser domains",
                )

        code_related = "code" in text or bool(extensions)
        return card, professional_matches, code_related

    def decide(
        self,
        card: Scorecard,
        metrics: SessionMetrics,
        professional_matches: int,
        code_related: bool,
    ) -> SessionType:
        top, top_score = card.top()
        if top_score < self.config.min_score_threshold:
            return SessionType.UNCLEAR

        scores = card.scores
        if top == SessionType.BREAK and metrics.active_minutes > 20:
            if metrics.average_duration > timedelta(minutes=10):
                return SessionType.FOCUSED_WORK
            return SessionType.UNCLEAR

        if (
            top == SessionType.ENTERTAINMENT
            and scores[SessionType.FOCUSED_WORK]
            >= scores[SessionType.ENTERTAINMENT] * 0.7
            and professional_matches > 0
        ):
            return SessionType.FOCUSED_WORK

        if (
            top == SessionType.RESEARCH
            and scores[SessionType.FOCUSED_WORK] >= scores[SessionType.RESEARCH] * 0.8
            and code_related
        ):
            return SessionType.FOCUSED_WORK

        return top

    def reasoning(
        self, session_type: SessionType, card: Scorecard, metrics: SessionMetrics
    ) -> str:
        indicator = card.dominant_indicator(session_type)
        apps = ", ".join(sorted(metrics.unique_apps))
        if session_type == SessionType.UNCLEAR or indicator is None:
            _, top_score = card.top()
            return (
                f"Rule-based: mixed activity across {len(metrics.unique_apps)} "
                f"app(s) ({apps}), strongest score {top_score:g}"
            )
        return (
            f"Rule-based: {session_type} driven by {indicator} "
            f"(score {card.scores[session_type]:g}) across {apps}"
        )

    def classify(self, activities: Sequence[RawActivityEntry]) -> Classification:
        if not activities:
            return Classification(
                session_type=SessionType.UNCLEAR,
                confidence=self.config.fallback_confidence,
                reasoning="Rule-based: no activities to analyze",
            )

        metrics = SessionMetrics.from_activities(activities)
        card, professional_matches, code_related = self.score(metrics)
        session_type = self.decide(card, metrics, professional_matches, code_related)
        return Classification(
            session_type=session_type,
            confidence=self.config.fallback_confidence,
            reasoning=self.reasoning(session_type, card, metrics),
        )
