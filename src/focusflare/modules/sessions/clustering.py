from datetime import timedelta
from typing import Sequence

from loguru import logger

from focusflare import catalog, utils
from focusflare.config import ClusteringConfig
from focusflare.entities import RawActivityEntry
from focusflare.modules.sessions.types import (
    ActivityCluster,
    FeatureVector,
    SessionCandidate,
)


SAME_APP_SIMILARITY = 0.8
RELATED_APP_SIMILARITY = 0.6
UNRELATED_APP_SIMILARITY = 0.2


def app_category_weight(app_name: str) -> float:
    normalized = app_name.lower()
    for category in catalog.APP_CATEGORIES:
        if any(keyword in normalized for keyword in category.keywords):
            return category.weight
    return catalog.UNKNOWN_APP_CATEGORY_WEIGHT


def context_weight(window_title: str) -> float:
    title = window_title.lower()
    if any(keyword in title for keyword in catalog.REFERENCE_TITLE_KEYWORDS):
        return 0.9
    if "youtube" in title and any(
        keyword in title for keyword in catalog.EDUCATIONAL_VIDEO_KEYWORDS
    ):
        return 0.8
    if any(keyword in title for keyword in catalog.ENTERTAINMENT_TITLE_KEYWORDS):
        return 0.3
    return 0.5


def context_similarity(a: RawActivityEntry, b: RawActivityEntry) -> float:
    app_a = a.app_name.lower()
    app_b = b.app_name.lower()
    if app_a == app_b:
        return SAME_APP_SIMILARITY
    for group in catalog.RELATED_APP_GROUPS:
        if any(app in app_a for app in group) and any(app in app_b for app in group):
            return RELATED_APP_SIMILARITY
    return UNRELATED_APP_SIMILARITY


def pairwise_similarities(activities: Sequence[RawActivityEntry]) -> list[float]:
    return [
        context_similarity(activities[i - 1], activities[i])
        for i in range(1, len(activities))
    ]


def activities_span(activities: Sequence[RawActivityEntry]) -> timedelta:
    return utils.span_end(activities) - activities[0].timestamp


def activity_density(activities: Sequence[RawActivityEntry]) -> float:
    """Activities per minute over the span they cover."""
    minutes = activities_span(activities).total_seconds() / 60
    if minutes <= 0:
        return float(len(activities))
    return len(activities) / minutes


class ClusteringEngine:
    """Refines coarse candidates into scored, context-coherent clusters.

    Stages run in order: feature extraction, temporal clustering, contextual
    split, density flagging, then quality scoring. If any stage raises, the
    engine falls back to plain time-gap grouping, which cannot fail.
    """

    def __init__(self, config: ClusteringConfig | None = None):
        self.config = config or ClusteringConfig()

    def extract_features(
        self, activities: Sequence[RawActivityEntry]
    ) -> dict[int, FeatureVector]:
        if not activities:
            return {}
        first = activities[0].timestamp
        time_span = (activities[-1].timestamp - first).total_seconds()
        horizon = self.config.duration_weight_horizon.total_seconds()

        vectors: dict[int, FeatureVector] = {}
        for activity in activities:
            offset = (activity.timestamp - first).total_seconds()
            vectors[activity.id] = FeatureVector(
                activity_id=activity.id,
                normalized_time=offset / time_span if time_span > 0 else 0.0,
                duration_weight=min(activity.duration.total_seconds() / horizon, 1.0),
                app_category_weight=app_category_weight(activity.app_name),
                activity_level_weight=catalog.ACTIVITY_LEVEL_WEIGHTS.get(
                    activity.activity_level, 0.5
                ),
                context_weight=context_weight(activity.window_title),
                interaction_weight=min(
                    activity.interaction_count / self.config.interaction_weight_horizon,
                    1.0,
                ),
            )
        return vectors

    def should_continue(
        self, current: list[RawActivityEntry], next_activity: RawActivityEntry
    ) -> bool:
        last = current[-1]
        if next_activity.timestamp - last.timestamp > self.config.max_intra_cluster_gap:
            return False
        resulting_duration = next_activity.end_time - current[0].timestamp
        if resulting_duration > self.config.max_cluster_duration:
            return False
        return (
            context_similarity(last, next_activity)
            >= self.config.context_similarity_threshold
        )

    def is_undersized(self, activities: Sequence[RawActivityEntry]) -> bool:
        return (
            len(activities) < self.config.min_activities_per_cluster
            and activities_span(activities) < self.config.min_cluster_duration
        )

    def fold_undersized(
        self, groups: list[list[RawActivityEntry]]
    ) -> list[list[RawActivityEntry]]:
        """Absorb undersized groups into their predecessor (or successor)."""
        folded: list[list[RawActivityEntry]] = []
        pending: list[RawActivityEntry] = []
        for group in groups:
            if pending:
                group = pending + group
                pending = []
            if self.is_undersized(group):
                if folded:
                    folded[-1].extend(group)
                else:
                    pending = group
                continue
            folded.append(group)
        if pending:
            if folded:
                folded[-1].extend(pending)
            else:
                folded.append(pending)
        return folded

    def temporal_groups(
        self, activities: Sequence[RawActivityEntry]
    ) -> list[list[RawActivityEntry]]:
        groups: list[list[RawActivityEntry]] = []
        current: list[RawActivityEntry] = []
        for activity in activities:
            if current and not self.should_continue(current, activity):
                groups.append(current)
                current = []
            current.append(activity)
        if current:
            groups.append(current)
        return self.fold_undersized(groups)

    def split_by_context(
        self, activities: list[RawActivityEntry]
    ) -> tuple[list[list[RawActivityEntry]], float]:
        similarities = pairwise_similarities(activities)
        if not similarities:
            return [activities], 1.0

        average = sum(similarities) / len(similarities)
        split_points = [
            index + 1
            for index, similarity in enumerate(similarities)
            if similarity < self.config.split_pair_similarity
        ]
        if average >= self.config.split_average_similarity or not split_points:
            return [activities], average

        pieces = utils.split_by_indices(activities, split_points)
        return self.fold_undersized(pieces), average

    def coherence(self, activities: Sequence[RawActivityEntry]) -> float:
        similarities = pairwise_similarities(activities)
        if not similarities:
            return 1.0
        return utils.clamp(sum(similarities) / len(similarities))

    def density_per_minute(self, cluster: ActivityCluster) -> float:
        return activity_density(cluster.activities)

    def is_sparse(self, activities: Sequence[RawActivityEntry]) -> bool:
        """Too few activities per minute to be anything but a break."""
        if not activities:
            return False
        return activity_density(activities) < self.config.break_density_per_minute

    def quality(self, cluster: ActivityCluster) -> float:
        duration_factor = min(cluster.duration / timedelta(hours=1), 1.0)
        density_factor = min(self.density_per_minute(cluster), 1.0)
        unique_apps = len(cluster.unique_apps)
        consistency = 1.0 if unique_apps <= 3 else 3 / unique_apps
        score = (
            duration_factor * 0.3
            + density_factor * 0.2
            + cluster.coherence_score * 0.3
            + consistency * 0.2
        )
        return utils.clamp(score)

    def _cluster(self, activities: list[RawActivityEntry]) -> list[ActivityCluster]:
        features = self.extract_features(activities)

        refined: list[list[RawActivityEntry]] = []
        for group in self.temporal_groups(activities):
            pieces, _ = self.split_by_context(group)
            refined.extend(pieces)

        clusters: list[ActivityCluster] = []
        for index, group in enumerate(refined):
            cluster = ActivityCluster(
                id=f"cluster-{index}",
                activities=group,
                features=FeatureVector.mean([features[a.id] for a in group]),
                coherence_score=self.coherence(group),
            )
            cluster.is_session_break = self.is_sparse(group)
            cluster.quality_score = self.quality(cluster)
            clusters.append(cluster)

        return sorted(clusters, key=lambda c: c.start_time)

    def fallback_clusters(
        self, activities: Sequence[RawActivityEntry]
    ) -> list[ActivityCluster]:
        groups: list[list[RawActivityEntry]] = []
        current: list[RawActivityEntry] = []
        for activity in activities:
            if (
                current
                and activity.timestamp - current[-1].timestamp
                > self.config.max_intra_cluster_gap
            ):
                groups.append(current)
                current = []
            current.append(activity)
        if current:
            groups.append(current)

        return [
            ActivityCluster(id=f"fallback-{index}", activities=group)
            for index, group in enumerate(groups)
            if len(group) >= self.config.min_activities_per_cluster
        ]

    def cluster(self, activities: Sequence[RawActivityEntry]) -> list[ActivityCluster]:
        sorted_activities = utils.sort_and_dedupe(activities)
        if not sorted_activities:
            return []
        try:
            return self._cluster(sorted_activities)
        except Exception:
            logger.exception(
                "Clustering failed for {} activities, falling back to time-gap grouping",
                len(sorted_activities),
            )
            return self.fallback_clusters(sorted_activities)

    def refine(self, candidates: Sequence[SessionCandidate]) -> list[SessionCandidate]:
        refined: list[SessionCandidate] = []
        for candidate in candidates:
            for cluster in self.cluster(candidate.activities):
                gaps = [
                    gap
                    for gap in candidate.gaps
                    if gap.start >= cluster.start_time and gap.end <= cluster.end_time
                ]
                refined.append(cluster.to_candidate(gaps))
        return sorted(refined, key=lambda c: c.start_time)
