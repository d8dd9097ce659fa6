"""Tests for the clustering stage."""

from datetime import timedelta

import pytest

from focusflare.modules.sessions.boundaries import BoundaryDetector
from focusflare.modules.sessions.clustering import (
    ClusteringEngine,
    app_category_weight,
    context_similarity,
    context_weight,
)
from tests.helpers import make_activity, make_run


def minutes(n: float) -> timedelta:
    return timedelta(minutes=n)


@pytest.mark.parametrize(
    ("app_a", "app_b", "expected"),
    [
        ("VSCode", "vscode", 0.8),
        ("Google Chrome", "Mozilla Firefox", 0.6),
        ("Microsoft Word", "Microsoft Excel", 0.6),
        ("VSCode", "Spotify", 0.2),
    ],
)
def test_context_similarity(app_a, app_b, expected):
    a = make_activity(1, minutes(0), app_name=app_a)
    b = make_activity(2, minutes(1), app_name=app_b)
    assert context_similarity(a, b) == expected


@pytest.mark.parametrize(
    ("app_name", "expected"),
    [
        ("Visual Studio Code", 1.0),
        ("Microsoft Excel", 0.9),
        ("Firefox", 0.8),
        ("Slack", 0.7),
        ("Spotify", 0.6),
        ("Weather", 0.3),
    ],
)
def test_app_category_weight(app_name, expected):
    assert app_category_weight(app_name) == expected


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("pandas documentation", 0.9),
        ("YouTube - Rust course part 3", 0.8),
        ("Netflix", 0.3),
        ("Untitled", 0.5),
    ],
)
def test_context_weight(title, expected):
    assert context_weight(title) == expected


class TestCluster:
    def test_empty_input(self):
        assert ClusteringEngine().cluster([]) == []

    def test_same_app_run_is_one_cluster(self):
        activities = make_run(1, minutes(0), 5, duration=minutes(1))

        [cluster] = ClusteringEngine().cluster(activities)

        assert cluster.coherence_score == pytest.approx(0.8)
        assert not cluster.is_session_break
        # 5 min of 60 (0.3) + full density (0.2) + coherence (0.3) + few apps (0.2)
        assert cluster.quality_score == pytest.approx(
            5 / 60 * 0.3 + 0.2 + 0.8 * 0.3 + 0.2
        )
        assert cluster.features is not None
        assert cluster.features.app_category_weight == 1.0

    def test_unrelated_apps_split_into_clusters(self):
        activities = make_run(1, minutes(0), 2, app_name="VSCode") + make_run(
            3, minutes(6), 2, app_name="Spotify"
        )

        clusters = ClusteringEngine().cluster(activities)

        assert [[a.id for a in c.activities] for c in clusters] == [[1, 2], [3, 4]]
        assert clusters[0].start_time < clusters[1].start_time

    def test_undersized_group_is_folded_into_neighbour(self):
        activities = make_run(1, minutes(0), 2, app_name="VSCode") + [
            make_activity(
                3, minutes(6), app_name="Spotify", duration=timedelta(seconds=30)
            )
        ]

        clusters = ClusteringEngine().cluster(activities)

        assert len(clusters) == 1
        assert [a.id for a in clusters[0].activities] == [1, 2, 3]

    def test_sparse_cluster_is_flagged_as_break(self):
        activities = [
            make_activity(1, minutes(0), duration=minutes(1)),
            make_activity(2, minutes(9), duration=minutes(15)),
        ]

        [cluster] = ClusteringEngine().cluster(activities)

        assert cluster.is_session_break

    def test_quality_within_unit_range(self):
        activities = (
            make_run(1, minutes(0), 4, app_name="VSCode")
            + make_run(5, minutes(12), 4, app_name="Firefox")
            + make_run(9, minutes(24), 4, app_name="Slack")
        )

        for cluster in ClusteringEngine().cluster(activities):
            assert 0.0 <= cluster.quality_score <= 1.0
            assert 0.0 <= cluster.coherence_score <= 1.0

    def test_falls_back_to_time_gap_grouping_on_failure(self, monkeypatch):
        engine = ClusteringEngine()

        def broken(activities):
            raise RuntimeError("feature extraction exploded")

        monkeypatch.setattr(engine, "_cluster", broken)
        activities = make_run(1, minutes(0), 3) + [
            make_activity(4, minutes(60), duration=minutes(3))
        ]

        clusters = engine.cluster(activities)

        assert [c.id for c in clusters] == ["fallback-0"]
        assert [a.id for a in clusters[0].activities] == [1, 2, 3]


class TestSplitByContext:
    def test_low_average_similarity_splits_at_weak_links(self):
        activities = [
            make_activity(1, minutes(0), app_name="VSCode", duration=minutes(3)),
            make_activity(2, minutes(3), app_name="Spotify", duration=minutes(3)),
            make_activity(3, minutes(6), app_name="Weather", duration=minutes(3)),
        ]

        pieces, average = ClusteringEngine().split_by_context(activities)

        assert average == pytest.approx(0.2)
        assert [[a.id for a in piece] for piece in pieces] == [[1], [2], [3]]

    def test_coherent_group_is_kept(self):
        activities = make_run(1, minutes(0), 3)

        pieces, average = ClusteringEngine().split_by_context(activities)

        assert average == pytest.approx(0.8)
        assert len(pieces) == 1


class TestRefine:
    def test_gaps_follow_their_cluster(self):
        activities = [
            make_activity(1, minutes(0), duration=minutes(3)),
            make_activity(2, minutes(3) + timedelta(seconds=40), duration=minutes(3)),
        ]
        candidates = BoundaryDetector().detect(activities)

        [refined] = ClusteringEngine().refine(candidates)

        assert [a.id for a in refined.activities] == [1, 2]
        assert refined.gaps == candidates[0].gaps
        assert len(refined.gaps) == 1
