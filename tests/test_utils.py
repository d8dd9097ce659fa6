from datetime import datetime, timedelta, timezone

import pytest

from focusflare.utils import (
    clamp,
    datetime_to_iso_8601,
    human_delta,
    jaccard_similarity,
    keywords,
    primary_app,
    sort_and_dedupe,
    split_by_indices,
)
from tests.helpers import make_activity


@pytest.mark.parametrize(
    ("value", "expected"),
    [(-0.5, 0.0), (0.0, 0.0), (0.42, 0.42), (1.0, 1.0), (3.0, 1.0)],
)
def test_clamp(value, expected):
    assert clamp(value) == expected


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=42), "42 sec"),
        (timedelta(minutes=3, seconds=5), "3 min 5 sec"),
        (timedelta(hours=2, minutes=1), "2 hr(s) 1 min 0 sec"),
        (timedelta(days=1, hours=1), "1 day(s) 1 hr(s) 0 min 0 sec"),
    ],
)
def test_human_delta(delta, expected):
    assert human_delta(delta) == expected


def test_datetime_to_iso_8601_normalizes_to_utc():
    naive = datetime(2025, 1, 1, 12, 0)
    offset = datetime(2025, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

    assert datetime_to_iso_8601(naive) == "2025-01-01T12:00:00+00:00"
    assert datetime_to_iso_8601(offset) == "2025-01-01T12:00:00+00:00"


def test_keywords_drop_short_words():
    assert keywords("main.py - My Project") == {"main", "project"}


@pytest.mark.parametrize(
    ("a", "b", "expected"),
    [
        ({"a", "b"}, {"a", "b"}, 1.0),
        ({"a", "b"}, {"b", "c"}, 1 / 3),
        ({"a"}, set(), 0.0),
        (set(), set(), 0.0),
    ],
)
def test_jaccard_similarity(a, b, expected):
    assert jaccard_similarity(a, b) == pytest.approx(expected)


def test_split_by_indices():
    assert split_by_indices([1, 2, 3, 4, 5], [2, 4]) == [[1, 2], [3, 4], [5]]
    assert split_by_indices([1, 2], []) == [[1, 2]]


def test_sort_and_dedupe_orders_by_timestamp_then_id():
    a = make_activity(2, timedelta(minutes=1))
    b = make_activity(1, timedelta(minutes=1))
    c = make_activity(3, timedelta(0))

    assert [x.id for x in sort_and_dedupe([a, b, c, a])] == [3, 1, 2]


def test_primary_app_earliest_wins_ties():
    activities = [
        make_activity(1, timedelta(0), app_name="Slack", duration=timedelta(minutes=2)),
        make_activity(2, timedelta(minutes=2), app_name="VSCode", duration=timedelta(minutes=2)),
        make_activity(3, timedelta(minutes=4), app_name="Firefox", duration=timedelta(minutes=1)),
    ]

    assert primary_app(activities) == "Slack"
    assert primary_app([]) == ""
