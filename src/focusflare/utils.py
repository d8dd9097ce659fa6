from collections import Counter, defaultdict
from datetime import datetime, timedelta, timezone
import re
from typing import Hashable, Iterable, Sequence, TypeVar

from focusflare.entities import RawActivityEntry


T = TypeVar("T")
H = TypeVar("H", bound=Hashable)

WORD_REGEX = re.compile(r"\w+")


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def count_matches(text: str, keywords: Iterable[str]) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def matched_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    return [keyword for keyword in keywords if keyword in text]


def most_common(items: Iterable[H]) -> H | None:
    """Most frequent item, ties resolved by first occurrence."""
    counts = Counter(items)
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def app_durations(activities: Sequence[RawActivityEntry]) -> dict[str, timedelta]:
    totals: dict[str, timedelta] = defaultdict(timedelta)
    for activity in activities:
        totals[activity.app_name] += activity.duration
    return dict(totals)


def primary_app(activities: Sequence[RawActivityEntry]) -> str:
    """App with the greatest cumulative duration, earliest app wins ties."""
    totals = app_durations(activities)
    if not totals:
        return ""
    best_app = ""
    best_duration = timedelta(-1)
    for app, duration in totals.items():
        if duration > best_duration:
            best_app, best_duration = app, duration
    return best_app


def sort_and_dedupe(activities: Iterable[RawActivityEntry]) -> list[RawActivityEntry]:
    seen: set[int] = set()
    result: list[RawActivityEntry] = []
    for activity in sorted(activities, key=lambda a: a.sort_key):
        if activity.id in seen:
            continue
        seen.add(activity.id)
        result.append(activity)
    return result


def span_end(activities: Sequence[RawActivityEntry]) -> datetime:
    return max(activity.end_time for activity in activities)


def keywords(text: str, min_length: int = 3) -> set[str]:
    return {word for word in WORD_REGEX.findall(text.lower()) if len(word) >= min_length}


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def split_by_indices(seq: Sequence[T], indices: Sequence[int]) -> list[list[T]]:
    result: list[list[T]] = []
    last = 0
    for idx in indices:
        result.append(list(seq[last:idx]))
        last = idx
    result.append(list(seq[last:]))
    return result


def human_delta(delta: timedelta) -> str:
    total_seconds = int(delta.total_seconds())
    if total_seconds < 0:
        total_seconds = abs(total_seconds)

    days, rem = divmod(total_seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, seconds = divmod(rem, 60)

    if days:
        return f"{days} day(s) {hours} hr(s) {minutes} min {seconds} sec"
    if hours:
        return f"{hours} hr(s) {minutes} min {seconds} sec"
    if minutes:
        return f"{minutes} min {seconds} sec"
    return f"{seconds} sec"


def datetime_to_iso_8601(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
