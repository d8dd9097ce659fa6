from datetime import timedelta
from typing import Sequence

from focusflare import utils
from focusflare.config import BoundaryConfig
from focusflare.entities import GapType, RawActivityEntry
from focusflare.modules.sessions.types import Gap, SessionCandidate


def is_significant_context_switch(
    previous: RawActivityEntry,
    next_activity: RawActivityEntry,
    excluded_apps: frozenset[str],
) -> bool:
    """Both apps are real applications and they differ.

    Shell chrome such as the desktop or taskbar never counts as a switch.
    """
    previous_app = previous.app_name.lower()
    next_app = next_activity.app_name.lower()
    if previous_app in excluded_apps or next_app in excluded_apps:
        return False
    return previous_app != next_app


class BoundaryDetector:
    """Coarse segmentation of a sorted activity stream into candidates."""

    def __init__(self, config: BoundaryConfig | None = None):
        self.config = config or BoundaryConfig()

    def pause_between(
        self, last: RawActivityEntry, next_activity: RawActivityEntry
    ) -> timedelta:
        return max(next_activity.timestamp - last.end_time, timedelta(0))

    def should_close(
        self, candidate: SessionCandidate, next_activity: RawActivityEntry
    ) -> bool:
        last = candidate.activities[-1]
        idle_gap = next_activity.timestamp - last.timestamp
        candidate_duration = next_activity.timestamp - candidate.start_time

        if idle_gap > self.config.max_idle_gap:
            return True
        if candidate_duration > self.config.max_session_duration:
            return True

        pause = self.pause_between(last, next_activity)
        if (
            pause <= self.config.grace_period
            or pause < self.config.minimum_break_idle
        ):
            return False

        return is_significant_context_switch(
            last, next_activity, self.config.excluded_switch_apps
        )

    def gap_type(self, pause: timedelta) -> GapType:
        if pause > self.config.minimum_break_idle:
            return GapType.IDLE
        return GapType.SWITCH

    def is_valid(self, candidate: SessionCandidate) -> bool:
        if not candidate.activities:
            return False
        return candidate.total_duration >= self.config.min_session_duration

    def detect(self, activities: Sequence[RawActivityEntry]) -> list[SessionCandidate]:
        sorted_activities = utils.sort_and_dedupe(activities)
        if not sorted_activities:
            return []

        candidates: list[SessionCandidate] = []
        current = SessionCandidate(activities=[sorted_activities[0]])

        for activity in sorted_activities[1:]:
            if self.should_close(current, activity):
                candidates.append(current)
                current = SessionCandidate(activities=[activity])
                continue

            last = current.activities[-1]
            pause = self.pause_between(last, activity)
            if pause > self.config.min_recorded_gap:
                current.gaps.append(
                    Gap(
                        start=last.end_time,
                        end=activity.timestamp,
                        type=self.gap_type(pause),
                    )
                )
            current.activities.append(activity)

        candidates.append(current)

        return [candidate for candidate in candidates if self.is_valid(candidate)]
