from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple

from callback_board.models import Callback
from scheduling.clock import align, is_overdue, start_of_day


class BucketWindows(NamedTuple):
    today_start: datetime
    today_end: datetime
    week_end: datetime
    next_week_end: datetime


def bucket_windows(now: datetime) -> BucketWindows:
    today = start_of_day(now)
    return BucketWindows(
        today_start=today,
        today_end=today + timedelta(days=1),
        week_end=today + timedelta(days=7),
        next_week_end=today + timedelta(days=14),
    )


@dataclass
class CallbackBuckets:
    today: List[Callback] = field(default_factory=list)
    this_week: List[Callback] = field(default_factory=list)
    next_week: List[Callback] = field(default_factory=list)
    later: List[Callback] = field(default_factory=list)

    def by_id(self) -> Dict[str, List[Callback]]:
        return {
            "today": self.today,
            "thisWeek": self.this_week,
            "nextWeek": self.next_week,
            "later": self.later,
        }

    def overdue(self, now: datetime) -> List[Callback]:
        return [c for c in self.today if is_overdue(c.scheduled_for, now)]

    def __len__(self) -> int:
        return len(self.today) + len(self.this_week) + len(self.next_week) + len(self.later)


def classify(scheduled_for: datetime, windows: BucketWindows) -> str:
    """Bucket id for a single timestamp.

    Anything before today's start is overdue and folds into ``today``.
    """
    if scheduled_for < windows.today_end:
        return "today"
    if scheduled_for < windows.week_end:
        return "thisWeek"
    if scheduled_for < windows.next_week_end:
        return "nextWeek"
    return "later"


def bucket_callbacks(callbacks: Iterable[Callback], now: datetime) -> CallbackBuckets:
    """Partition pending callbacks into the four board columns.

    Pure and recomputed in full on every call; input order is preserved
    inside each bucket.
    """
    windows = bucket_windows(now)
    buckets = CallbackBuckets()
    columns = buckets.by_id()

    for cb in callbacks:
        if cb.status != "pending":
            continue
        columns[classify(align(cb.scheduled_for, now), windows)].append(cb)

    return buckets
