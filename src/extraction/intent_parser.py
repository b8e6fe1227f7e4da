"""
Callback intent parser.

Turns free-text call wrap-up notes into a callback decision using keyword
heuristics. Matching is a case-insensitive substring test; the time rules
are evaluated top to bottom and the first match wins, so overlapping
phrases ("this week" vs "week") depend on the order of ``TIME_RULES``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import NamedTuple, Optional, Tuple

from callback_board.models import CallbackIntent, Priority
from scheduling.clock import start_of_day, system_clock


TRIGGER_PHRASES: Tuple[str, ...] = (
    "call back",
    "callback",
    "follow up",
    "followup",
    "reach out",
    "contact later",
    "try again",
)

ESCALATION_PHRASES: Tuple[str, ...] = ("important", "must call")


class TimeRule(NamedTuple):
    phrases: Tuple[str, ...]
    day_offset: int
    priority: Priority


TIME_RULES: Tuple[TimeRule, ...] = (
    TimeRule(("urgent", "asap", "immediately"), 0, "urgent"),
    TimeRule(("today", "later today"), 0, "high"),
    TimeRule(("tomorrow",), 1, "high"),
    TimeRule(("next week",), 7, "medium"),
    TimeRule(("this week",), 3, "medium"),
    TimeRule(("few days",), 3, "medium"),
    TimeRule(("week",), 7, "low"),
    TimeRule(("month",), 28, "low"),
)

DEFAULT_DAY_OFFSET = 1
DEFAULT_PRIORITY: Priority = "medium"


def _contains_any(text: str, phrases: Tuple[str, ...]) -> bool:
    return any(p in text for p in phrases)


def match_time_rule(lower_notes: str) -> Optional[TimeRule]:
    for rule in TIME_RULES:
        if _contains_any(lower_notes, rule.phrases):
            return rule
    return None


def parse_callback_intent(notes: Optional[str], now: Optional[datetime] = None) -> CallbackIntent:
    """Classify call notes into (create?, date, priority).

    Never raises: empty or unrecognised notes give the "no callback" result.
    """
    if not notes:
        return CallbackIntent()

    lower_notes = notes.lower()
    if not _contains_any(lower_notes, TRIGGER_PHRASES):
        return CallbackIntent()

    today = start_of_day(now or system_clock()())
    day_offset = DEFAULT_DAY_OFFSET
    priority: Priority = DEFAULT_PRIORITY

    rule = match_time_rule(lower_notes)
    if rule is not None:
        day_offset = rule.day_offset
        priority = rule.priority

    if _contains_any(lower_notes, ESCALATION_PHRASES) and priority != "urgent":
        priority = "high"

    return CallbackIntent(
        should_create_callback=True,
        callback_date=today + timedelta(days=day_offset),
        priority=priority,
    )
