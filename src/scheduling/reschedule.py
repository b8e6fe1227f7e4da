"""
Drag-and-drop reschedule transition.

Dropping a card on a column maps to one representative date per column.
These offsets are deliberately not derived from the bucket windows in
``scheduling.bucketing``: a card dropped on ``later`` lands three weeks out
even though the column starts at two.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from callback_board.models import Callback, CallbackUpdate
from scheduling.clock import start_of_day

logger = logging.getLogger(__name__)


RESCHEDULE_TARGETS: Dict[str, Callable[[datetime], datetime]] = {
    "today": start_of_day,
    "thisWeek": lambda now: now + timedelta(days=3),
    "nextWeek": lambda now: now + timedelta(weeks=1),
    "later": lambda now: now + timedelta(weeks=3),
}


def reschedule_target(callback: Callback, target_id: str, now: datetime) -> Optional[CallbackUpdate]:
    """Build the update for dropping ``callback`` onto ``target_id``.

    Returns None when the drop is a no-op: the card was released over
    itself, or the target is not a column.
    """
    if not target_id or target_id == callback.id:
        return None

    date_for = RESCHEDULE_TARGETS.get(target_id)
    if date_for is None:
        logger.info(f"Ignoring drop of {callback.id} on unknown target {target_id!r}")
        return None

    return CallbackUpdate(scheduled_for=date_for(now), status="rescheduled")
