from __future__ import annotations

import logging
from typing import Optional

from callback_board.models import Notification
from notifications.session import BoardSession

logger = logging.getLogger(__name__)


class OverdueNotifier:
    """One-shot alert when the overdue count grows.

    The first non-zero count only sets the baseline, so opening the board
    with old overdue items does not alert. Equal counts never re-alert.
    """

    def observe(self, overdue_count: int, session: BoardSession) -> Optional[Notification]:
        previous = session.previous_overdue_count
        session.previous_overdue_count = overdue_count

        if overdue_count > previous and previous > 0:
            logger.info(
                f"Overdue callbacks for {session.user_id} rose from {previous} to {overdue_count}"
            )
            return session.notify("error", f"You have {overdue_count} overdue callback(s)!")
        return None
