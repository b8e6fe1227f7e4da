from __future__ import annotations

import asyncio
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from callback_board.models import Callback, Notification, NotificationLevel

NOTIFICATION_BACKLOG = int(os.getenv("NOTIFICATION_BACKLOG", "50"))


@dataclass
class BoardSession:
    """Per-agent board state that outlives a single request.

    Holds the last good callback list (shown again when a fetch fails), the
    overdue baseline for the notifier, pending toasts and the change-feed
    subscription shared by everything watching this agent's board.
    """

    user_id: str
    previous_overdue_count: int = 0
    callbacks: List[Callback] = field(default_factory=list)
    notifications: Deque[Notification] = field(
        default_factory=lambda: deque(maxlen=NOTIFICATION_BACKLOG)
    )
    listeners: List[Callable[[Any], None]] = field(default_factory=list)
    subscription: Optional[Any] = None
    # guards the check-then-subscribe on ``subscription``
    subscription_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def notify(self, level: NotificationLevel, message: str) -> Notification:
        note = Notification(level=level, message=message)
        self.notifications.append(note)
        return note

    def drain_notifications(self) -> List[Notification]:
        out = list(self.notifications)
        self.notifications.clear()
        return out

    def find(self, callback_id: str) -> Optional[Callback]:
        for cb in self.callbacks:
            if cb.id == callback_id:
                return cb
        return None
