import logging
from datetime import datetime
from typing import List, NamedTuple, Optional, Tuple

from api.metrics import (
    BOARD_SIZE,
    CALLBACKS_CREATED_TOTAL,
    CALLBACKS_RESCHEDULED_TOTAL,
    OVERDUE_ALERTS_TOTAL,
)
from callback_board.models import (
    BoardColumn,
    BoardView,
    Callback,
    CallbackCard,
    CallbackCreate,
    CallbackIntent,
    CallbackUpdate,
    WrapUpNotes,
)
from extraction.intent_parser import parse_callback_intent
from notifications.overdue import OverdueNotifier
from notifications.session import BoardSession
from scheduling.bucketing import bucket_callbacks
from scheduling.clock import Clock, align, is_overdue, system_clock
from scheduling.reschedule import reschedule_target
from storage.callback_store import (
    CallbackNotFound,
    CallbackStore,
    CallbackStoreError,
    ChangeEvent,
    ChangeListener,
    Subscription,
)

logger = logging.getLogger(__name__)

COLUMN_TITLES = {
    "today": "Today & Overdue",
    "thisWeek": "This Week",
    "nextWeek": "Next Week",
    "later": "Follow-up Later",
}


class MoveOutcome(NamedTuple):
    status: str  # moved, ignored or failed
    callback: Optional[Callback] = None


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def due_label(scheduled_for: datetime, now: datetime) -> str:
    """Short relative label for a card, e.g. "in 3 days" or "2 hours ago"."""
    delta = align(scheduled_for, now) - now
    seconds = abs(delta.total_seconds())

    if seconds < 60:
        return "now"
    if seconds < 3600:
        text = _plural(int(seconds // 60), "minute")
    elif seconds < 86400:
        text = _plural(int(seconds // 3600), "hour")
    else:
        text = _plural(int(seconds // 86400), "day")

    return f"in {text}" if delta.total_seconds() > 0 else f"{text} ago"


class CallbackBoardService:
    """Per-agent callback board operations.

    This is where store failures stop: they are logged, turned into a toast
    on the session and the caller gets ``None``/``False``. Unknown ids are
    the exception and surface as ``CallbackNotFound``.
    """

    def __init__(
        self,
        store: CallbackStore,
        clock: Optional[Clock] = None,
        notifier: Optional[OverdueNotifier] = None,
    ):
        self.store = store
        self.clock = clock or system_clock()
        self.notifier = notifier or OverdueNotifier()

    async def refresh(self, session: BoardSession) -> List[Callback]:
        """Refetch pending callbacks; on failure keep showing the last good list."""
        try:
            session.callbacks = await self.store.list(session.user_id)
        except CallbackStoreError as e:
            logger.error(f"Error fetching callbacks for {session.user_id}: {e}")
            session.notify("error", "Failed to load callbacks")
        return session.callbacks

    async def board(self, session: BoardSession) -> BoardView:
        callbacks = await self.refresh(session)
        now = self.clock()

        buckets = bucket_callbacks(callbacks, now)
        overdue_count = len(buckets.overdue(now))
        if self.notifier.observe(overdue_count, session) is not None:
            OVERDUE_ALERTS_TOTAL.inc()

        columns = []
        for bucket_id, items in buckets.by_id().items():
            cards = [self._card(cb, now) for cb in items]
            columns.append(
                BoardColumn(
                    id=bucket_id,
                    title=COLUMN_TITLES[bucket_id],
                    count=len(cards),
                    cards=cards,
                )
            )
            BOARD_SIZE.labels(bucket=bucket_id).set(len(cards))

        return BoardView(
            generated_at=now,
            overdue_count=overdue_count,
            columns=columns,
            notifications=session.drain_notifications(),
        )

    def _card(self, cb: Callback, now: datetime) -> CallbackCard:
        overdue = is_overdue(cb.scheduled_for, now)
        return CallbackCard(
            callback=cb,
            is_overdue=overdue,
            is_urgent=overdue or cb.priority == "urgent",
            due_label="Overdue" if overdue else due_label(cb.scheduled_for, now),
        )

    async def _owned(self, session: BoardSession, callback_id: str) -> Callback:
        cb = await self.store.get(callback_id)
        if cb.user_id != session.user_id:
            raise CallbackNotFound(callback_id)
        return cb

    async def create(
        self,
        session: BoardSession,
        data: CallbackCreate,
        source: str = "manual",
    ) -> Optional[Callback]:
        try:
            cb = await self.store.create(data)
        except CallbackStoreError as e:
            logger.error(f"Error creating callback: {e}")
            session.notify("error", "Failed to create callback")
            return None

        CALLBACKS_CREATED_TOTAL.labels(source=source).inc()
        session.notify("success", "Callback created")
        await self.refresh(session)
        return cb

    async def update(
        self,
        session: BoardSession,
        callback_id: str,
        changes: CallbackUpdate,
    ) -> Optional[Callback]:
        try:
            await self._owned(session, callback_id)
            cb = await self.store.update(callback_id, changes)
        except CallbackNotFound:
            raise
        except CallbackStoreError as e:
            logger.error(f"Error updating callback {callback_id}: {e}")
            session.notify("error", "Failed to update callback")
            return None

        session.notify("success", "Callback updated")
        await self.refresh(session)
        return cb

    async def complete(self, session: BoardSession, callback_id: str) -> Optional[Callback]:
        return await self.update(session, callback_id, CallbackUpdate(status="completed"))

    async def cancel(self, session: BoardSession, callback_id: str) -> Optional[Callback]:
        return await self.update(session, callback_id, CallbackUpdate(status="cancelled"))

    async def delete(self, session: BoardSession, callback_id: str) -> bool:
        try:
            await self._owned(session, callback_id)
            await self.store.delete(callback_id)
        except CallbackNotFound:
            raise
        except CallbackStoreError as e:
            logger.error(f"Error deleting callback {callback_id}: {e}")
            session.notify("error", "Failed to delete callback")
            return False

        session.notify("success", "Callback deleted")
        await self.refresh(session)
        return True

    async def move(self, session: BoardSession, callback_id: str, target_id: str) -> MoveOutcome:
        """Drop a card on a column: new date from the reschedule table, status rescheduled."""
        cb = session.find(callback_id)
        if cb is None:
            try:
                cb = await self._owned(session, callback_id)
            except CallbackNotFound:
                raise
            except CallbackStoreError as e:
                logger.error(f"Error loading callback {callback_id} for move: {e}")
                session.notify("error", "Failed to update callback")
                return MoveOutcome("failed")

        changes = reschedule_target(cb, target_id, self.clock())
        if changes is None:
            return MoveOutcome("ignored")

        updated = await self.update(session, callback_id, changes)
        if updated is None:
            return MoveOutcome("failed")

        CALLBACKS_RESCHEDULED_TOTAL.labels(target=target_id).inc()
        logger.info(f"Rescheduled callback {callback_id} to {target_id} ({updated.scheduled_for.isoformat()})")
        return MoveOutcome("moved", updated)

    async def wrap_up(
        self,
        session: BoardSession,
        payload: WrapUpNotes,
    ) -> Tuple[CallbackIntent, Optional[Callback]]:
        """Run the intent parser over call notes and create the callback it asks for."""
        intent = parse_callback_intent(payload.notes, now=self.clock())
        if not intent.should_create_callback:
            return intent, None

        data = CallbackCreate(
            user_id=session.user_id,
            lead_id=payload.lead_id,
            call_activity_id=payload.call_activity_id,
            scheduled_for=intent.callback_date,
            priority=intent.priority,
            notes=payload.notes,
            lead_name=payload.lead_name,
            phone_number=payload.phone_number,
        )
        return intent, await self.create(session, data, source="wrap_up")

    async def watch(self, session: BoardSession, listener: ChangeListener) -> Subscription:
        """Attach ``listener`` to the user's change feed.

        One store subscription per session is shared by all listeners and
        dropped when the last one unsubscribes.
        """
        async with session.subscription_lock:
            session.listeners.append(listener)

            if session.subscription is None:
                def _fan_out(event: ChangeEvent) -> None:
                    for fn in list(session.listeners):
                        fn(event)

                try:
                    session.subscription = await self.store.subscribe(session.user_id, _fan_out)
                except CallbackStoreError as e:
                    logger.error(f"Error subscribing to callbacks for {session.user_id}: {e}")
                    session.notify("error", "Failed to subscribe to callback updates")

        async def _close() -> None:
            async with session.subscription_lock:
                if listener in session.listeners:
                    session.listeners.remove(listener)
                if not session.listeners and session.subscription is not None:
                    sub, session.subscription = session.subscription, None
                    await sub.unsubscribe()

        return Subscription(session.user_id, _close)
