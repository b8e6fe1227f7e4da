"""
Callback store accessor.

CRUD plus a per-user change feed over the ``callbacks`` collection. Every
backend raises ``CallbackStoreError``; turning those into user-facing
notifications is the board service's job, not the store's.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from callback_board.models import Callback, CallbackCreate, CallbackUpdate

logger = logging.getLogger(__name__)


class CallbackStoreError(Exception):
    """Any failure reading or writing callbacks."""


class CallbackNotFound(CallbackStoreError):
    def __init__(self, callback_id: str):
        super().__init__(f"Callback {callback_id} not found")
        self.callback_id = callback_id


@dataclass(frozen=True)
class ChangeEvent:
    op: str  # INSERT, UPDATE or DELETE
    id: str
    user_id: str


ChangeListener = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ``subscribe``; call ``unsubscribe`` on teardown."""

    def __init__(self, user_id: str, close: Callable[[], Awaitable[None]]):
        self.user_id = user_id
        self._close = close
        self.active = True

    async def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        await self._close()


class CallbackStore(ABC):
    @abstractmethod
    async def list(self, user_id: str) -> List[Callback]:
        """Pending callbacks for ``user_id``, ``scheduled_for`` ascending."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, callback_id: str) -> Callback:
        raise NotImplementedError

    @abstractmethod
    async def create(self, data: CallbackCreate) -> Callback:
        raise NotImplementedError

    @abstractmethod
    async def update(self, callback_id: str, changes: CallbackUpdate) -> Callback:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, callback_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, user_id: str, on_change: ChangeListener) -> Subscription:
        """Call ``on_change`` after any insert/update/delete on the user's rows."""
        raise NotImplementedError


def _utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


class InMemoryCallbackStore(CallbackStore):
    """Process-local store used when no database is configured, and in tests."""

    def __init__(self):
        self._rows: Dict[str, Callback] = {}
        self._listeners: Dict[str, List[ChangeListener]] = {}

    def _emit(self, op: str, cb: Callback) -> None:
        event = ChangeEvent(op=op, id=cb.id, user_id=cb.user_id)
        for listener in list(self._listeners.get(cb.user_id, [])):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Change listener failed for {cb.user_id}")

    async def list(self, user_id: str) -> List[Callback]:
        rows = [
            cb for cb in self._rows.values()
            if cb.user_id == user_id and cb.status == "pending"
        ]
        rows.sort(key=lambda cb: cb.scheduled_for)
        return [cb.model_copy() for cb in rows]

    async def get(self, callback_id: str) -> Callback:
        cb = self._rows.get(callback_id)
        if cb is None:
            raise CallbackNotFound(callback_id)
        return cb.model_copy()

    async def create(self, data: CallbackCreate) -> Callback:
        now = datetime.now(timezone.utc)
        fields = data.model_dump()
        fields["scheduled_for"] = _utc(data.scheduled_for)
        cb = Callback(id=str(uuid.uuid4()), created_at=now, updated_at=now, **fields)
        self._rows[cb.id] = cb
        logger.info(f"Created callback {cb.id} for {cb.user_id}")
        self._emit("INSERT", cb)
        return cb.model_copy()

    async def update(self, callback_id: str, changes: CallbackUpdate) -> Callback:
        current = self._rows.get(callback_id)
        if current is None:
            raise CallbackNotFound(callback_id)

        patch = changes.changes()
        if patch.get("scheduled_for") is not None:
            patch["scheduled_for"] = _utc(patch["scheduled_for"])
        patch["updated_at"] = datetime.now(timezone.utc)

        try:
            cb = Callback.model_validate({**current.model_dump(), **patch})
        except ValidationError as e:
            raise CallbackStoreError(f"Invalid update for callback {callback_id}: {e}") from e
        self._rows[callback_id] = cb
        self._emit("UPDATE", cb)
        return cb.model_copy()

    async def delete(self, callback_id: str) -> None:
        cb = self._rows.pop(callback_id, None)
        if cb is None:
            raise CallbackNotFound(callback_id)
        logger.info(f"Deleted callback {callback_id}")
        self._emit("DELETE", cb)

    async def subscribe(self, user_id: str, on_change: ChangeListener) -> Subscription:
        self._listeners.setdefault(user_id, []).append(on_change)

        async def _close() -> None:
            listeners = self._listeners.get(user_id, [])
            if on_change in listeners:
                listeners.remove(on_change)

        return Subscription(user_id, _close)
