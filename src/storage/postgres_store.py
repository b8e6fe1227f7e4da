"""
PostgreSQL-backed callback store.

Reads and writes go through the shared asyncpg pool in ``storage.db``. The
change feed is LISTEN/NOTIFY on ``callback_changes``; the trigger in
schema.sql publishes ``{"op", "id", "user_id"}`` for every touched row.
"""

import asyncio
import json
import logging
import uuid
from typing import Dict, List

import asyncpg
from pydantic import ValidationError

from callback_board.models import Callback, CallbackCreate, CallbackUpdate
from storage import db
from storage.callback_store import (
    CallbackNotFound,
    CallbackStore,
    CallbackStoreError,
    ChangeEvent,
    ChangeListener,
    Subscription,
)

logger = logging.getLogger(__name__)

CHANGE_CHANNEL = "callback_changes"

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

# Columns a partial update may touch.
_UPDATABLE = (
    "scheduled_for",
    "priority",
    "status",
    "notes",
    "lead_name",
    "phone_number",
)


def _row_to_callback(record) -> Callback:
    data = dict(record)
    data["id"] = str(data["id"])
    try:
        return Callback(**data)
    except ValidationError as e:
        raise CallbackStoreError(f"Malformed callback row {data['id']}: {e}") from e


def _parse_id(callback_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(callback_id))
    except ValueError:
        raise CallbackNotFound(callback_id) from None


def build_update_query(changes: dict) -> tuple:
    """Return (sql, args) for a partial update; the id is always $1."""
    columns = [c for c in _UPDATABLE if c in changes]
    assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
    sql = f"UPDATE callbacks SET {assignments} WHERE id = $1 RETURNING *"
    return sql, [changes[c] for c in columns]


class PostgresCallbackStore(CallbackStore):
    """
    Callbacks in PostgreSQL.

    All subscriptions share one LISTEN registered on the dedicated listener
    connection in ``storage.db``; notifications are routed to listeners by
    ``user_id``.
    """

    def __init__(self):
        self._routes: Dict[str, List[ChangeListener]] = {}
        self._listening = False
        self._listen_lock = asyncio.Lock()

    async def list(self, user_id: str) -> List[Callback]:
        query = """
            SELECT * FROM callbacks
            WHERE user_id = $1 AND status = 'pending'
            ORDER BY scheduled_for ASC
        """
        try:
            records = await db.fetch(query, user_id)
        except _DB_ERRORS as e:
            raise CallbackStoreError(f"Failed to list callbacks for {user_id}: {e}") from e
        return [_row_to_callback(r) for r in records]

    async def get(self, callback_id: str) -> Callback:
        try:
            record = await db.fetchrow(
                "SELECT * FROM callbacks WHERE id = $1", _parse_id(callback_id)
            )
        except _DB_ERRORS as e:
            raise CallbackStoreError(f"Failed to load callback {callback_id}: {e}") from e
        if record is None:
            raise CallbackNotFound(callback_id)
        return _row_to_callback(record)

    async def create(self, data: CallbackCreate) -> Callback:
        query = """
            INSERT INTO callbacks (
                user_id,
                lead_id,
                call_activity_id,
                scheduled_for,
                priority,
                status,
                notes,
                lead_name,
                phone_number
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
        """
        try:
            record = await db.fetchrow(
                query,
                data.user_id,
                data.lead_id,
                data.call_activity_id,
                data.scheduled_for,
                data.priority,
                data.status,
                data.notes,
                data.lead_name,
                data.phone_number,
            )
        except _DB_ERRORS as e:
            raise CallbackStoreError(f"Failed to create callback: {e}") from e

        cb = _row_to_callback(record)
        logger.info(f"Created callback {cb.id} for {cb.user_id}")
        return cb

    async def update(self, callback_id: str, changes: CallbackUpdate) -> Callback:
        patch = changes.changes()
        if not any(c in patch for c in _UPDATABLE):
            return await self.get(callback_id)

        sql, args = build_update_query(patch)
        try:
            record = await db.fetchrow(sql, _parse_id(callback_id), *args)
        except _DB_ERRORS as e:
            raise CallbackStoreError(f"Failed to update callback {callback_id}: {e}") from e
        if record is None:
            raise CallbackNotFound(callback_id)
        return _row_to_callback(record)

    async def delete(self, callback_id: str) -> None:
        try:
            record = await db.fetchrow(
                "DELETE FROM callbacks WHERE id = $1 RETURNING id", _parse_id(callback_id)
            )
        except _DB_ERRORS as e:
            raise CallbackStoreError(f"Failed to delete callback {callback_id}: {e}") from e
        if record is None:
            raise CallbackNotFound(callback_id)
        logger.info(f"Deleted callback {callback_id}")

    async def subscribe(self, user_id: str, on_change: ChangeListener) -> Subscription:
        async with self._listen_lock:
            if not self._listening:
                try:
                    await db.listen(CHANGE_CHANNEL, self._dispatch)
                except _DB_ERRORS as e:
                    raise CallbackStoreError(f"Failed to subscribe to callback changes: {e}") from e
                self._listening = True
            self._routes.setdefault(user_id, []).append(on_change)

        async def _close() -> None:
            async with self._listen_lock:
                listeners = self._routes.get(user_id, [])
                if on_change in listeners:
                    listeners.remove(on_change)
                if not listeners:
                    self._routes.pop(user_id, None)
                if self._routes or not self._listening:
                    return
                self._listening = False
                try:
                    await db.unlisten(CHANGE_CHANNEL, self._dispatch)
                except _DB_ERRORS as e:
                    logger.warning(f"Failed to stop listening on {CHANGE_CHANNEL}: {e}")

        return Subscription(user_id, _close)

    def _dispatch(self, connection, pid, channel, payload) -> None:
        """Route one NOTIFY payload to the listeners of the row's owner."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring malformed change payload on {channel}: {payload!r}")
            return

        user_id = data.get("user_id")
        event = ChangeEvent(op=data.get("op", ""), id=str(data.get("id")), user_id=user_id)
        for listener in list(self._routes.get(user_id, [])):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Change listener failed for {user_id}")
