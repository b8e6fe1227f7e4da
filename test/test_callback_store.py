import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from callback_board.models import CallbackCreate, CallbackUpdate
from storage.callback_store import CallbackNotFound, CallbackStoreError, InMemoryCallbackStore


def _data(when, user_id="agent-1", **fields):
    return CallbackCreate(user_id=user_id, lead_name="Jane Doe", scheduled_for=when, **fields)


def test_list_returns_only_pending_in_schedule_order(now):
    store = InMemoryCallbackStore()

    async def scenario():
        late = await store.create(_data(now + timedelta(days=5)))
        early = await store.create(_data(now + timedelta(hours=1)))
        done = await store.create(_data(now, status="completed"))
        await store.create(_data(now, user_id="agent-2"))
        return late, early, done, await store.list("agent-1")

    late, early, done, listed = asyncio.run(scenario())

    assert [c.id for c in listed] == [early.id, late.id]
    assert done.id not in {c.id for c in listed}


def test_update_is_partial(now):
    store = InMemoryCallbackStore()

    async def scenario():
        cb = await store.create(_data(now, notes="first call", priority="low"))
        updated = await store.update(cb.id, CallbackUpdate(priority="high"))
        return cb, updated

    cb, updated = asyncio.run(scenario())

    assert updated.priority == "high"
    assert updated.notes == "first call"
    assert updated.scheduled_for == cb.scheduled_for
    assert updated.updated_at >= cb.updated_at


def test_missing_ids_raise_not_found():
    store = InMemoryCallbackStore()

    with pytest.raises(CallbackNotFound):
        asyncio.run(store.get("nope"))
    with pytest.raises(CallbackNotFound):
        asyncio.run(store.update("nope", CallbackUpdate(status="completed")))
    with pytest.raises(CallbackNotFound):
        asyncio.run(store.delete("nope"))


def test_naive_timestamps_are_stored_as_utc():
    store = InMemoryCallbackStore()
    cb = asyncio.run(store.create(_data(datetime(2026, 3, 12, 9, 0))))
    assert cb.scheduled_for == datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc)


def test_subscribe_is_scoped_to_user_and_stops_after_unsubscribe(now):
    store = InMemoryCallbackStore()
    seen = []

    async def scenario():
        sub = await store.subscribe("agent-1", seen.append)
        cb = await store.create(_data(now))
        await store.create(_data(now, user_id="agent-2"))
        await store.update(cb.id, CallbackUpdate(status="completed"))
        await store.delete(cb.id)
        await sub.unsubscribe()
        await store.create(_data(now))
        return cb

    cb = asyncio.run(scenario())

    assert [(e.op, e.id) for e in seen] == [("INSERT", cb.id), ("UPDATE", cb.id), ("DELETE", cb.id)]
    assert all(e.user_id == "agent-1" for e in seen)


def test_failing_listener_does_not_break_writes(now):
    store = InMemoryCallbackStore()

    def boom(event):
        raise RuntimeError("listener exploded")

    async def scenario():
        await store.subscribe("agent-1", boom)
        await store.create(_data(now))
        return await store.list("agent-1")

    assert len(asyncio.run(scenario())) == 1


def test_update_that_breaks_a_row_is_refused(now):
    store = InMemoryCallbackStore()
    # skips validation, as a caller bypassing the request models would
    blank = CallbackUpdate.model_construct(lead_name="")

    async def scenario():
        cb = await store.create(_data(now))
        with pytest.raises(CallbackStoreError):
            await store.update(cb.id, blank)
        return await store.get(cb.id)

    assert asyncio.run(scenario()).lead_name == "Jane Doe"
