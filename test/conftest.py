import itertools
from datetime import datetime, timedelta, timezone

import pytest

from api import state
from api.board_service import CallbackBoardService
from callback_board.models import Callback
from storage.callback_store import InMemoryCallbackStore

# Wednesday afternoon
NOW = datetime(2026, 3, 11, 15, 30, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_callback():
    ids = itertools.count(1)

    def _make(scheduled_for: datetime, **fields) -> Callback:
        data = {
            "id": f"cb-{next(ids)}",
            "user_id": "agent-1",
            "lead_name": "Jane Doe",
            "phone_number": "+254700000001",
            "priority": "medium",
            "status": "pending",
            "scheduled_for": scheduled_for,
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }
        data.update(fields)
        return Callback(**data)

    return _make


@pytest.fixture
def store():
    return InMemoryCallbackStore()


@pytest.fixture
def service(store, clock):
    return CallbackBoardService(store, clock=clock)


@pytest.fixture
def app_state(store, clock):
    """Point the FastAPI app at a fresh in-memory store with a fixed clock."""
    import api.main  # noqa: F401  (registers routers, installs default store)

    previous = (state.store, state.service, dict(state.sessions))
    state.store = store
    state.service = CallbackBoardService(store, clock=clock)
    state.sessions.clear()
    yield state
    state.store, state.service = previous[0], previous[1]
    state.sessions.clear()
    state.sessions.update(previous[2])
