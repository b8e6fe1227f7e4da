import logging

from fastapi import FastAPI

from api import state
from api.board_service import CallbackBoardService
from api.routers import board, callbacks, ops
from storage import db
from storage.callback_store import CallbackStore, InMemoryCallbackStore
from storage.postgres_store import PostgresCallbackStore

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Callback Board")
app.include_router(callbacks.router)
app.include_router(board.router)
app.include_router(ops.router)


def install_store(store: CallbackStore) -> None:
    state.store = store
    state.service = CallbackBoardService(store)


# In-memory until startup says otherwise, so the app is usable without lifespan events
if state.service is None:
    install_store(InMemoryCallbackStore())


@app.on_event("startup")
async def startup() -> None:
    if not state.USE_DATABASE:
        logger.info("USE_DATABASE is off, using the in-memory callback store")
        return

    await db.init_db_pool()
    await db.init_schema()
    install_store(PostgresCallbackStore())
    logger.info("Callback store backed by PostgreSQL")


@app.on_event("shutdown")
async def shutdown() -> None:
    for session in state.sessions.values():
        if session.subscription is not None:
            sub, session.subscription = session.subscription, None
            await sub.unsubscribe()
        session.listeners.clear()

    if state.USE_DATABASE:
        await db.close_listen_connection()
        await db.close_db_pool()
