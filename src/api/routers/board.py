import asyncio
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from api import state
from api.board_service import CallbackBoardService
from api.dependencies import DEFAULT_USER_ID, get_board_service, get_board_session
from api.metrics import REQUESTS_TOTAL, REQUEST_LATENCY_SECONDS
from notifications.session import BoardSession
from storage.callback_store import CallbackNotFound, ChangeEvent

router = APIRouter()
logger = logging.getLogger(__name__)


class MoveRequestIn(BaseModel):
    callback_id: str
    target: str  # column id, or the id of the card it was dropped on


@router.get("/board")
async def get_board(
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    """Kanban view: four time-window columns plus overdue count and toasts."""
    start = time.time()
    view = await service.board(session)
    REQUESTS_TOTAL.labels(endpoint="/board", status="ok").inc()
    REQUEST_LATENCY_SECONDS.labels(endpoint="/board").observe(time.time() - start)
    return view.model_dump(mode="json")


@router.post("/board/move")
async def move_callback(
    payload: MoveRequestIn,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    """Handle a drag-and-drop drop event."""
    logger.info(f"Move request: {payload}")
    try:
        outcome = await service.move(session, payload.callback_id, payload.target)
    except CallbackNotFound:
        raise HTTPException(status_code=404, detail=f"Callback {payload.callback_id} not found")

    REQUESTS_TOTAL.labels(endpoint="/board/move", status=outcome.status).inc()

    if outcome.status == "failed":
        raise HTTPException(status_code=500, detail="Failed to update callback")
    if outcome.status == "ignored":
        return {"status": "ignored"}
    return {"status": "moved", "callback": outcome.callback.model_dump(mode="json")}


@router.get("/notifications")
async def get_notifications(session: BoardSession = Depends(get_board_session)) -> dict:
    notes = session.drain_notifications()
    return {"notifications": [n.model_dump(mode="json") for n in notes]}


async def push_board_changes(
    websocket: WebSocket,
    service: CallbackBoardService,
    session: BoardSession,
    changes: asyncio.Queue,
) -> None:
    """Send a fresh board for every queued change until the socket goes away."""
    try:
        while True:
            event = await changes.get()
            logger.debug(f"Change {event.op} on {event.id}, pushing board to {session.user_id}")
            view = await service.board(session)
            await websocket.send_json(view.model_dump(mode="json"))
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.info(f"Stopped pushing board to {session.user_id}: {e!r}")


@router.websocket("/ws/board")
async def board_stream(websocket: WebSocket) -> None:
    """
    Push a fresh board on connect and after every change to the agent's
    callbacks. Each change triggers a full refetch.
    """
    await websocket.accept()

    user_id = (websocket.headers.get("x-user-id") or "").strip() or DEFAULT_USER_ID
    service = state.service
    if service is None:
        await websocket.close(code=1011)
        return

    session = state.get_session(user_id)
    loop = asyncio.get_running_loop()
    changes: asyncio.Queue = asyncio.Queue()

    def _on_change(event: ChangeEvent) -> None:
        loop.call_soon_threadsafe(changes.put_nowait, event)

    subscription = await service.watch(session, _on_change)
    pusher = None
    try:
        view = await service.board(session)
        await websocket.send_json(view.model_dump(mode="json"))
        pusher = asyncio.create_task(push_board_changes(websocket, service, session, changes))
        # inbound frames are ignored; this only waits for the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"Board stream closed for {user_id}")
    finally:
        if pusher is not None:
            pusher.cancel()
            await asyncio.gather(pusher, return_exceptions=True)
        await subscription.unsubscribe()
