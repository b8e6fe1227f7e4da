import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.board_service import CallbackBoardService
from api.dependencies import get_board_service, get_board_session
from api.metrics import REQUESTS_TOTAL, REQUEST_LATENCY_SECONDS
from callback_board.models import CallbackCreate, CallbackUpdate, LeadName, Priority, WrapUpNotes
from extraction.intent_parser import parse_callback_intent
from notifications.session import BoardSession
from storage.callback_store import CallbackNotFound

router = APIRouter()
logger = logging.getLogger(__name__)


class CallbackIn(BaseModel):
    lead_name: LeadName
    scheduled_for: datetime
    priority: Priority = "medium"
    notes: Optional[str] = None
    phone_number: Optional[str] = None
    lead_id: Optional[str] = None
    call_activity_id: Optional[str] = None


class NotesIn(BaseModel):
    notes: str


def _record(endpoint: str, status: str, start: float) -> None:
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    REQUEST_LATENCY_SECONDS.labels(endpoint=endpoint).observe(time.time() - start)


def _failed(session: BoardSession, fallback: str) -> HTTPException:
    """500 carrying the toast the service just queued."""
    errors = [n.message for n in session.notifications if n.level == "error"]
    return HTTPException(status_code=500, detail=errors[-1] if errors else fallback)


def _not_found(callback_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Callback {callback_id} not found")


@router.get("/callbacks")
async def list_callbacks(
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    """Pending callbacks for the current agent, soonest first."""
    start = time.time()
    callbacks = await service.refresh(session)
    _record("/callbacks", "ok", start)
    return {
        "callbacks": [cb.model_dump(mode="json") for cb in callbacks],
        "total": len(callbacks),
    }


@router.post("/callbacks")
async def create_callback(
    payload: CallbackIn,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    start = time.time()
    data = CallbackCreate(user_id=session.user_id, **payload.model_dump())
    cb = await service.create(session, data)
    if cb is None:
        _record("/callbacks", "failed", start)
        raise _failed(session, "Failed to create callback")

    _record("/callbacks", "created", start)
    return {"status": "created", "callback": cb.model_dump(mode="json")}


@router.patch("/callbacks/{callback_id}")
async def update_callback(
    callback_id: str,
    payload: CallbackUpdate,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    try:
        cb = await service.update(session, callback_id, payload)
    except CallbackNotFound:
        raise _not_found(callback_id)
    if cb is None:
        raise _failed(session, "Failed to update callback")
    return {"status": "updated", "callback": cb.model_dump(mode="json")}


@router.post("/callbacks/{callback_id}/complete")
async def complete_callback(
    callback_id: str,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    try:
        cb = await service.complete(session, callback_id)
    except CallbackNotFound:
        raise _not_found(callback_id)
    if cb is None:
        raise _failed(session, "Failed to update callback")
    return {"status": "completed", "callback": cb.model_dump(mode="json")}


@router.post("/callbacks/{callback_id}/cancel")
async def cancel_callback(
    callback_id: str,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    try:
        cb = await service.cancel(session, callback_id)
    except CallbackNotFound:
        raise _not_found(callback_id)
    if cb is None:
        raise _failed(session, "Failed to update callback")
    return {"status": "cancelled", "callback": cb.model_dump(mode="json")}


@router.delete("/callbacks/{callback_id}")
async def delete_callback(
    callback_id: str,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    try:
        deleted = await service.delete(session, callback_id)
    except CallbackNotFound:
        raise _not_found(callback_id)
    if not deleted:
        raise _failed(session, "Failed to delete callback")
    return {"status": "deleted", "id": callback_id}


@router.post("/wrap-up")
async def wrap_up_call(
    payload: WrapUpNotes,
    session: BoardSession = Depends(get_board_session),
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    """
    Call wrap-up: parse the agent's notes and schedule a callback when they
    ask for one.
    """
    start = time.time()
    logger.info(f"Wrap-up notes for {payload.lead_name}: {payload.notes[:50]}...")

    intent, cb = await service.wrap_up(session, payload)
    if intent.should_create_callback and cb is None:
        _record("/wrap-up", "failed", start)
        raise _failed(session, "Failed to create callback")

    _record("/wrap-up", "scheduled" if cb else "skipped", start)
    return {
        "status": "scheduled" if cb else "skipped",
        "intent": intent.model_dump(mode="json"),
        "callback": cb.model_dump(mode="json") if cb else None,
    }


@router.post("/intent")
async def preview_intent(
    payload: NotesIn,
    service: CallbackBoardService = Depends(get_board_service),
) -> dict:
    """Parse notes without creating anything."""
    intent = parse_callback_intent(payload.notes, now=service.clock())
    return intent.model_dump(mode="json")
