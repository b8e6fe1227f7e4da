from typing import Optional

from fastapi import Depends, Header, HTTPException

from api import state
from api.board_service import CallbackBoardService
from notifications.session import BoardSession

DEFAULT_USER_ID = "default"


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    return (x_user_id or "").strip() or DEFAULT_USER_ID


def get_board_service() -> CallbackBoardService:
    if state.service is None:
        raise HTTPException(status_code=503, detail="Callback store not initialized")
    return state.service


def get_board_session(user_id: str = Depends(get_current_user_id)) -> BoardSession:
    return state.get_session(user_id)
