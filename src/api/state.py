import os
from typing import Dict, Optional

from api.board_service import CallbackBoardService
from notifications.session import BoardSession
from storage.callback_store import CallbackStore

USE_DATABASE = os.getenv("USE_DATABASE", "false").lower() in {"1", "true", "yes"}

# Global instances initialized at startup
store: Optional[CallbackStore] = None
service: Optional[CallbackBoardService] = None

# One board session per agent, kept for the life of the process
sessions: Dict[str, BoardSession] = {}


def get_session(user_id: str) -> BoardSession:
    session = sessions.get(user_id)
    if session is None:
        session = sessions[user_id] = BoardSession(user_id=user_id)
    return session
