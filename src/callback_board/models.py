from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Optional, List

from pydantic import AfterValidator, BaseModel, Field


Priority = Literal["low", "medium", "high", "urgent"]
CallbackStatus = Literal["pending", "completed", "cancelled", "rescheduled"]
BucketId = Literal["today", "thisWeek", "nextWeek", "later"]


def _not_blank(v: str) -> str:
    v2 = v.strip()
    if not v2:
        raise ValueError("lead_name must not be blank")
    return v2


# Stripped, never empty. Every model that accepts a lead name uses this.
LeadName = Annotated[str, AfterValidator(_not_blank)]


class CallbackCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    lead_id: Optional[str] = None
    call_activity_id: Optional[str] = None

    scheduled_for: datetime
    priority: Priority = "medium"
    status: CallbackStatus = "pending"

    notes: Optional[str] = None
    lead_name: LeadName
    phone_number: Optional[str] = None


class Callback(CallbackCreate):
    id: str
    created_at: datetime
    updated_at: datetime


class CallbackUpdate(BaseModel):
    """Partial update; only the fields that were set are written."""

    scheduled_for: Optional[datetime] = None
    priority: Optional[Priority] = None
    status: Optional[CallbackStatus] = None
    notes: Optional[str] = None
    lead_name: Optional[LeadName] = None
    phone_number: Optional[str] = None

    def changes(self) -> dict:
        # only notes and phone_number may be cleared with an explicit null
        data = self.model_dump(exclude_unset=True)
        return {
            k: v for k, v in data.items()
            if v is not None or k in ("notes", "phone_number")
        }


class CallbackIntent(BaseModel):
    should_create_callback: bool = False
    callback_date: Optional[datetime] = None
    priority: Priority = "medium"


class WrapUpNotes(BaseModel):
    """Call wrap-up payload: what the agent typed after hanging up."""

    notes: str = ""
    lead_name: LeadName
    lead_id: Optional[str] = None
    call_activity_id: Optional[str] = None
    phone_number: Optional[str] = None


NotificationLevel = Literal["success", "error", "info"]


class Notification(BaseModel):
    level: NotificationLevel = "info"
    message: str
    created_at: datetime = Field(default_factory=datetime.now)


class CallbackCard(BaseModel):
    callback: Callback
    is_overdue: bool = False
    # urgent priority or overdue
    is_urgent: bool = False
    due_label: str = ""


class BoardColumn(BaseModel):
    id: BucketId
    title: str
    count: int = 0
    cards: List[CallbackCard] = Field(default_factory=list)


class BoardView(BaseModel):
    generated_at: datetime
    overdue_count: int = 0
    columns: List[BoardColumn] = Field(default_factory=list)
    notifications: List[Notification] = Field(default_factory=list)
