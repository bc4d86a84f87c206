"""Event mutation API: create, update, delete and focus blocks."""

import logging
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator

from calsync.api.deps import calendar_http_error, get_user_connection
from calsync.auth.session import User, get_current_user
from calsync.database import log_sync_action
from calsync.errors import AuthError, ProviderError
from calsync.models import ProviderEvent
from calsync.sync import mutations

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendar", tags=["events"])


class EventMutationRequest(BaseModel):
    """One mutation; which fields are required depends on ``action``."""
    action: Literal["create", "update", "delete", "createFocusBlock"]
    connection_id: Optional[int] = None
    calendar_id: str = mutations.DEFAULT_CALENDAR_ID
    event_id: Optional[str] = None
    summary: Optional[str] = Field(default=None, max_length=1024)
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    time_zone: Optional[str] = None
    attendees: Optional[list[str]] = None

    @model_validator(mode="after")
    def check_fields_for_action(self) -> "EventMutationRequest":
        if self.action in ("create", "createFocusBlock"):
            if not self.start or not self.end:
                raise ValueError(f"start and end are required for {self.action}")
        if self.action == "create" and not self.summary:
            raise ValueError("summary is required for create")
        if self.action in ("update", "delete") and not self.event_id:
            raise ValueError(f"event_id is required for {self.action}")
        if self.start and self.end and self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class EventMutationResponse(BaseModel):
    success: bool
    action: str
    event_id: Optional[str] = None
    html_link: Optional[str] = None
    meeting_link: Optional[str] = None
    deleted: Optional[bool] = None


def _event_response(action: str, event: ProviderEvent) -> EventMutationResponse:
    return EventMutationResponse(
        success=True,
        action=action,
        event_id=event.id,
        html_link=event.html_link,
        meeting_link=event.meeting_link,
    )


@router.post("/events", response_model=EventMutationResponse)
async def mutate_event(request: EventMutationRequest, user: User = Depends(get_current_user)):
    """Apply one event mutation on the provider and mirror it locally."""
    connection = await get_user_connection(user.id, request.connection_id)

    try:
        if request.action == "create":
            event = await mutations.create_event(
                connection,
                summary=request.summary,
                start=request.start,
                end=request.end,
                calendar_id=request.calendar_id,
                description=request.description,
                location=request.location,
                attendees=request.attendees,
                time_zone=request.time_zone,
            )
            response = _event_response(request.action, event)

        elif request.action == "createFocusBlock":
            event = await mutations.create_focus_block(
                connection,
                start=request.start,
                end=request.end,
                title=request.summary or "Focus Time",
                calendar_id=request.calendar_id,
                description=request.description or "Blocked for focused work",
            )
            response = _event_response(request.action, event)

        elif request.action == "update":
            event = await mutations.update_event(
                connection,
                request.event_id,
                calendar_id=request.calendar_id,
                summary=request.summary,
                description=request.description,
                location=request.location,
                start=request.start,
                end=request.end,
                time_zone=request.time_zone,
            )
            response = _event_response(request.action, event)

        else:
            removed = await mutations.delete_event(
                connection, request.event_id, calendar_id=request.calendar_id
            )
            response = EventMutationResponse(
                success=True, action=request.action, event_id=request.event_id, deleted=removed
            )

    except AuthError as e:
        raise calendar_http_error(e)
    except ProviderError as e:
        logger.warning(f"Event {request.action} failed for connection {connection.id}: {e}")
        await log_sync_action(user.id, connection.id, request.action, "failure", str(e))
        raise calendar_http_error(e)

    await log_sync_action(user.id, connection.id, request.action, "success", response.event_id)
    return response

