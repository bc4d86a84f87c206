"""Routes for connecting a Google Calendar through a popup OAuth flow."""

import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.templating import Jinja2Templates

from calsync import connections as connection_store
from calsync.auth.handshake import HandshakeState, OAuthHandshake, build_connect_url
from calsync.auth.session import User, get_current_user
from calsync.config import get_settings
from calsync.sync.engine import sync_user_connections
from calsync.utils.tasks import create_background_task

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth/google", tags=["auth"])

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates"))


@router.get("/connect")
async def connect_calendar(
    redirect_url: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Return the Google authorization URL for the caller to open in a popup."""
    try:
        url = build_connect_url(user.id, redirect_url)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"url": url}


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """Finish the handshake and render a page that reports back to the opener."""
    handshake = OAuthHandshake()
    outcome = await handshake.complete(code, state, error)

    if outcome.state == HandshakeState.CONNECTED:
        # The first sync runs after the popup has been answered
        create_background_task(
            sync_user_connections_after_connect(outcome.connection_id),
            f"initial_sync_{outcome.connection_id}",
        )

    return templates.TemplateResponse(
        request,
        "oauth_popup.html",
        {
            "success": outcome.state == HandshakeState.CONNECTED,
            "error": outcome.error.value if outcome.error else None,
            "message": outcome.message,
            "redirect_url": outcome.redirect_url,
            "target_origin": get_settings().public_url.rstrip("/"),
        },
    )


async def sync_user_connections_after_connect(connection_id: int) -> None:
    connection = await connection_store.get_connection(connection_id)
    if connection:
        await sync_user_connections(connection.user_id, connection_id=connection_id)
