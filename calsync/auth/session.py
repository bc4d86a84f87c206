"""Session management using JWT tokens.

Users sign in through the surrounding account system; this service only
needs to recognise the session cookie it issues and map it to a user row.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from calsync.config import get_session_secret, get_settings
from calsync.database import get_database

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"


class SessionData(BaseModel):
    """Session data stored in JWT."""
    user_id: int
    email: str
    exp: datetime


class User(BaseModel):
    """User model for authenticated requests."""
    id: int
    email: str
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None


def create_session_token(user_id: int, email: str) -> str:
    """Create a JWT session token."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(days=settings.session_expire_days)
    data = {
        "user_id": user_id,
        "email": email,
        "exp": expire,
    }
    return jwt.encode(data, get_session_secret(), algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[SessionData]:
    """Verify and decode a session token."""
    try:
        payload = jwt.decode(token, get_session_secret(), algorithms=[ALGORITHM])
        return SessionData(**payload)
    except JWTError as e:
        logger.warning(f"Invalid session token: {e}")
        return None


async def get_user_by_id(user_id: int) -> Optional[User]:
    db = await get_database()
    cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = await cursor.fetchone()

    if row:
        return User(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            created_at=row["created_at"],
        )
    return None


async def get_current_user_optional(request: Request) -> Optional[User]:
    """Get current user from session, returns None if not authenticated."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("authorization", "")
        if auth_header.lower().startswith("bearer "):
            token = auth_header[7:]
    if not token:
        return None

    session = verify_session_token(token)
    if not session:
        return None

    return await get_user_by_id(session.user_id)


async def get_current_user(request: Request) -> User:
    """Get current user from session, raises 401 if not authenticated."""
    user = await get_current_user_optional(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def create_or_update_user(email: str, display_name: Optional[str] = None) -> User:
    """Create a user keyed by email, or refresh the display name of an existing one."""
    db = await get_database()
    cursor = await db.execute(
        """INSERT INTO users (email, display_name) VALUES (?, ?)
           ON CONFLICT(email) DO UPDATE SET
               display_name = COALESCE(excluded.display_name, users.display_name)
           RETURNING id""",
        (email, display_name),
    )
    row = await cursor.fetchone()
    await db.commit()
    return await get_user_by_id(row["id"])
