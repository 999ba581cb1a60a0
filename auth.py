"""Session token authentication."""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from loguru import logger
from sqlalchemy.orm import Session

from db import SessionRepository
from errors import Unauthenticated
from utils import parse_timestamp


def bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def authenticate(db: Session, token: Optional[str]) -> str:
    """Resolve a session token to its user id.

    Raises:
        Unauthenticated: token missing, unknown or expired.
    """
    if not token:
        raise Unauthenticated("Missing session token")

    session = SessionRepository(db).get_session(token)
    if session is None:
        raise Unauthenticated("Invalid session token")

    if parse_timestamp(session.expires_at) <= datetime.now(timezone.utc):
        logger.info(f"Rejected expired session for user {session.user_id}")
        raise Unauthenticated("Session expired")

    return session.user_id
