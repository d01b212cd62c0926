"""Request guard for protected operations"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Cookie, Depends
from sqlalchemy.orm import Session

from .cache import SessionCache, get_session_cache
from .database import get_db
from .errors import Unauthorized
from .logging import get_logger
from .models import utcnow
from .sessions import SessionManager

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "session_token"


@dataclass(frozen=True)
class Identity:
    """Caller resolved from a session token"""
    account_id: int
    session_id: int
    token: str


def authorize(token: Optional[str], manager: SessionManager) -> Identity:
    """Resolve a session token to an identity or raise Unauthorized.

    The cache can only deny: a miss ends the check, a hit is re-checked
    against the database. Cache keys without a usable session row behind
    them are evicted on the way out.
    """
    if not token:
        raise Unauthorized("No session found")

    account_id = manager.validate(token)
    if account_id is None:
        raise Unauthorized("Invalid session")

    session = manager.confirm(token, account_id)
    if session is None:
        manager.evict(token)
        logger.info("guard_stale_cache_entry", account_id=account_id)
        raise Unauthorized("Invalid or expired session")

    session_id = session.id
    manager.touch(session)
    return Identity(account_id=account_id, session_id=session_id, token=token)


def get_clock():
    """Dependency for the current-time source"""
    return utcnow


def get_session_manager(
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
    clock=Depends(get_clock)
) -> SessionManager:
    """Dependency for a request-scoped session manager"""
    return SessionManager(db, cache, clock)


def require_identity(
    session_token: Optional[str] = Cookie(None),
    manager: SessionManager = Depends(get_session_manager)
) -> Identity:
    """Dependency that rejects requests without a usable session"""
    return authorize(session_token, manager)
