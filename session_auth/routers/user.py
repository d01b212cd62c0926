"""Endpoints for the signed-in account"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .. import accounts
from ..guard import Identity, get_session_manager, require_identity
from ..schemas import AccountSummary, SessionListResponse
from ..sessions import SessionManager

router = APIRouter(prefix="/api/auth/user", tags=["user"])


@router.get("/me", response_model=AccountSummary)
def get_current_user(
    identity: Identity = Depends(require_identity),
    db: Session = Depends(get_db)
):
    """Get current authenticated account"""
    account = accounts.get_current_account(db, identity)
    return AccountSummary.model_validate(account)


@router.get("/sessions", response_model=SessionListResponse)
def get_active_sessions(
    identity: Identity = Depends(require_identity),
    manager: SessionManager = Depends(get_session_manager)
):
    """List the account's usable sessions, flagging the one making this request"""
    sessions, total = accounts.list_active_sessions(manager, identity)
    return SessionListResponse(sessions=sessions, total_active_sessions=total)
