"""Authentication endpoints"""
import os
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..database import get_db
from .. import accounts
from ..cache import SessionCache, get_session_cache
from ..geo import lookup_location
from ..guard import (
    SESSION_COOKIE_NAME,
    Identity,
    get_clock,
    get_session_manager,
    require_identity
)
from ..schemas import (
    AccountSummary,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse
)
from ..sessions import SESSION_LIFETIME, ClientMetadata, SessionManager

router = APIRouter(prefix="/api/auth", tags=["authentication"])

#Set to true when served over HTTPS
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() in {"1", "true", "yes", "on"}


def client_metadata(request: Request) -> ClientMetadata:
    """Collect advisory client details for a new session"""
    user_agent = request.headers.get("user-agent")
    ip_address = request.client.host if request.client else None
    return ClientMetadata(
        device_info=user_agent,
        user_agent=user_agent,
        ip_address=ip_address,
        location=lookup_location(ip_address)
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new account"""
    account = accounts.register(
        db,
        email=request.email,
        username=request.username,
        password=request.password,
        full_name=request.full_name
    )
    return RegisterResponse.model_validate(account)


@router.post("/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_session_cache),
    clock=Depends(get_clock)
):
    """Login and create a session"""
    token, account = accounts.login(
        db,
        cache,
        email=body.email,
        password=body.password,
        describe_client=lambda: client_metadata(request),
        clock=clock
    )

    #The token only travels in the cookie, never in the body
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        max_age=int(SESSION_LIFETIME.total_seconds()),
        samesite="lax",
        secure=SESSION_COOKIE_SECURE
    )

    return LoginResponse(
        success=True,
        message="Login successful",
        user=AccountSummary.model_validate(account)
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    response: Response,
    identity: Identity = Depends(require_identity),
    manager: SessionManager = Depends(get_session_manager)
):
    """Logout by revoking the current session"""
    accounts.logout(manager, identity.token)

    #Clear session cookie
    response.delete_cookie(key=SESSION_COOKIE_NAME)

    return MessageResponse(success=True, message="Logged out successfully")
