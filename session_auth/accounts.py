"""Account operations exposed to the API layer"""
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import AccountAuthenticator, Clock, hash_password, normalize_email
from .cache import SessionCache
from .errors import Conflict, StoreUnavailable, Unauthorized
from .guard import Identity
from .logging import get_logger
from .models import Account, utcnow
from .schemas import SessionSummary
from .sessions import ClientMetadata, SessionManager

logger = get_logger(__name__)


def register(db: Session, email: str, username: str, password: str, full_name: str) -> Account:
    """Create an account; email and username must be unused"""
    email = normalize_email(email)
    try:
        existing = db.query(Account).filter(
            or_(func.lower(Account.email) == email, Account.username == username)
        ).first()
        if existing:
            db.rollback()
            raise Conflict()

        account = Account(
            email=email,
            username=username,
            password_hash=hash_password(password),
            full_name=full_name,
            is_active=True
        )
        db.add(account)
        db.commit()
        db.refresh(account)
    except IntegrityError as exc:
        #Lost a race with a concurrent registration
        db.rollback()
        raise Conflict() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc

    logger.info("account_registered", account_id=account.id)
    return account


def login(
    db: Session,
    cache: SessionCache,
    email: str,
    password: str,
    describe_client: Optional[Callable[[], ClientMetadata]] = None,
    clock: Clock = utcnow
) -> Tuple[str, Account]:
    """Authenticate and open a session, returning the new token and the account.

    describe_client is only called once the password has been accepted, so
    rejected attempts never trigger location lookups.
    """
    account = AccountAuthenticator(db, clock).authenticate(email, password)
    metadata = describe_client() if describe_client else None
    session = SessionManager(db, cache, clock).create(account.id, metadata)
    return session.token, account


def logout(manager: SessionManager, token: str) -> None:
    manager.revoke(token)


def get_current_account(db: Session, identity: Identity) -> Account:
    try:
        account = db.query(Account).filter(Account.id == identity.account_id).first()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StoreUnavailable() from exc
    if account is None:
        raise Unauthorized("User not found")
    return account


def list_active_sessions(manager: SessionManager, identity: Identity) -> Tuple[List[SessionSummary], int]:
    sessions, total = manager.list_active(identity.account_id)
    summaries = []
    for session in sessions:
        summary = SessionSummary.model_validate(session)
        summary.current_session = session.id == identity.session_id
        summaries.append(summary)
    return summaries, total
