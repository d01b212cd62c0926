"""Password verification and failed-attempt lockout"""
import os
import secrets
from datetime import datetime, timedelta
from typing import Callable

from passlib.context import CryptContext
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AccountNotFound, InvalidCredentials, LockedOut, StoreUnavailable
from .logging import get_logger
from .models import Account, utcnow

logger = get_logger(__name__)

#Password hashing context
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

#Lockout policy
MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)

Clock = Callable[[], datetime]


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash in constant time"""
    return pwd_context.verify(plain_password, hashed_password)


def generate_session_token() -> str:
    """Generate a cryptographically secure session token"""
    return secrets.token_urlsafe(32)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def active_account_query(db: Session, email: str, *, for_update: bool = False):
    """Build the case-insensitive lookup for an active account by email"""
    query = db.query(Account).filter(
        func.lower(Account.email) == normalize_email(email),
        Account.is_active == True
    )
    if for_update:
        query = query.with_for_update()
    return query


def find_active_account(db: Session, email: str, *, for_update: bool = False):
    """Look up an active account by email, ignoring case"""
    return active_account_query(db, email, for_update=for_update).first()


def effective_failed_attempts(account: Account, now: datetime) -> int:
    """Failed attempts that still count towards lockout.

    Raises LockedOut while the window is open. Once the window has elapsed
    the counter is treated as zero without writing it back; the stored value
    is only cleared by the next successful login.
    """
    attempts = account.failed_login_attempts or 0
    if attempts >= MAX_FAILED_ATTEMPTS and account.last_failed_login_at is not None:
        if account.last_failed_login_at > now - LOCKOUT_DURATION:
            raise LockedOut(retry_after=LOCKOUT_DURATION)
        return 0
    return attempts


class AccountAuthenticator:
    """Checks passwords and maintains the failed-attempt counter.

    On success the account row stays locked inside the caller's open
    transaction; SessionManager.create persists the counter reset together
    with the new session.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def authenticate(self, email: str, password: str) -> Account:
        now = self.clock()
        try:
            account = find_active_account(self.db, email, for_update=True)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc

        if account is None:
            #Burn a hash comparison so unknown emails take as long as known ones
            pwd_context.dummy_verify()
            self.db.rollback()
            logger.info("login_unknown_account", email=email)
            raise AccountNotFound()

        try:
            attempts = effective_failed_attempts(account, now)
        except LockedOut:
            self.db.rollback()
            logger.warning("login_locked_out", account_id=account.id)
            raise

        if not verify_password(password, account.password_hash):
            self._record_failure(account, attempts, now)
            raise InvalidCredentials()

        return account

    def _record_failure(self, account: Account, attempts: int, now: datetime) -> None:
        account_id = account.id
        if attempts == account.failed_login_attempts:
            #Increment in SQL so concurrent failures never overwrite each other
            account.failed_login_attempts = Account.failed_login_attempts + 1
        else:
            #Window elapsed, start counting again
            account.failed_login_attempts = attempts + 1
        account.last_failed_login_at = now
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc
        logger.info("login_failed", account_id=account_id, failed_login_attempts=attempts + 1)
