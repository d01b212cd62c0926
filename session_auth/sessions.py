"""Session lifecycle across the database and the Redis cache.

The database is the system of record; the cache is an accelerator that may
only ever be more restrictive than the database. Writes follow a fixed
order with a recovery step for each partial failure:

- create: commit the session row, then cache it. A failed cache write
  revokes the fresh row again and fails the login.
- revoke: commit the deactivation, then drop the cache key. A failed cache
  delete is reported to the caller; the stale key is harmless because the
  request guard confirms every cache hit against the database and evicts
  keys that no longer have a usable row behind them.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import Clock, generate_session_token
from .cache import SessionCache
from .errors import AccountNotFound, CacheUnavailable, SessionNotFound, StoreUnavailable
from .logging import get_logger
from .models import Account, Session as SessionModel, utcnow

logger = get_logger(__name__)

SESSION_LIFETIME = timedelta(hours=24)


@dataclass
class ClientMetadata:
    """Advisory information about the client that opened a session"""
    device_info: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None


class SessionManager:
    """Creates, validates, refreshes and revokes sessions"""

    def __init__(self, db: Session, cache: SessionCache, clock: Clock = utcnow):
        self.db = db
        self.cache = cache
        self.clock = clock

    def create(self, account_id: int, metadata: Optional[ClientMetadata] = None) -> SessionModel:
        """Open a session and clear the account's failed-attempt state in one transaction"""
        metadata = metadata or ClientMetadata()
        now = self.clock()
        token = generate_session_token()

        try:
            account = self.db.query(Account).filter(
                Account.id == account_id,
                Account.is_active == True
            ).with_for_update().first()
            if account is None:
                self.db.rollback()
                raise AccountNotFound()

            account.failed_login_attempts = 0
            account.last_failed_login_at = None
            account.last_login_at = now

            session = SessionModel(
                account_id=account_id,
                token=token,
                device_info=metadata.device_info,
                user_agent=metadata.user_agent,
                ip_address=metadata.ip_address,
                location=metadata.location,
                created_at=now,
                last_activity_at=now,
                expires_at=now + SESSION_LIFETIME,
                is_active=True
            )
            self.db.add(session)
            self.db.commit()
            self.db.refresh(session)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc

        try:
            self.cache.store(token, account_id, SESSION_LIFETIME)
        except CacheUnavailable:
            logger.error("session_cache_write_failed", account_id=account_id, session_id=session.id)
            self._compensate(token)
            raise

        logger.info("session_created", account_id=account_id, session_id=session.id)
        return session

    def _compensate(self, token: str) -> None:
        try:
            self._deactivate(token, self.clock())
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            #Still unreachable: without a cache entry the guard denies it
            logger.exception("session_compensation_failed")

    def _deactivate(self, token: str, now: datetime) -> int:
        return self.db.query(SessionModel).filter(
            SessionModel.token == token,
            SessionModel.is_active == True
        ).update(
            {SessionModel.is_active: False, SessionModel.expires_at: now},
            synchronize_session=False
        )

    def validate(self, token: Optional[str]) -> Optional[int]:
        """Cache lookup. A miss is final, a hit must still be confirmed."""
        if not token:
            return None
        return self.cache.lookup(token)

    def confirm(self, token: str, account_id: int) -> Optional[SessionModel]:
        """Return the durable session if it is usable and belongs to account_id"""
        now = self.clock()
        try:
            session = self.db.query(SessionModel).filter(
                SessionModel.token == token,
                SessionModel.is_active == True,
                SessionModel.expires_at > now
            ).first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc

        if session is None or session.account_id != account_id:
            return None
        return session

    def touch(self, session: SessionModel) -> None:
        """Best-effort refresh of last activity"""
        session_id = session.id
        session.last_activity_at = self.clock()
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.warning("session_touch_failed", session_id=session_id, exc_info=True)

    def revoke(self, token: str) -> None:
        """Deactivate the session in the database, then drop it from the cache"""
        now = self.clock()
        try:
            updated = self._deactivate(token, now)
            if updated == 0:
                self.db.rollback()
                raise SessionNotFound()
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc

        try:
            self.cache.delete(token)
        except CacheUnavailable:
            logger.error("session_cache_delete_failed", token=token)
            raise
        logger.info("session_revoked", token=token)

    def evict(self, token: str) -> None:
        """Drop a cache entry whose durable session is no longer usable"""
        try:
            self.cache.delete(token)
        except CacheUnavailable:
            logger.warning("session_evict_failed", token=token)
            return
        logger.info("session_evicted", token=token)

    def list_active(self, account_id: int) -> Tuple[List[SessionModel], int]:
        """Usable sessions for an account, most recently used first"""
        now = self.clock()
        try:
            query = self.db.query(SessionModel).filter(
                SessionModel.account_id == account_id,
                SessionModel.is_active == True,
                SessionModel.expires_at > now
            )
            sessions = query.order_by(SessionModel.last_activity_at.desc()).all()
            total = query.count()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable() from exc
        return sessions, total
