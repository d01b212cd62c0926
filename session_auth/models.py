"""Database models for accounts and sessions"""
from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from .database import Base


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the format stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Account(Base):
    """Registered user identity with credentials and lockout state"""
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    #Always stored lower-cased so lookups are case-insensitive
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    #Written together with last_failed_login_at, never alone
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    last_failed_login_at = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    #Relationship to sessions (one-to-many)
    sessions = relationship("Session", back_populates="account")

    def __repr__(self):
        return f"<Account(id={self.id}, username='{self.username}', email='{self.email}')>"


class Session(Base):
    """Time-bounded authorization grant identified by an opaque token"""
    __tablename__ = "sessions"
    __table_args__ = (
        Index("idx_sessions_account_active", "account_id", "is_active", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    token = Column(String(255), unique=True, nullable=False, index=True)
    #Client metadata is advisory only
    device_info = Column(String(512), nullable=True)
    user_agent = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)
    location = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_activity_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    #Relationship to account (many-to-one)
    account = relationship("Account", back_populates="sessions")

    def is_usable(self, now: datetime) -> bool:
        """A session grants access only while active and unexpired"""
        return bool(self.is_active) and now < self.expires_at

    def __repr__(self):
        return f"<Session(id={self.id}, account_id={self.account_id}, expires_at='{self.expires_at}')>"
