"""Pydantic request/response models for API"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field


#Authentication schemas
class RegisterRequest(BaseModel):
    email: EmailStr
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RegisterResponse(BaseModel):
    id: int
    email: str
    username: str

    model_config = ConfigDict(from_attributes=True)


class AccountSummary(BaseModel):
    id: int
    email: str
    username: str
    full_name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LoginResponse(BaseModel):
    success: bool
    message: str
    user: Optional[AccountSummary] = None


class MessageResponse(BaseModel):
    success: bool
    message: str


#Session schemas
class SessionSummary(BaseModel):
    id: int
    device_info: Optional[str] = None
    ip_address: Optional[str] = None
    location: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    current_session: bool = False

    model_config = ConfigDict(from_attributes=True)


class SessionListResponse(BaseModel):
    sessions: List[SessionSummary]
    total_active_sessions: int
