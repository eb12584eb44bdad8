"""Auth and agent schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class SignupRequest(BaseModel):
    businessName: str = Field(min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    timezone: Optional[str] = None
    industry: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class LogoutRequest(BaseModel):
    refreshToken: Optional[str] = None
    all: bool = False


class AgentRegistrationRequest(BaseModel):
    retellAgentId: str = Field(min_length=1, max_length=128)
    displayName: Optional[str] = None
    bearerToken: Optional[str] = Field(default=None, min_length=16, max_length=512)
