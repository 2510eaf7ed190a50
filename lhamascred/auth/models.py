"""User and authentication models."""

from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, EmailStr, Field

UserRole = Literal["user", "manager", "admin"]

# New accounts wait for an admin to approve them.
UserStatus = Literal["pending", "active", "rejected", "inactive"]


class UserCreate(BaseModel):
    """Schema for user registration."""
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2)


class UserLogin(BaseModel):
    """Schema for user login."""
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    """Schema for user response (excludes password and provider secrets)."""
    id: str
    email: str
    name: str
    role: UserRole = "user"
    status: UserStatus = "pending"
    team_id: Optional[str] = None
    configured_providers: List[str] = Field(default_factory=list)
    created_at: datetime


class SignupResponse(BaseModel):
    """Signup does not log the user in; the account must be approved first."""
    status: str = "success"
    message: str
    user: UserResponse


class TokenResponse(BaseModel):
    """Schema for JWT token response."""
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class ProviderCredentialsUpdate(BaseModel):
    """
    Per-user API credentials for the credit providers.

    Only the fields sent are changed; an empty string clears a field.
    """
    v8_username: Optional[str] = None
    v8_password: Optional[str] = None
    v8_audience: Optional[str] = None
    v8_client_id: Optional[str] = None
    facta_username: Optional[str] = None
    facta_password: Optional[str] = None
    c6_username: Optional[str] = None
    c6_password: Optional[str] = None


class UserAdminUpdate(BaseModel):
    """Admin changes to an account. Omitted fields are left as they are."""
    status: Optional[UserStatus] = None
    role: Optional[UserRole] = None
    team_id: Optional[str] = None


class UserListResponse(BaseModel):
    users: List[UserResponse] = Field(default_factory=list)
    count: int = 0
