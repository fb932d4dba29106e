"""Authentication models for the OTP Gateway web application."""

from typing import Optional

from pydantic import BaseModel, Field

from otpgate.core.enums import TenantRole


class LoginRequest(BaseModel):
    """Login request model."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    """Token response model."""

    access_token: str
    token_type: str = "bearer"


class TenantProfile(BaseModel):
    """Authenticated tenant profile."""

    id: int
    username: str
    role: str
    created_at: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    """Self-service password change."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=72)


class CreateTenantRequest(BaseModel):
    """Superadmin request to create a tenant account."""

    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=6, max_length=72)
    role: TenantRole = TenantRole.USER


class UpdateTenantRequest(BaseModel):
    """Superadmin request to rename a tenant or change its role."""

    username: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[TenantRole] = None


class ResetPasswordRequest(BaseModel):
    """Superadmin password reset for another tenant."""

    new_password: str = Field(..., min_length=6, max_length=72)
