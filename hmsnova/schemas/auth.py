"""Auth schemas: login, token response, current-user representation."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from hmsnova.db.models.tenant import TenantRole


def check_password_complexity(v: str) -> str:
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=256)
    tenant_id: str | None = Field(
        default=None,
        description="Tenant to open the session in. Defaults to the user's oldest membership.",
    )

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    tenant_id: str
    role: TenantRole


class RefreshRequest(BaseModel):
    refresh_token: str


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=12, max_length=256)

    @field_validator("new_password")
    @classmethod
    def password_complexity(cls, v: str) -> str:
        return check_password_complexity(v)


class MeOut(BaseModel):
    user_id: str
    email: str
    name: str | None
    tenant_id: str
    role: TenantRole
    capabilities: list[str]
