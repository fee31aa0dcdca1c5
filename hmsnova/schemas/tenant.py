"""Tenant membership schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from hmsnova.db.models.tenant import TenantRole
from hmsnova.schemas.auth import check_password_complexity


class MemberOut(BaseModel):
    membership_id: str
    user_id: str
    email: str
    name: str | None
    role: TenantRole
    is_active: bool


class AddMemberRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str | None = Field(default=None, max_length=200)
    role: TenantRole = TenantRole.ANSATT
    password: str | None = Field(
        default=None,
        min_length=12,
        max_length=256,
        description="Initial password. Required when the e-mail is not yet registered.",
    )

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("password")
    @classmethod
    def password_complexity(cls, v: str | None) -> str | None:
        return check_password_complexity(v) if v is not None else v


class ChangeRoleRequest(BaseModel):
    role: TenantRole
