"""
Database models for tenants, users and tenant memberships.

A user may belong to several tenants with a different role in each; the
role is stored on the membership as a string for schema portability
across SQLite and PostgreSQL.
"""

from __future__ import annotations

from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hmsnova.db.base import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKeyMixin


class TenantRole(StrEnum):
    """Roles a member can hold inside one tenant."""

    ADMIN = "ADMIN"
    HMS = "HMS"
    LEDER = "LEDER"
    VERNEOMBUD = "VERNEOMBUD"
    ANSATT = "ANSATT"
    BHT = "BHT"
    REVISOR = "REVISOR"


class Tenant(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """An organisation using the platform. All business data hangs off a tenant."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False, unique=True, index=True)

    memberships: Mapped[list[TenantMembership]] = relationship(
        "TenantMembership",
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Tenant {self.slug}>"


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """User entity with hashed password. Roles live on memberships."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    memberships: Mapped[list[TenantMembership]] = relationship(
        "TenantMembership", back_populates="user"
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class TenantMembership(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Links a user to a tenant with exactly one role."""

    __tablename__ = "tenant_memberships"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_memberships_tenant_user"),
    )

    tenant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=TenantRole.ANSATT)

    tenant: Mapped[Tenant] = relationship("Tenant", back_populates="memberships")
    user: Mapped[User] = relationship("User", back_populates="memberships")

    def __repr__(self) -> str:
        return f"<TenantMembership {self.user_id}@{self.tenant_id} {self.role}>"
