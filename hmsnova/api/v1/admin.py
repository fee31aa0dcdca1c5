"""Tenant member management endpoints."""

from __future__ import annotations

import structlog
from fastapi import APIRouter
from sqlalchemy import select

from hmsnova.api.deps import AuthCtx, DbSession, MemberManager
from hmsnova.core.errors import ConflictError, ErrorCode, NotFoundError, ValidationError
from hmsnova.core.security import hash_password
from hmsnova.db.models.tenant import TenantMembership, TenantRole, User
from hmsnova.schemas.tenant import AddMemberRequest, ChangeRoleRequest, MemberOut
from hmsnova.services.audit.logger import AuditLogger, resource_ref

_log = structlog.get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _member_out(membership: TenantMembership, user: User) -> MemberOut:
    return MemberOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=TenantRole(membership.role),
        is_active=user.is_active,
    )


async def _load_member(db: DbSession, tenant_id: str, user_id: str) -> tuple[TenantMembership, User]:
    row = (
        await db.execute(
            select(TenantMembership, User)
            .join(User, User.id == TenantMembership.user_id)
            .where(TenantMembership.tenant_id == tenant_id, TenantMembership.user_id == user_id)
        )
    ).first()
    if row is None:
        raise NotFoundError("Member", user_id)
    return row[0], row[1]


@router.get(
    "/members",
    response_model=list[MemberOut],
    summary="List members of the current tenant",
    dependencies=[MemberManager],
)
async def list_members(ctx: AuthCtx, db: DbSession) -> list[MemberOut]:
    result = await db.execute(
        select(TenantMembership, User)
        .join(User, User.id == TenantMembership.user_id)
        .where(TenantMembership.tenant_id == ctx.tenant_id, User.deleted_at.is_(None))
        .order_by(TenantMembership.created_at)
    )
    return [_member_out(m, u) for m, u in result.all()]


@router.post(
    "/members",
    response_model=MemberOut,
    status_code=201,
    summary="Add a member, registering the user if the e-mail is new",
    dependencies=[MemberManager],
)
async def add_member(body: AddMemberRequest, ctx: AuthCtx, db: DbSession) -> MemberOut:
    user = await db.scalar(select(User).where(User.email == body.email))
    if user is not None and user.is_deleted:
        raise ValidationError("This account has been deleted", detail={"email": body.email})

    if user is None:
        if body.password is None:
            raise ValidationError(
                "A password is required for a new user", detail={"field": "password"}
            )
        user = User(
            email=body.email,
            name=body.name,
            password_hash=hash_password(body.password),
            is_active=True,
        )
        db.add(user)
        await db.flush()
    else:
        existing = await db.scalar(
            select(TenantMembership.id).where(
                TenantMembership.tenant_id == ctx.tenant_id,
                TenantMembership.user_id == user.id,
            )
        )
        if existing is not None:
            raise ConflictError(
                ErrorCode.TENANT_MEMBER_EXISTS,
                f"{body.email} is already a member of this tenant",
                detail={"user_id": user.id},
            )

    membership = TenantMembership(tenant_id=ctx.tenant_id, user_id=user.id, role=body.role.value)
    db.add(membership)
    await db.flush()

    await AuditLogger(db).log(
        ctx.tenant_id,
        ctx.user_id,
        "MEMBER_ADDED",
        resource_ref("User", user.id),
        {"email": user.email, "role": body.role.value},
    )
    _log.info("member_added", member_user_id=user.id, role=body.role.value)
    return _member_out(membership, user)


@router.patch(
    "/members/{user_id}",
    response_model=MemberOut,
    summary="Change a member's role",
    dependencies=[MemberManager],
)
async def change_role(
    user_id: str, body: ChangeRoleRequest, ctx: AuthCtx, db: DbSession
) -> MemberOut:
    if user_id == ctx.user_id:
        raise ValidationError("You cannot change your own role.")
    membership, user = await _load_member(db, ctx.tenant_id, user_id)

    previous = membership.role
    membership.role = body.role.value
    await db.flush()
    await AuditLogger(db).log(
        ctx.tenant_id,
        ctx.user_id,
        "MEMBER_ROLE_CHANGED",
        resource_ref("User", user.id),
        {"from": previous, "to": body.role.value},
    )
    return _member_out(membership, user)


@router.delete(
    "/members/{user_id}",
    status_code=204,
    summary="Remove a member from the tenant",
    dependencies=[MemberManager],
)
async def remove_member(user_id: str, ctx: AuthCtx, db: DbSession) -> None:
    """The user account itself is kept; only the membership goes."""
    if user_id == ctx.user_id:
        raise ValidationError("You cannot remove yourself.")
    membership, user = await _load_member(db, ctx.tenant_id, user_id)

    await AuditLogger(db).log(
        ctx.tenant_id,
        ctx.user_id,
        "MEMBER_REMOVED",
        resource_ref("User", user.id),
        {"email": user.email, "role": membership.role},
    )
    await db.delete(membership)
    await db.flush()
