"""
Immutable audit logger.

Every event is SHA-256 hashed, including the hash of the immediately
preceding event of the same tenant. This forms one hash chain per tenant
that makes tampering with historical records detectable.

Events are written into the caller's session, so an audit entry commits
or rolls back together with the business change it describes. Writes are
serialised via an asyncio lock so two requests never claim the same
sequence number.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hmsnova.db.models.audit import AuditEvent

_log = structlog.get_logger(__name__)

_LOCK = asyncio.Lock()


class AuditSink(Protocol):
    async def log(
        self,
        tenant_id: str,
        user_id: str | None,
        action: str,
        resource_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


def resource_ref(entity: str, entity_id: str) -> str:
    return f"{entity}:{entity_id}"


def _canonical_time(value: datetime) -> str:
    # SQLite hands back naive datetimes; stored values are always UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")


def _compute_event_hash(
    tenant_id: str,
    sequence_no: int,
    action: str,
    user_id: str | None,
    resource_ref: str,
    metadata_json: str | None,
    created_at: datetime,
    prev_hash: str | None,
) -> str:
    """Compute the SHA-256 hash for an audit event."""
    components = {
        "tenant_id": tenant_id,
        "sequence_no": sequence_no,
        "action": action,
        "user_id": user_id or "",
        "resource_ref": resource_ref,
        "metadata_json": metadata_json or "",
        "created_at": _canonical_time(created_at),
        "prev_hash": prev_hash or "",
    }
    canonical = json.dumps(components, sort_keys=True, ensure_ascii=True)
    return hashlib.sha256(canonical.encode()).hexdigest()


class AuditLogger:
    """
    Transactional AuditSink backed by the ``audit_events`` table.

    Usage:
        audit = AuditLogger(db)
        await audit.log(
            tenant_id=ctx.tenant_id,
            user_id=ctx.user_id,
            action="DOCUMENT_CREATED",
            resource_ref=resource_ref("Document", doc.id),
            metadata={"title": doc.title},
        )
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def log(
        self,
        tenant_id: str,
        user_id: str | None,
        action: str,
        resource_ref: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with _LOCK:
            last = (
                await self._db.execute(
                    select(AuditEvent.sequence_no, AuditEvent.event_hash)
                    .where(AuditEvent.tenant_id == tenant_id)
                    .order_by(AuditEvent.sequence_no.desc())
                    .limit(1)
                )
            ).first()
            sequence_no = last.sequence_no + 1 if last else 1
            prev_hash = last.event_hash if last else None

            created_at = datetime.now(UTC)
            metadata_json = (
                json.dumps(metadata, sort_keys=True, default=str) if metadata else None
            )
            event_hash = _compute_event_hash(
                tenant_id=tenant_id,
                sequence_no=sequence_no,
                action=action,
                user_id=user_id,
                resource_ref=resource_ref,
                metadata_json=metadata_json,
                created_at=created_at,
                prev_hash=prev_hash,
            )

            self._db.add(
                AuditEvent(
                    tenant_id=tenant_id,
                    sequence_no=sequence_no,
                    action=action,
                    user_id=user_id,
                    resource_ref=resource_ref,
                    correlation_id=structlog.contextvars.get_contextvars().get("correlation_id"),
                    metadata_json=metadata_json,
                    event_hash=event_hash,
                    prev_hash=prev_hash,
                    created_at=created_at,
                )
            )
            await self._db.flush()

        _log.debug(
            "audit_event_written",
            action=action,
            resource_ref=resource_ref,
            sequence_no=sequence_no,
        )

    @staticmethod
    async def verify_chain(db: AsyncSession, tenant_id: str) -> tuple[bool, str | None]:
        """
        Verify the integrity of one tenant's audit hash chain.

        Returns:
            (True, None) if chain is intact.
            (False, event_id) of the first event where the chain is broken.
        """
        result = await db.execute(
            select(AuditEvent)
            .where(AuditEvent.tenant_id == tenant_id)
            .order_by(AuditEvent.sequence_no.asc())
        )

        prev_hash: str | None = None
        expected_seq = 1
        for event in result.scalars():
            expected = _compute_event_hash(
                tenant_id=event.tenant_id,
                sequence_no=event.sequence_no,
                action=event.action,
                user_id=event.user_id,
                resource_ref=event.resource_ref,
                metadata_json=event.metadata_json,
                created_at=event.created_at,
                prev_hash=prev_hash,
            )
            if event.sequence_no != expected_seq or expected != event.event_hash:
                _log.error(
                    "audit_chain_broken",
                    tenant_id=tenant_id,
                    event_id=event.id,
                    sequence_no=event.sequence_no,
                )
                return False, event.id

            prev_hash = event.event_hash
            expected_seq += 1

        return True, None
