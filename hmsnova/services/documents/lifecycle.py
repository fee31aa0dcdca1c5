"""
Document lifecycle: identity, version history, approval and review dates.

Status machine:

    DRAFT ──approve()──▶ APPROVED
      ▲                     │
      └─upload_new_version()┘

``update`` never changes status. Every mutation bumps ``revision`` and
writes one audit entry in the same session; the caller commits.

Blobs are written to storage before any row is touched. If a later
database write fails the blob is left behind as an orphan; cleaning those
up is out of band.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hmsnova.config.settings import Settings
from hmsnova.core.auth_context import (
    AccessGate,
    AuthContext,
    Capability,
    ResourceType,
    is_visible_to,
)
from hmsnova.core.errors import (
    DuplicateSlugError,
    DuplicateVersionError,
    ErrorCode,
    InvalidOwnerError,
    NotFoundError,
    ProtectedKindError,
    RevisionConflictError,
    StorageError,
    ValidationError,
)
from hmsnova.core.operations import lifecycle_operation
from hmsnova.db.models.document import (
    PROTECTED_KINDS,
    DocStatus,
    Document,
    DocumentKind,
    DocumentTemplate,
    DocumentVersion,
)
from hmsnova.db.models.tenant import TenantMembership
from hmsnova.schemas.document import DocumentCreate, DocumentUpdate, TemplateCreate, VersionUpload
from hmsnova.services.audit.logger import AuditSink, resource_ref
from hmsnova.services.scheduling.review import next_review_date
from hmsnova.services.storage.backend import Storage, generate_file_key

_log = structlog.get_logger(__name__)

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")

INITIAL_VERSION_COMMENT = "Initial version"
LIST_VERSION_LIMIT = 5

_PDCA_FIELDS = {
    "plan": "plan_summary",
    "do": "do_summary",
    "check": "check_summary",
    "act": "act_summary",
}


def slugify(title: str) -> str:
    """Lower-case, collapse every non-alphanumeric run to ``-``, trim dashes."""
    return _SLUG_SEPARATORS.sub("-", title.lower()).strip("-")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class FilePayload:
    """An uploaded file, already read into memory."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


class DocumentLifecycle:
    def __init__(
        self,
        db: AsyncSession,
        storage: Storage,
        audit: AuditSink,
        settings: Settings,
        gate: AccessGate | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._db = db
        self._storage = storage
        self._audit = audit
        self._settings = settings
        self._gate = gate or AccessGate()
        self._clock = clock

    # ── Reads ─────────────────────────────────────────────────────────── #

    @lifecycle_operation("documents.list")
    async def list_documents(
        self,
        ctx: AuthContext,
        kind: DocumentKind | None = None,
        status: DocStatus | None = None,
    ) -> list[Document]:
        """Newest first, hidden documents removed. Callers trim versions to LIST_VERSION_LIMIT."""
        self._gate.require_capability(ctx, Capability.DOCUMENTS_READ)
        query = (
            select(Document)
            .options(selectinload(Document.versions))
            .where(Document.tenant_id == ctx.tenant_id)
        )
        if kind is not None:
            query = query.where(Document.kind == kind)
        if status is not None:
            query = query.where(Document.status == status)
        result = await self._db.execute(query.order_by(Document.created_at.desc()))
        return [doc for doc in result.scalars() if is_visible_to(doc, ctx)]

    @lifecycle_operation("documents.get")
    async def get_document(self, ctx: AuthContext, document_id: str) -> Document:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_READ)
        return await self._load(ctx, document_id)

    @lifecycle_operation("documents.due_for_review")
    async def list_due_for_review(self, ctx: AuthContext, on: date | None = None) -> list[Document]:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_READ)
        cutoff = on or self._clock().date()
        result = await self._db.execute(
            select(Document)
            .options(selectinload(Document.versions))
            .where(
                Document.tenant_id == ctx.tenant_id,
                Document.next_review_date.is_not(None),
                Document.next_review_date <= cutoff,
            )
            .order_by(Document.next_review_date.asc())
        )
        return [doc for doc in result.scalars() if is_visible_to(doc, ctx)]

    @lifecycle_operation("documents.download_url")
    async def get_download_url(self, ctx: AuthContext, document_id: str) -> tuple[str, int]:
        """Return a signed URL for the current file and its lifetime in seconds."""
        self._gate.require_capability(ctx, Capability.DOCUMENTS_READ)
        await self._gate.require_resource_access(
            self._db, ctx, ResourceType.DOCUMENT, document_id
        )
        document = await self._load(ctx, document_id, with_versions=False)
        ttl = self._settings.download_url_ttl_seconds
        url = await self._storage.get_url(document.file_key, ttl)
        return url, ttl

    # ── Templates ─────────────────────────────────────────────────────── #

    @lifecycle_operation("documents.list_templates")
    async def list_templates(self, ctx: AuthContext) -> list[DocumentTemplate]:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_READ)
        result = await self._db.execute(
            select(DocumentTemplate)
            .where(
                (DocumentTemplate.tenant_id == ctx.tenant_id)
                | DocumentTemplate.tenant_id.is_(None)
            )
            .order_by(DocumentTemplate.name.asc())
        )
        return list(result.scalars())

    @lifecycle_operation("documents.create_template")
    async def create_template(self, ctx: AuthContext, payload: TemplateCreate) -> DocumentTemplate:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_CREATE)
        template = DocumentTemplate(tenant_id=ctx.tenant_id, **payload.model_dump())
        self._db.add(template)
        await self._db.flush()
        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_TEMPLATE_CREATED",
            resource_ref("DocumentTemplate", template.id),
            {"name": template.name},
        )
        _log.info("document_template_created", template_id=template.id)
        return template

    # ── Mutations ─────────────────────────────────────────────────────── #

    @lifecycle_operation("documents.create")
    async def create(
        self, ctx: AuthContext, payload: DocumentCreate, file: FilePayload
    ) -> Document:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_CREATE)
        self._validate_file(file)

        slug = slugify(payload.title)
        if not slug:
            raise ValidationError(
                "Title must contain letters or digits",
                detail={"field": "title"},
            )
        await self._ensure_slug_free(ctx, payload.title, slug)

        if payload.owner_id is not None:
            await self._require_member(ctx, payload.owner_id)
        template = (
            await self._resolve_template(ctx, payload.template_id)
            if payload.template_id
            else None
        )

        interval = self._resolve_interval(
            explicit=payload.review_interval_months,
            template=template,
            fallback=self._settings.default_review_interval_months,
        )
        effective_from = payload.effective_from or self._clock().date()
        self._check_window(effective_from, payload.effective_to)
        next_review = next_review_date(effective_from, interval)

        key = generate_file_key(ctx.tenant_id, f"documents/{payload.kind.value}", file.filename)
        await self._storage.upload(key, file.data, file.content_type)

        document = Document(
            tenant_id=ctx.tenant_id,
            title=payload.title,
            slug=slug,
            kind=payload.kind,
            version=payload.version,
            status=DocStatus.DRAFT,
            owner_id=payload.owner_id,
            template_id=template.id if template else None,
            review_interval_months=interval,
            effective_from=effective_from,
            effective_to=payload.effective_to,
            next_review_date=next_review,
            plan_summary=payload.plan_summary,
            do_summary=payload.do_summary,
            check_summary=payload.check_summary,
            act_summary=payload.act_summary,
            visible_to_roles=[r.value for r in payload.visible_to_roles]
            if payload.visible_to_roles
            else None,
            file_key=key,
            mime_type=file.content_type,
            revision=1,
            updated_by=ctx.user_id,
        )
        if template is not None:
            self._fill_pdca_from_template(document, template)
        document.versions.append(
            DocumentVersion(
                tenant_id=ctx.tenant_id,
                sequence_no=1,
                version=payload.version,
                file_key=key,
                mime_type=file.content_type,
                file_size_bytes=file.size_bytes,
                uploaded_by=ctx.user_id,
                change_comment=payload.change_comment or INITIAL_VERSION_COMMENT,
            )
        )
        try:
            async with self._db.begin_nested():
                self._db.add(document)
                await self._db.flush()
        except IntegrityError:
            # a concurrent create won the unique (tenant, slug) race
            existing_id = await self._db.scalar(
                select(Document.id).where(
                    Document.tenant_id == ctx.tenant_id, Document.slug == slug
                )
            )
            if existing_id is None:
                raise
            raise DuplicateSlugError(payload.title, slug, existing_id) from None

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_CREATED",
            resource_ref("Document", document.id),
            {"title": document.title, "kind": document.kind.value, "version": document.version},
        )
        _log.info("document_created", document_id=document.id, slug=slug)
        return await self._reload(document.id)

    @lifecycle_operation("documents.upload_version")
    async def upload_new_version(
        self,
        ctx: AuthContext,
        document_id: str,
        payload: VersionUpload,
        file: FilePayload,
    ) -> Document:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_CREATE)
        document = await self._load(ctx, document_id)
        self._check_revision(document, payload.expected_revision)
        self._validate_file(file)

        label_taken = await self._db.scalar(
            select(DocumentVersion.id).where(
                DocumentVersion.document_id == document.id,
                DocumentVersion.version == payload.version,
            )
        )
        if label_taken is not None:
            raise DuplicateVersionError(document.id, payload.version)

        key = generate_file_key(ctx.tenant_id, f"documents/{document.kind.value}", file.filename)
        await self._storage.upload(key, file.data, file.content_type)

        now = self._clock()
        await self._db.execute(
            update(DocumentVersion)
            .where(
                DocumentVersion.document_id == document.id,
                DocumentVersion.superseded_at.is_(None),
            )
            .values(superseded_at=now)
        )
        last_seq = await self._db.scalar(
            select(func.max(DocumentVersion.sequence_no)).where(
                DocumentVersion.document_id == document.id
            )
        )
        self._db.add(
            DocumentVersion(
                document_id=document.id,
                tenant_id=ctx.tenant_id,
                sequence_no=(last_seq or 0) + 1,
                version=payload.version,
                file_key=key,
                mime_type=file.content_type,
                file_size_bytes=file.size_bytes,
                uploaded_by=ctx.user_id,
                change_comment=payload.change_comment,
            )
        )

        previous_status = document.status
        document.version = payload.version
        document.file_key = key
        document.mime_type = file.content_type
        document.status = DocStatus.DRAFT
        document.approved_by = None
        document.approved_at = None
        self._bump(document, ctx)
        await self._db.flush()

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_VERSION_UPLOADED",
            resource_ref("Document", document.id),
            {
                "version": payload.version,
                "change_comment": payload.change_comment,
                "previous_status": previous_status.value,
            },
        )
        _log.info(
            "document_version_uploaded",
            document_id=document.id,
            version=payload.version,
            approval_reset=previous_status == DocStatus.APPROVED,
        )
        return await self._reload(document.id)

    @lifecycle_operation("documents.update")
    async def update(
        self, ctx: AuthContext, document_id: str, payload: DocumentUpdate
    ) -> Document:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_CREATE)
        document = await self._load(ctx, document_id)
        self._check_revision(document, payload.expected_revision)

        fields = payload.model_dump(exclude_unset=True, exclude={"expected_revision"})

        # Every check runs before the row is touched.
        title = fields.get("title")
        slug = document.slug
        if title is not None and title != document.title:
            slug = slugify(title)
            if not slug:
                raise ValidationError(
                    "Title must contain letters or digits", detail={"field": "title"}
                )
            if slug != document.slug:
                await self._ensure_slug_free(ctx, title, slug, exclude_id=document.id)

        kind = fields.get("kind")
        if kind is not None and kind != document.kind and document.kind in PROTECTED_KINDS:
            raise ProtectedKindError(
                document.id,
                document.kind.value,
                "Legal documents cannot change kind",
            )

        label = fields.get("version")
        if label is not None and label != document.version:
            if any(v.version == label for v in document.versions):
                raise DuplicateVersionError(document.id, label)

        if fields.get("owner_id") is not None:
            await self._require_member(ctx, fields["owner_id"])

        changed_template: DocumentTemplate | None = None
        if fields.get("template_id") is not None and fields["template_id"] != document.template_id:
            changed_template = await self._resolve_template(ctx, fields["template_id"])

        effective_from = fields.get("effective_from") or document.effective_from
        effective_to = fields["effective_to"] if "effective_to" in fields else document.effective_to
        self._check_window(effective_from, effective_to)

        if title is not None:
            document.title = title
            document.slug = slug
        if kind is not None:
            document.kind = kind
        if label is not None and label != document.version:
            self._rename_current_version(document, label)
        if "owner_id" in fields:
            document.owner_id = fields["owner_id"]
        if "template_id" in fields:
            document.template_id = changed_template.id if changed_template else fields["template_id"]
        document.effective_from = effective_from
        document.effective_to = effective_to

        for pdca_field in _PDCA_FIELDS.values():
            if pdca_field in fields:
                setattr(document, pdca_field, fields[pdca_field])
        if changed_template is not None:
            self._fill_pdca_from_template(document, changed_template)

        if "visible_to_roles" in fields:
            roles = fields["visible_to_roles"]
            document.visible_to_roles = [str(r) for r in roles] if roles else None

        document.review_interval_months = self._resolve_interval(
            explicit=fields.get("review_interval_months"),
            template=changed_template,
            fallback=document.review_interval_months,
        )
        if {"review_interval_months", "template_id", "effective_from"} & fields.keys():
            document.next_review_date = next_review_date(
                document.effective_from, document.review_interval_months
            )

        self._bump(document, ctx)
        await self._db.flush()

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_UPDATED",
            resource_ref("Document", document.id),
            {"fields": sorted(fields)},
        )
        _log.info("document_updated", document_id=document.id, fields=sorted(fields))
        return await self._reload(document.id)

    @lifecycle_operation("documents.approve")
    async def approve(
        self,
        ctx: AuthContext,
        document_id: str,
        approved_by: str | None = None,
        expected_revision: int | None = None,
    ) -> Document:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_APPROVE)
        document = await self._load(ctx, document_id)
        self._check_revision(document, expected_revision)

        approver = approved_by or ctx.user_email
        now = self._clock()
        document.status = DocStatus.APPROVED
        document.approved_by = approver
        document.approved_at = now
        document.next_review_date = next_review_date(
            document.effective_from, document.review_interval_months
        )
        if document.versions:
            latest = max(document.versions, key=lambda v: v.sequence_no)
            latest.approved_by = approver
            latest.approved_at = now
        self._bump(document, ctx)
        await self._db.flush()

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_APPROVED",
            resource_ref("Document", document.id),
            {"version": document.version, "approved_by": approver},
        )
        _log.info("document_approved", document_id=document.id, version=document.version)
        return await self._reload(document.id)

    @lifecycle_operation("documents.delete")
    async def delete(self, ctx: AuthContext, document_id: str) -> None:
        self._gate.require_capability(ctx, Capability.DOCUMENTS_DELETE)
        document = await self._load(ctx, document_id)
        if document.kind in PROTECTED_KINDS:
            raise ProtectedKindError(document.id, document.kind.value)

        keys = [v.file_key for v in document.versions]
        if document.file_key not in keys:
            keys.append(document.file_key)
        for key in keys:
            try:
                await self._storage.delete(key)
            except StorageError as exc:
                _log.warning(
                    "blob_delete_failed",
                    document_id=document.id,
                    key=key,
                    error=exc.message,
                )

        await self._audit.log(
            ctx.tenant_id,
            ctx.user_id,
            "DOCUMENT_DELETED",
            resource_ref("Document", document.id),
            {"title": document.title, "kind": document.kind.value, "versions": len(keys)},
        )
        await self._db.delete(document)
        await self._db.flush()
        _log.info("document_deleted", document_id=document_id)

    # ── Helpers ───────────────────────────────────────────────────────── #

    async def _load(
        self, ctx: AuthContext, document_id: str, with_versions: bool = True
    ) -> Document:
        query = select(Document).where(
            Document.id == document_id, Document.tenant_id == ctx.tenant_id
        )
        if with_versions:
            query = query.options(selectinload(Document.versions))
        document = (
            await self._db.execute(query.execution_options(populate_existing=True))
        ).scalar_one_or_none()
        if document is None or not is_visible_to(document, ctx):
            raise NotFoundError("Document", document_id, ErrorCode.DOC_NOT_FOUND)
        return document

    async def _reload(self, document_id: str) -> Document:
        result = await self._db.execute(
            select(Document)
            .options(selectinload(Document.versions))
            .where(Document.id == document_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    def _validate_file(self, file: FilePayload) -> None:
        if file.size_bytes == 0:
            raise ValidationError(
                "File is empty", detail={"field": "file"}, code=ErrorCode.DOC_EMPTY_FILE
            )
        if file.content_type not in self._settings.allowed_mime_types:
            raise ValidationError(
                f"Unsupported file type: {file.content_type}",
                detail={
                    "field": "file",
                    "allowed": self._settings.allowed_mime_types,
                    "received": file.content_type,
                },
                code=ErrorCode.DOC_MIME_REJECTED,
            )
        limit = self._settings.max_upload_size_bytes
        if file.size_bytes > limit:
            raise ValidationError(
                f"File exceeds maximum allowed size of {self._settings.max_upload_size_mb}MB",
                detail={"field": "file", "size_bytes": file.size_bytes, "limit_bytes": limit},
                code=ErrorCode.DOC_TOO_LARGE,
            )

    async def _ensure_slug_free(
        self, ctx: AuthContext, title: str, slug: str, exclude_id: str | None = None
    ) -> None:
        query = select(Document.id).where(
            Document.tenant_id == ctx.tenant_id, Document.slug == slug
        )
        if exclude_id is not None:
            query = query.where(Document.id != exclude_id)
        existing_id = await self._db.scalar(query)
        if existing_id is not None:
            raise DuplicateSlugError(title, slug, existing_id)

    async def _require_member(self, ctx: AuthContext, user_id: str) -> None:
        member = await self._db.scalar(
            select(TenantMembership.id).where(
                TenantMembership.tenant_id == ctx.tenant_id,
                TenantMembership.user_id == user_id,
            )
        )
        if member is None:
            raise InvalidOwnerError(user_id)

    async def _resolve_template(self, ctx: AuthContext, template_id: str) -> DocumentTemplate:
        template = await self._db.scalar(
            select(DocumentTemplate).where(
                DocumentTemplate.id == template_id,
                (DocumentTemplate.tenant_id == ctx.tenant_id)
                | DocumentTemplate.tenant_id.is_(None),
            )
        )
        if template is None:
            raise NotFoundError("DocumentTemplate", template_id, ErrorCode.DOC_TEMPLATE_NOT_FOUND)
        return template

    @staticmethod
    def _rename_current_version(document: Document, label: str) -> None:
        for version in document.versions:
            if version.superseded_at is None:
                version.version = label
        document.version = label

    @staticmethod
    def _resolve_interval(
        explicit: int | None, template: DocumentTemplate | None, fallback: int
    ) -> int:
        if explicit is not None:
            return explicit
        if template is not None:
            return template.default_review_interval_months
        return fallback

    @staticmethod
    def _fill_pdca_from_template(document: Document, template: DocumentTemplate) -> None:
        guidance: dict[str, Any] = template.pdca_guidance or {}
        for key, attr in _PDCA_FIELDS.items():
            if not getattr(document, attr) and guidance.get(key):
                setattr(document, attr, guidance[key])

    @staticmethod
    def _check_window(effective_from: date, effective_to: date | None) -> None:
        if effective_to is not None and effective_to < effective_from:
            raise ValidationError(
                "effective_to must not be before effective_from",
                detail={"field": "effective_to"},
            )

    @staticmethod
    def _check_revision(document: Document, expected: int | None) -> None:
        if expected is not None and expected != document.revision:
            raise RevisionConflictError("Document", document.id, expected, document.revision)

    @staticmethod
    def _bump(document: Document, ctx: AuthContext) -> None:
        document.revision += 1
        document.updated_by = ctx.user_id
