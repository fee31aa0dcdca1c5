"""Document management API endpoints."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, TypeVar

import pydantic
from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.exceptions import RequestValidationError

from hmsnova.api.deps import AuthCtx, Documents
from hmsnova.db.models.document import DocStatus, Document, DocumentKind
from hmsnova.schemas.document import (
    ApproveRequest,
    DocumentCreate,
    DocumentListResponse,
    DocumentOut,
    DocumentUpdate,
    DownloadUrlResponse,
    TemplateCreate,
    TemplateOut,
    VersionUpload,
)
from hmsnova.services.documents.lifecycle import LIST_VERSION_LIMIT, FilePayload

router = APIRouter(prefix="/documents", tags=["documents"])

_M = TypeVar("_M", bound=pydantic.BaseModel)


def _from_form(model: type[_M], **fields: Any) -> _M:
    """Validate multipart form fields with the same schema the JSON routes use."""
    try:
        return model.model_validate({k: v for k, v in fields.items() if v is not None})
    except pydantic.ValidationError as exc:
        raise RequestValidationError(exc.errors(include_url=False)) from exc


async def _read_upload(upload: UploadFile) -> FilePayload:
    return FilePayload(
        filename=upload.filename or "file",
        content_type=upload.content_type or "application/octet-stream",
        data=await upload.read(),
    )


def _summary(document: Document) -> DocumentOut:
    out = DocumentOut.model_validate(document)
    out.versions = out.versions[:LIST_VERSION_LIMIT]
    return out


# ── Collection ────────────────────────────────────────────────────────── #


@router.get("", response_model=DocumentListResponse, summary="List documents")
async def list_documents(
    ctx: AuthCtx,
    documents: Documents,
    kind: Annotated[DocumentKind | None, Query()] = None,
    status: Annotated[DocStatus | None, Query()] = None,
) -> DocumentListResponse:
    """Newest first. Each document carries at most its five latest versions."""
    items = await documents.list_documents(ctx, kind=kind, status=status)
    return DocumentListResponse(items=[_summary(d) for d in items], total=len(items))


@router.post(
    "",
    response_model=DocumentOut,
    status_code=201,
    summary="Create a document with its first file",
)
async def create_document(
    ctx: AuthCtx,
    documents: Documents,
    file: Annotated[UploadFile, File(description="Document file")],
    title: Annotated[str, Form()],
    kind: Annotated[str, Form()],
    version: Annotated[str | None, Form()] = None,
    change_comment: Annotated[str | None, Form()] = None,
    owner_id: Annotated[str | None, Form()] = None,
    template_id: Annotated[str | None, Form()] = None,
    review_interval_months: Annotated[str | None, Form()] = None,
    effective_from: Annotated[str | None, Form()] = None,
    effective_to: Annotated[str | None, Form()] = None,
    plan_summary: Annotated[str | None, Form()] = None,
    do_summary: Annotated[str | None, Form()] = None,
    check_summary: Annotated[str | None, Form()] = None,
    act_summary: Annotated[str | None, Form()] = None,
    visible_to_roles: Annotated[list[str] | None, Form()] = None,
) -> DocumentOut:
    """
    Create a DRAFT document.

    A title whose slug is already taken in the tenant fails with DOC_010;
    ``detail.existing_document_id`` points at the document to upload a new
    version onto instead.
    """
    payload = _from_form(
        DocumentCreate,
        title=title,
        kind=kind,
        version=version,
        change_comment=change_comment,
        owner_id=owner_id,
        template_id=template_id,
        review_interval_months=review_interval_months,
        effective_from=effective_from,
        effective_to=effective_to,
        plan_summary=plan_summary,
        do_summary=do_summary,
        check_summary=check_summary,
        act_summary=act_summary,
        visible_to_roles=visible_to_roles or None,
    )
    document = await documents.create(ctx, payload, await _read_upload(file))
    return DocumentOut.model_validate(document)


@router.get(
    "/due-for-review",
    response_model=DocumentListResponse,
    summary="Documents whose next review date has passed",
)
async def due_for_review(
    ctx: AuthCtx,
    documents: Documents,
    on: Annotated[date | None, Query(description="Cut-off date, defaults to today")] = None,
) -> DocumentListResponse:
    items = await documents.list_due_for_review(ctx, on=on)
    return DocumentListResponse(items=[_summary(d) for d in items], total=len(items))


# ── Templates ─────────────────────────────────────────────────────────── #


@router.get("/templates", response_model=list[TemplateOut], summary="List document templates")
async def list_templates(ctx: AuthCtx, documents: Documents) -> list[TemplateOut]:
    return [TemplateOut.model_validate(t) for t in await documents.list_templates(ctx)]


@router.post(
    "/templates",
    response_model=TemplateOut,
    status_code=201,
    summary="Create a tenant document template",
)
async def create_template(
    body: TemplateCreate, ctx: AuthCtx, documents: Documents
) -> TemplateOut:
    return TemplateOut.model_validate(await documents.create_template(ctx, body))


# ── Single document ───────────────────────────────────────────────────── #


@router.get("/{document_id}", response_model=DocumentOut, summary="Get a document")
async def get_document(document_id: str, ctx: AuthCtx, documents: Documents) -> DocumentOut:
    return DocumentOut.model_validate(await documents.get_document(ctx, document_id))


@router.patch("/{document_id}", response_model=DocumentOut, summary="Update document metadata")
async def update_document(
    document_id: str, body: DocumentUpdate, ctx: AuthCtx, documents: Documents
) -> DocumentOut:
    return DocumentOut.model_validate(await documents.update(ctx, document_id, body))


@router.post(
    "/{document_id}/versions",
    response_model=DocumentOut,
    status_code=201,
    summary="Upload a new version",
)
async def upload_version(
    document_id: str,
    ctx: AuthCtx,
    documents: Documents,
    file: Annotated[UploadFile, File(description="New document file")],
    version: Annotated[str, Form()],
    change_comment: Annotated[str | None, Form()] = None,
    expected_revision: Annotated[str | None, Form()] = None,
) -> DocumentOut:
    """Supersedes the current version and puts the document back into DRAFT."""
    payload = _from_form(
        VersionUpload,
        version=version,
        change_comment=change_comment,
        expected_revision=expected_revision,
    )
    document = await documents.upload_new_version(
        ctx, document_id, payload, await _read_upload(file)
    )
    return DocumentOut.model_validate(document)


@router.post("/{document_id}/approve", response_model=DocumentOut, summary="Approve a document")
async def approve_document(
    document_id: str,
    ctx: AuthCtx,
    documents: Documents,
    body: ApproveRequest | None = None,
) -> DocumentOut:
    body = body or ApproveRequest()
    document = await documents.approve(
        ctx,
        document_id,
        approved_by=body.approved_by,
        expected_revision=body.expected_revision,
    )
    return DocumentOut.model_validate(document)


@router.delete("/{document_id}", status_code=204, summary="Delete a document")
async def delete_document(document_id: str, ctx: AuthCtx, documents: Documents) -> None:
    await documents.delete(ctx, document_id)


@router.get(
    "/{document_id}/download-url",
    response_model=DownloadUrlResponse,
    summary="Signed, time-limited download URL for the current file",
)
async def download_url(
    document_id: str, ctx: AuthCtx, documents: Documents
) -> DownloadUrlResponse:
    url, ttl = await documents.get_download_url(ctx, document_id)
    return DownloadUrlResponse(url=url, expires_in=ttl)

