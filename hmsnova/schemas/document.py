"""Document, version and template Pydantic schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hmsnova.db.models.document import DocStatus, DocumentKind
from hmsnova.db.models.tenant import TenantRole


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class _DocumentFields(BaseModel):
    owner_id: str | None = None
    template_id: str | None = None
    review_interval_months: int | None = Field(default=None, ge=1, le=120)
    effective_from: date | None = None
    effective_to: date | None = None
    plan_summary: str | None = Field(default=None, max_length=5000)
    do_summary: str | None = Field(default=None, max_length=5000)
    check_summary: str | None = Field(default=None, max_length=5000)
    act_summary: str | None = Field(default=None, max_length=5000)
    visible_to_roles: list[TenantRole] | None = None

    @field_validator(
        "owner_id",
        "template_id",
        "plan_summary",
        "do_summary",
        "check_summary",
        "act_summary",
        mode="before",
    )
    @classmethod
    def blank_is_unset(cls, v: Any) -> Any:
        return _blank_to_none(v)


class DocumentCreate(_DocumentFields):
    title: str = Field(..., min_length=1, max_length=300)
    kind: DocumentKind
    version: str = Field(default="v1.0", min_length=1, max_length=50)
    change_comment: str | None = Field(default=None, max_length=2000)

    @field_validator("title", "version")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DocumentUpdate(_DocumentFields):
    """
    Partial update. Only fields present in the request are applied; an
    explicit null clears an optional field.
    """

    title: str | None = Field(default=None, min_length=1, max_length=300)
    kind: DocumentKind | None = None
    version: str | None = Field(default=None, min_length=1, max_length=50)
    expected_revision: int | None = Field(default=None, ge=1)

    @field_validator("title", "version")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class VersionUpload(BaseModel):
    version: str = Field(..., min_length=1, max_length=50)
    change_comment: str | None = Field(default=None, max_length=2000)
    expected_revision: int | None = Field(default=None, ge=1)

    @field_validator("version")
    @classmethod
    def strip_version(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ApproveRequest(BaseModel):
    approved_by: str | None = Field(default=None, max_length=255)
    expected_revision: int | None = Field(default=None, ge=1)


class DocumentVersionOut(BaseModel):
    id: str
    sequence_no: int
    version: str
    file_key: str
    mime_type: str
    file_size_bytes: int
    uploaded_by: str | None
    change_comment: str | None
    approved_by: str | None
    approved_at: datetime | None
    superseded_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class DocumentOut(BaseModel):
    id: str
    tenant_id: str
    title: str
    slug: str
    kind: DocumentKind
    version: str
    status: DocStatus
    owner_id: str | None
    template_id: str | None
    review_interval_months: int
    effective_from: date
    effective_to: date | None
    next_review_date: date | None
    plan_summary: str | None
    do_summary: str | None
    check_summary: str | None
    act_summary: str | None
    visible_to_roles: list[str] | None
    approved_by: str | None
    approved_at: datetime | None
    mime_type: str
    revision: int
    updated_by: str | None
    created_at: datetime
    updated_at: datetime
    versions: list[DocumentVersionOut] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class DocumentListResponse(BaseModel):
    items: list[DocumentOut]
    total: int


class DownloadUrlResponse(BaseModel):
    url: str
    expires_in: int


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    category: str | None = Field(default=None, max_length=50)
    description: str | None = Field(default=None, max_length=2000)
    default_review_interval_months: int = Field(default=12, ge=1, le=120)
    pdca_guidance: dict[str, str] | None = None

    @field_validator("pdca_guidance")
    @classmethod
    def only_pdca_keys(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v is not None:
            unknown = set(v) - {"plan", "do", "check", "act"}
            if unknown:
                raise ValueError(f"unknown PDCA keys: {sorted(unknown)}")
        return v


class TemplateOut(BaseModel):
    id: str
    tenant_id: str | None
    name: str
    category: str | None
    description: str | None
    default_review_interval_months: int
    pdca_guidance: dict[str, Any] | None
    is_global: bool

    model_config = {"from_attributes": True}
