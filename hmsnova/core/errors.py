"""
Structured error taxonomy for HMS Nova.

Every application error has:
  - A stable error code (prefixed by domain)
  - An HTTP status code
  - A human-readable message
  - An optional detail dict for machine consumers

No internal state (stack traces, DB internals) is ever surfaced to clients.
At the HTTP boundary every error is rendered as
``{"success": false, "error": {"code", "message", "detail"}}``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable, versioned error codes. Never reuse a retired code."""

    # Auth
    AUTH_INVALID_CREDENTIALS = "AUTH_001"
    AUTH_TOKEN_EXPIRED = "AUTH_002"
    AUTH_TOKEN_INVALID = "AUTH_003"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_004"
    AUTH_USER_INACTIVE = "AUTH_005"
    AUTH_NO_TENANT = "AUTH_006"

    # Documents
    DOC_NOT_FOUND = "DOC_001"
    DOC_UPLOAD_FAILED = "DOC_002"
    DOC_MIME_REJECTED = "DOC_003"
    DOC_TOO_LARGE = "DOC_004"
    DOC_EMPTY_FILE = "DOC_005"
    DOC_DUPLICATE_SLUG = "DOC_010"
    DOC_DUPLICATE_VERSION = "DOC_011"
    DOC_PROTECTED_KIND = "DOC_012"
    DOC_INVALID_OWNER = "DOC_013"
    DOC_TEMPLATE_NOT_FOUND = "DOC_014"

    # Risks
    RISK_INVALID_INPUT = "RISK_001"
    RISK_NOT_FOUND = "RISK_002"
    RISK_STATUS_TRANSITION = "RISK_003"
    RISK_ASSESSMENT_NOT_FOUND = "RISK_004"
    RISK_MATRIX_READ_ONLY = "RISK_005"
    RISK_LINK_TARGET_NOT_FOUND = "RISK_006"

    # Scheduling
    SCHED_INVALID_INTERVAL = "SCHED_001"

    # Storage
    STORAGE_FAILED = "STO_001"
    STORAGE_KEY_INVALID = "STO_002"

    # Tenants
    TENANT_MEMBER_EXISTS = "TEN_001"

    # Audit
    AUDIT_CHAIN_BROKEN = "AUD_001"

    # Generic
    VALIDATION_ERROR = "GEN_001"
    INTERNAL_ERROR = "GEN_002"
    NOT_FOUND = "GEN_003"
    RATE_LIMITED = "GEN_004"
    REVISION_CONFLICT = "GEN_005"


class AppError(Exception):
    """Base class for all application errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int = 500,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "detail": self.detail,
            },
        }


# ── Typed convenience subclasses ──────────────────────────────────────── #


class NotFoundError(AppError):
    """
    Raised for missing resources and for resources outside the caller's
    tenant or visibility. The two cases are deliberately indistinguishable.
    """

    def __init__(
        self, entity: str, entity_id: str | None = None, code: ErrorCode = ErrorCode.NOT_FOUND
    ) -> None:
        detail = {"entity": entity}
        if entity_id:
            detail["id"] = entity_id
        super().__init__(
            code=code,
            message=f"{entity} not found",
            http_status=404,
            detail=detail,
        )


class AuthError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "No access", detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            code=ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
            message=message,
            http_status=403,
            detail=detail,
        )


class ValidationError(AppError):
    def __init__(
        self,
        message: str,
        detail: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            http_status=422,
            detail=detail,
        )


class InvalidRiskInput(ValidationError):
    """Likelihood or consequence outside the 1..5 scale."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(
            f"{field} must be an integer between 1 and 5",
            detail={"field": field, "value": repr(value)},
            code=ErrorCode.RISK_INVALID_INPUT,
        )


class InvalidReviewInterval(ValidationError):
    def __init__(self, value: object) -> None:
        super().__init__(
            "Review interval must be a positive whole number of months",
            detail={"field": "review_interval_months", "value": repr(value)},
            code=ErrorCode.SCHED_INVALID_INTERVAL,
        )


class InvalidOwnerError(ValidationError):
    def __init__(self, owner_id: str) -> None:
        super().__init__(
            "Owner must be a member of this tenant",
            detail={"field": "owner_id", "value": owner_id},
            code=ErrorCode.DOC_INVALID_OWNER,
        )


class ConflictError(AppError):
    def __init__(
        self, code: ErrorCode, message: str, detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(code=code, message=message, http_status=409, detail=detail)


class DuplicateSlugError(ConflictError):
    """A document with the same slug exists; caller should upload a new version instead."""

    def __init__(self, title: str, slug: str, existing_document_id: str) -> None:
        super().__init__(
            ErrorCode.DOC_DUPLICATE_SLUG,
            f'Document "{title}" already exists. Upload a new version instead.',
            detail={"slug": slug, "existing_document_id": existing_document_id},
        )
        self.existing_document_id = existing_document_id


class DuplicateVersionError(ConflictError):
    def __init__(self, document_id: str, version: str) -> None:
        super().__init__(
            ErrorCode.DOC_DUPLICATE_VERSION,
            f"Version {version} already exists. Use a new version label.",
            detail={"document_id": document_id, "version": version},
        )


class ProtectedKindError(ConflictError):
    def __init__(
        self, document_id: str, kind: str, message: str = "Legal documents cannot be deleted"
    ) -> None:
        super().__init__(
            ErrorCode.DOC_PROTECTED_KIND,
            message,
            detail={"document_id": document_id, "kind": kind},
        )


class RevisionConflictError(ConflictError):
    def __init__(self, entity: str, entity_id: str, expected: int, actual: int) -> None:
        super().__init__(
            ErrorCode.REVISION_CONFLICT,
            f"{entity} was modified by someone else. Reload and try again.",
            detail={
                "entity": entity,
                "id": entity_id,
                "expected_revision": expected,
                "current_revision": actual,
            },
        )


class StatusTransitionError(ConflictError):
    def __init__(self, current: str, target: str, policy: str) -> None:
        super().__init__(
            ErrorCode.RISK_STATUS_TRANSITION,
            f"Risk status cannot change from {current} to {target}",
            detail={"current": current, "target": target, "policy": policy},
        )


class StorageError(AppError):
    def __init__(self, message: str = "File storage is unavailable", key: str | None = None) -> None:
        super().__init__(
            code=ErrorCode.STORAGE_FAILED,
            message=message,
            http_status=502,
            detail={"key": key} if key else None,
        )


class InternalError(AppError):
    def __init__(self, operation: str) -> None:
        super().__init__(
            code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected internal error occurred.",
            http_status=500,
            detail={"operation": operation},
        )
