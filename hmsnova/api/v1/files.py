"""Serves blobs from local storage behind signed download tokens."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from jose import JWTError
from sqlalchemy import select

from hmsnova.api.deps import DbSession, get_storage
from hmsnova.core.errors import AuthError, ErrorCode, NotFoundError
from hmsnova.core.security import decode_token
from hmsnova.db.models.document import DocumentVersion
from hmsnova.services.storage.backend import LocalStorage, Storage

_log = structlog.get_logger(__name__)
router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{token}", summary="Download a file by signed token")
async def download_file(
    token: str,
    db: DbSession,
    storage: Annotated[Storage, Depends(get_storage)],
) -> Response:
    """
    The token itself is the credential; no bearer header is needed.

    Only available with the local backend. S3 URLs point at the bucket.
    """
    if not isinstance(storage, LocalStorage):
        raise NotFoundError("File")

    try:
        payload = decode_token(token)
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_EXPIRED, "Download link invalid or expired") from exc
    if payload.get("type") != "download" or not isinstance(payload.get("sub"), str):
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Not a download token")

    key = str(payload["sub"])
    data = await storage.get(key)
    mime_type = await db.scalar(
        select(DocumentVersion.mime_type).where(DocumentVersion.file_key == key).limit(1)
    )
    _log.info("file_downloaded", key=key, size_bytes=len(data))
    return Response(
        content=data,
        media_type=mime_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{key.rsplit("/", 1)[-1]}"'},
    )
