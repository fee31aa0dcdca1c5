"""Unit tests for hmsnova.services.storage.backend."""
import re

import pytest

from hmsnova.config.settings import StorageBackend, get_settings
from hmsnova.core.errors import ErrorCode, StorageError, ValidationError
from hmsnova.core.security import decode_token
from hmsnova.services.storage.backend import LocalStorage, build_storage, generate_file_key

_KEY_PATTERN = re.compile(r"^tenant-1/documents/PLAN/\d{13}-[0-9a-f]{8}-(?P<base>.+)$")


# ─── Key generation ───────────────────────────────────────────────────────────

def test_key_is_tenant_scoped():
    key = generate_file_key("tenant-1", "documents/PLAN", "Beredskapsplan.PDF")
    match = _KEY_PATTERN.match(key)
    assert match is not None
    assert match["base"] == "Beredskapsplan.pdf"


def test_key_sanitises_filename():
    key = generate_file_key("tenant-1", "documents/PLAN", "../../etc/pass wd?.txt")
    match = _KEY_PATTERN.match(key)
    assert match is not None
    assert match["base"] == "pass-wd.txt"


def test_key_without_name_falls_back():
    key = generate_file_key("tenant-1", "documents/PLAN", "")
    assert key.endswith("-file")


def test_keys_do_not_collide():
    keys = {generate_file_key("tenant-1", "documents/PLAN", "a.pdf") for _ in range(20)}
    assert len(keys) == 20


def test_build_storage_defaults_to_local():
    settings = get_settings()
    assert settings.storage_backend == StorageBackend.LOCAL
    assert isinstance(build_storage(settings), LocalStorage)


# ─── LocalStorage ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_upload_then_get(tmp_path):
    storage = LocalStorage(tmp_path)
    await storage.upload("t/documents/PLAN/x.pdf", b"%PDF-1.4", "application/pdf")
    assert await storage.get("t/documents/PLAN/x.pdf") == b"%PDF-1.4"


@pytest.mark.asyncio
async def test_delete_is_idempotent(tmp_path):
    storage = LocalStorage(tmp_path)
    await storage.upload("t/a.txt", b"hello", "text/plain")
    await storage.delete("t/a.txt")
    await storage.delete("t/a.txt")
    with pytest.raises(StorageError):
        await storage.get("t/a.txt")


@pytest.mark.asyncio
async def test_get_missing_raises_storage_error(tmp_path):
    with pytest.raises(StorageError) as exc_info:
        await LocalStorage(tmp_path).get("nope/missing.pdf")
    assert exc_info.value.code == ErrorCode.STORAGE_FAILED
    assert exc_info.value.http_status == 502


@pytest.mark.asyncio
async def test_key_escaping_root_is_rejected(tmp_path):
    storage = LocalStorage(tmp_path / "root")
    with pytest.raises(ValidationError) as exc_info:
        await storage.upload("../outside.txt", b"x", "text/plain")
    assert exc_info.value.code == ErrorCode.STORAGE_KEY_INVALID
    assert not (tmp_path / "outside.txt").exists()


@pytest.mark.asyncio
async def test_get_url_is_signed_download_link(tmp_path):
    storage = LocalStorage(tmp_path)
    url = await storage.get_url("t/documents/PLAN/x.pdf", 300)
    assert url.startswith("/api/v1/files/")
    payload = decode_token(url.rsplit("/", 1)[-1])
    assert payload["sub"] == "t/documents/PLAN/x.pdf"
    assert payload["type"] == "download"
