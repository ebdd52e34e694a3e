"""
uploads.py — chunked, resumable uploads.

    create ──► write chunk (any order, repeatable) ──► finalize
       │                      │                          │
       └──────── cancel ◄─────┴──── reaper (stale) ◄─────┘

Chunks land at explicit offsets in a sidecar temp file next to the
destination (<dest>.<token>). Finalize checks the byte count and publishes
the temp file with a single rename, so readers never see a partial file.
Any I/O failure while writing or publishing discards the temp file and the
upload record.
"""

import errno
import logging
import os
from typing import Optional

import aiofiles
import aiofiles.os
from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError

import models
import storage
from config import VaultConfig
from errors import (
    CapacityError,
    ConflictError,
    NotFoundError,
    RequestError,
    StorageIOError,
    VaultError,
)
from paths import ResolvedPath, ensure_within, rel_from_abs
from token_store import TokenStore

logger = logging.getLogger(__name__)


def _open_rw_create(path, flags):
    # "r+b" semantics without failing on a missing file and without truncating
    return os.open(path, flags | os.O_CREAT, 0o644)


def _invalid_token() -> NotFoundError:
    return NotFoundError("invalid_token", "Invalid or expired upload token")


class UploadPipeline:

    def __init__(self, store: TokenStore):
        self.store = store

    async def _check_destination(self, dest_abs: str, overwrite: bool, exists_message: str) -> None:
        if not await storage.exists(dest_abs):
            return
        if await storage.is_dir(dest_abs):
            raise ConflictError("dest_is_directory", "Cannot overwrite a directory")
        if not overwrite:
            raise ConflictError("exists", exists_message)

    async def lookup(self, token: Optional[str], vault: VaultConfig) -> models.Upload:
        upload = await run_in_threadpool(self.store.get_upload, token)
        if upload is None or upload.vault != vault.name:
            raise _invalid_token()
        # stored paths must still sit inside this vault
        ensure_within(vault.path, upload.path_temp)
        ensure_within(vault.path, upload.path_dest)
        return upload

    async def _abort(self, upload: models.Upload) -> None:
        await storage.remove_quietly(upload.path_temp)
        await run_in_threadpool(self.store.delete_upload, upload.token)

    # ─── Create ────────────────────────────────────────────

    async def create(
        self,
        username: str,
        vault: VaultConfig,
        dest: ResolvedPath,
        size: Optional[int],
        overwrite: bool,
    ) -> str:
        ensure_within(vault.path, dest.abs)
        await self._check_destination(dest.abs, overwrite, "A file already exists at the requested path")
        if not size or size <= 0:
            raise RequestError("invalid_size", "A valid file size (in bytes) is required")

        # advisory only: nothing is reserved, concurrent uploads may overcommit
        stats = await storage.disk_stats(vault.path)
        if stats["storage_bytes_available"] < size:
            raise CapacityError("insufficient_space", "Not enough space in the vault for this upload")

        upload = await run_in_threadpool(self.store.create_upload, username, vault.name, dest.abs, size)
        logger.debug(f"Upload {upload.token} created for {dest.rel} ({size} bytes) in vault {vault.name}")
        return upload.token

    # ─── Write chunk ───────────────────────────────────────

    async def write_chunk(
        self,
        token: str,
        vault: VaultConfig,
        offset: int,
        data: bytes,
        who: str = "",
    ) -> None:
        upload = await self.lookup(token, vault)
        if not data:
            raise RequestError("no_data", "No data provided in the request body")
        if offset < 0 or offset + len(data) > upload.size:
            raise RequestError("invalid_offset", "Missing or invalid offset query parameter")

        try:
            await storage.makedirs(os.path.dirname(upload.path_temp))
            async with aiofiles.open(upload.path_temp, "r+b", opener=_open_rw_create) as f:
                await f.seek(offset)
                await f.write(data)
        except OSError as e:
            logger.error(f"{who} Error during file upload chunk for {token}: {e}")
            await self._abort(upload)
            raise StorageIOError("upload_failed", "Failed to upload file chunk. Upload canceled.") from e

    # ─── Finalize ──────────────────────────────────────────

    async def _publish(self, temp: str, dest: str, overwrite: bool) -> None:
        if overwrite:
            await aiofiles.os.replace(temp, dest)
            return
        # link fails if dest appeared since the checks, so nothing is replaced
        try:
            await aiofiles.os.link(temp, dest)
        except FileExistsError:
            raise ConflictError("exists", "A file already exists at the destination path")
        except OSError as e:
            if e.errno not in (errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EXDEV, errno.EMLINK):
                raise
            if await storage.exists(dest):
                raise ConflictError("exists", "A file already exists at the destination path")
            await aiofiles.os.rename(temp, dest)
            return
        await aiofiles.os.remove(temp)

    async def finalize(self, token: str, vault: VaultConfig, overwrite: bool, who: str = "") -> str:
        """Publish a complete upload; returns the vault-relative destination path."""
        upload = await self.lookup(token, vault)

        try:
            st = await storage.stat_or_none(upload.path_temp)
            if st is None:
                raise RequestError("no_data", "No data has been uploaded")
            if st.st_size != upload.size:
                raise ConflictError("incomplete_upload", "Uploaded file is incomplete or missing chunks")
            await self._check_destination(
                upload.path_dest, overwrite, "A file already exists at the destination path"
            )
        except VaultError:
            # finalized or cancelled by someone else while we were checking
            if await run_in_threadpool(self.store.get_upload, upload.token) is None:
                raise _invalid_token()
            raise

        # whoever removes the record owns the publish; a concurrent finalize loses here
        if not await run_in_threadpool(self.store.delete_upload, upload.token):
            raise _invalid_token()

        try:
            await storage.makedirs(os.path.dirname(upload.path_dest))
            await self._publish(upload.path_temp, upload.path_dest, overwrite)
        except ConflictError:
            await storage.remove_quietly(upload.path_temp)
            raise
        except OSError as e:
            logger.error(f"{who} Error finalizing file upload for {token}: {e}")
            await storage.remove_quietly(upload.path_temp)
            raise StorageIOError(
                "finalize_failed", "Failed to finalize file upload. Upload canceled."
            ) from e

        return rel_from_abs(vault.path, upload.path_dest)

    # ─── Cancel ────────────────────────────────────────────

    async def cancel(self, token: str, who: str = "") -> None:
        upload = await run_in_threadpool(self.store.get_upload, token)
        if upload is None:
            raise _invalid_token()
        try:
            await self._abort(upload)
        except SQLAlchemyError as e:
            logger.error(f"{who} Error cancelling upload for {token}: {e}")
            raise StorageIOError("cancel_failed", "Failed to cancel upload") from e


def get_uploads(request: Request) -> UploadPipeline:
    return request.app.state.uploads


def check_chunk_size(length: int, limit: int) -> None:
    if length > limit:
        raise CapacityError("payload_too_large", f"Chunk exceeds the {limit} byte limit", status_code=413)
