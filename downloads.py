"""
downloads.py — shareable download links and on-the-fly zip streaming.

A link is a short token bound to one vault plus a set of vault-relative
paths. Serving a link re-resolves every stored path; a single regular file is
sent as-is, anything else becomes a zip built while it streams.
"""

import io
import logging
import os
import posixpath
import stat
import zipfile
from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple
from urllib.parse import quote

import aiofiles
import aiofiles.os
from fastapi import Request
from fastapi.concurrency import run_in_threadpool

import storage
from config import VaultConfig
from errors import NotFoundError, PathError, RequestError
from paths import ResolvedPath, resolve_path
from token_store import DownloadRecord, TokenStore
from vaults import VaultRegistry

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 64 * 1024
MULTI_FILE_NAME = "files.zip"


def _invalid_token() -> NotFoundError:
    return NotFoundError("invalid_token", "Invalid or expired download token")


def _gone() -> NotFoundError:
    return NotFoundError("not_found", "The file this download link points to no longer exists")


def _link_target(vault: VaultConfig, rel: str) -> ResolvedPath:
    # a stored path that now escapes the vault counts as missing
    try:
        return resolve_path(vault.path, rel)
    except PathError:
        raise _gone()


class _ZipSink(io.RawIOBase):
    """Unseekable write target for ZipFile; the stream drains it after each block."""

    def __init__(self):
        self._buffer = bytearray()

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._buffer.extend(b)
        return len(b)

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


class DownloadPipeline:

    def __init__(self, store: TokenStore, registry: VaultRegistry):
        self.store = store
        self.registry = registry

    def create(self, username: str, vault: VaultConfig) -> str:
        return self.store.create_download(username, vault.name)

    async def add_files(self, token: Optional[str], vault: VaultConfig, paths: Optional[List[str]]) -> None:
        download = await run_in_threadpool(self.store.get_download, token)
        if download is None or download.vault != vault.name:
            raise _invalid_token()
        if not isinstance(paths, list) or not paths:
            raise RequestError("no_paths", "No paths provided")

        clean = []
        for dirty in paths:
            if not isinstance(dirty, str):
                raise PathError("invalid_path", "Invalid or unsafe path")
            resolved = resolve_path(vault.path, dirty)
            if not await storage.exists(resolved.abs):
                raise NotFoundError("not_found", f"File not found in vault {vault.name}: {dirty}")
            clean.append(resolved.rel)
        await run_in_threadpool(self.store.add_download_files, download.token, clean)

    async def open(self, token: Optional[str]) -> Tuple[DownloadRecord, VaultConfig]:
        """Validate a token for serving: it must exist, have files, and its vault must still exist."""
        if not token:
            raise RequestError("missing_token", "Missing download token")
        download = await run_in_threadpool(self.store.get_download, token)
        if download is None:
            raise _invalid_token()
        if not download.paths:
            raise NotFoundError("no_files", "No files associated with this download")
        vault = self.registry.get(download.vault)
        if vault is None:
            raise NotFoundError(
                "vault_missing", "The vault this download was created from no longer exists"
            )
        return download, vault

    async def resolve_url(self, token: Optional[str]) -> str:
        download, vault = await self.open(token)
        url = f"/dl/{download.token}"
        if len(download.paths) > 1:
            return f"{url}/{MULTI_FILE_NAME}"

        resolved = _link_target(vault, download.paths[0])
        st = await storage.stat_or_none(resolved.abs)
        if st is None:
            raise _gone()
        name = resolved.name or vault.name
        if stat.S_ISDIR(st.st_mode):
            name = f"{name}.zip"
        return f"{url}/{quote(name)}"

    async def plan(self, download: DownloadRecord, vault: VaultConfig) -> Tuple[Optional[str], List[str], str]:
        """
        Decide how to serve a link. Returns (single_file_abs, zip_paths, zip_name):
        single_file_abs is set when the link is one regular file.
        """
        paths = list(download.paths)
        name = ""
        if len(paths) == 1:
            resolved = _link_target(vault, paths[0])
            st = await storage.stat_or_none(resolved.abs)
            if st is None:
                raise _gone()
            if not stat.S_ISDIR(st.st_mode):
                return resolved.abs, [], ""
            name = resolved.name
            paths = [
                posixpath.join(resolved.rel, child)
                for child in sorted(await aiofiles.os.listdir(resolved.abs))
            ]
        elif paths:
            name = "files"
        return None, paths, f"{name or vault.name}.zip"

    async def stream_zip(
        self,
        vault: VaultConfig,
        paths: List[str],
        is_disconnected: Callable[[], Awaitable[bool]],
        who: str = "",
        label: str = "",
    ) -> AsyncIterator[bytes]:
        """
        Yield a zip archive of paths block by block. Entries are named by base
        name; directories keep their inner layout. Missing or unsafe entries
        are skipped with a warning.
        """
        logger.info(f"{who} Starting zip download for {len(paths)} items from vault {vault.name}")
        sink = _ZipSink()
        finished = False
        try:
            with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for rel in paths:
                    try:
                        resolved = resolve_path(vault.path, rel)
                    except PathError:
                        logger.warning(f"{who} Invalid or unsafe path during zip creation, skipping: {rel}")
                        continue
                    if not await storage.exists(resolved.abs):
                        logger.warning(f"{who} File not found during zip creation, skipping: {resolved.abs}")
                        continue

                    arcname = resolved.name or vault.name
                    # aclosing: the open entry must be closed before the ZipFile is
                    async with aclosing(self._add_entry(zf, sink, resolved.abs, arcname, who)) as blocks:
                        async for block in blocks:
                            if block:
                                yield block
                            if await is_disconnected():
                                return
            # closing the ZipFile wrote the central directory
            yield sink.drain()
            finished = True
            logger.info(f"{who} Finished zip download {label}")
        finally:
            if not finished:
                logger.info(f"{who} Zip download {label} stopped early (client disconnected or error)")

    async def _add_entry(
        self,
        zf: zipfile.ZipFile,
        sink: _ZipSink,
        root_abs: str,
        root_name: str,
        who: str,
    ) -> AsyncIterator[bytes]:
        pending: List[Tuple[str, str]] = [(root_abs, root_name)]
        while pending:
            abs_path, arcname = pending.pop()
            st = await storage.lstat_or_none(abs_path)
            if st is None:
                logger.warning(f"{who} File vanished during zip creation, skipping: {abs_path}")
                continue
            if stat.S_ISDIR(st.st_mode):
                zf.writestr(zipfile.ZipInfo.from_file(abs_path, arcname, strict_timestamps=False), b"")
                children = sorted(await aiofiles.os.listdir(abs_path), reverse=True)
                for child in children:
                    pending.append((os.path.join(abs_path, child), f"{arcname}/{child}"))
                yield sink.drain()
                continue
            if not stat.S_ISREG(st.st_mode):
                # links and special files are left out of archives
                logger.warning(f"{who} Skipping non-regular file during zip creation: {abs_path}")
                continue

            info = zipfile.ZipInfo.from_file(abs_path, arcname, strict_timestamps=False)
            info.compress_type = zipfile.ZIP_DEFLATED
            try:
                async with aiofiles.open(abs_path, "rb") as src:
                    with zf.open(info, "w") as entry:
                        while True:
                            block = await src.read(READ_BLOCK_SIZE)
                            if not block:
                                break
                            entry.write(block)
                            yield sink.drain()
            except OSError as e:
                logger.warning(f"{who} Could not read {abs_path} during zip creation, skipping: {e}")
            yield sink.drain()


def get_downloads(request: Request) -> DownloadPipeline:
    return request.app.state.downloads
