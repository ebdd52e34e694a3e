"""
file_service.py — plain vault file operations: list, delete, create folder,
and the move/copy engine.

All paths come in as ResolvedPath values already checked by the resolver;
each operation re-checks containment right before the filesystem call.
"""
import logging
import os
import posixpath
import stat
import time

import aiofiles.os

import storage
from config import VaultConfig
from errors import ConflictError, NotFoundError, PathError, StorageIOError
from paths import ResolvedPath, ensure_within, is_within, resolve_path

logger = logging.getLogger(__name__)

MOVE = "move"
COPY = "copy"


async def list_directory(vault: VaultConfig, target: ResolvedPath) -> dict:
    ensure_within(vault.path, target.abs)
    st = await storage.stat_or_none(target.abs)
    if st is None:
        raise NotFoundError("not_found", "No file exists at the requested path")
    if not stat.S_ISDIR(st.st_mode):
        raise ConflictError("not_directory", "The file at the requested path is not a directory")

    files = []
    for name in sorted(await aiofiles.os.listdir(target.abs)):
        entry = await storage.stat_or_none(os.path.join(target.abs, name))
        files.append({
            "name": name,
            "path": posixpath.join(target.rel, name),
            "isDirectory": bool(entry and stat.S_ISDIR(entry.st_mode)),
            "size": entry.st_size if entry else 0,
            "modified": entry.st_mtime * 1000 if entry else time.time() * 1000,
        })
    return {"path": target.rel, "files": files}


async def delete_path(vault: VaultConfig, target: ResolvedPath, who: str = "") -> str:
    if target.is_root:
        raise PathError("root_delete", "The root directory itself cannot be deleted")
    ensure_within(vault.path, target.abs)
    if not await storage.exists(target.abs):
        raise NotFoundError("not_found", "No file exists at the requested path")
    try:
        await storage.remove(target.abs)
    except OSError as e:
        logger.error(f"{who} Failed to delete {target.rel} from vault {vault.name}: {e}")
        raise StorageIOError("delete_failed", "Failed to delete file or directory") from e
    return target.rel


async def create_folder(vault: VaultConfig, target: ResolvedPath, who: str = "") -> str:
    ensure_within(vault.path, target.abs)
    if await storage.exists(target.abs):
        raise ConflictError("exists", "A file or folder already exists at the requested path")
    try:
        await storage.makedirs(target.abs)
    except OSError as e:
        logger.error(f"{who} Error creating folder at {target.rel} in vault {vault.name}: {e}")
        raise StorageIOError("mkdir_failed", "Failed to create folder") from e
    return target.rel


async def transfer(
    action: str,
    vault: VaultConfig,
    path_src: str,
    path_dest: str,
    overwrite: bool,
    who: str = "",
) -> tuple[ResolvedPath, ResolvedPath]:
    """
    Move or copy path_src to path_dest inside one vault.

    Never replaces a directory; replaces a file only when overwrite is set,
    removing it first. Move is a single rename. Copy walks the tree and is
    not rolled back if it fails half way.
    """
    src = resolve_path(vault.path, path_src)
    dest = resolve_path(vault.path, path_dest)

    if src.rel == dest.rel:
        raise ConflictError("same_path", "Source and destination paths are the same")
    if src.is_root or dest.is_root:
        raise PathError("root_modify", "The root directory itself cannot be modified")
    if not await storage.exists(src.abs):
        raise NotFoundError("src_not_found", "Source file does not exist")
    if await storage.is_dir(src.abs) and is_within(src.abs, dest.abs):
        raise ConflictError("dest_inside_src", "Cannot place a folder inside itself")

    dest_stat = await storage.lstat_or_none(dest.abs)
    if dest_stat is not None:
        if stat.S_ISDIR(dest_stat.st_mode):
            raise ConflictError("dest_is_directory", "Cannot overwrite a directory")
        if not overwrite:
            raise ConflictError("dest_exists", "Destination file already exists")

    ensure_within(vault.path, src.abs)
    ensure_within(vault.path, dest.abs)

    try:
        if overwrite and await storage.exists(dest.abs):
            await storage.remove(dest.abs)
        if action == MOVE:
            await aiofiles.os.rename(src.abs, dest.abs)
        else:
            await storage.copy_tree(src.abs, dest.abs)
    except OSError as e:
        logger.error(f"{who} Failed to {action} {src.rel} to {dest.rel} in vault {vault.name}: {e}")
        raise StorageIOError(f"{action}_failed", f"Failed to {action} file: {e}") from e

    return src, dest
