"""
storage.py — async filesystem primitives shared by the file, upload and download pipelines.

aiofiles covers open/stat/rename/remove; the shutil helpers it lacks run via
asyncio.to_thread so the event loop never blocks on disk.
"""

import asyncio
import logging
import os
import shutil
import stat
from typing import List, Optional, Tuple

import aiofiles.os

logger = logging.getLogger(__name__)

ZERO_STATS = {
    "storage_bytes_total": 0,
    "storage_bytes_available": 0,
    "storage_bytes_used": 0,
}


async def lstat_or_none(path: str) -> Optional[os.stat_result]:
    """Stat without following a final symlink; None when nothing is there."""
    try:
        return await aiofiles.os.stat(path, follow_symlinks=False)
    except (FileNotFoundError, NotADirectoryError):
        return None


async def stat_or_none(path: str) -> Optional[os.stat_result]:
    try:
        return await aiofiles.os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None


async def exists(path: str) -> bool:
    return await lstat_or_none(path) is not None


async def is_dir(path: str) -> bool:
    """True for a real directory; a symlink is treated as a plain entry."""
    st = await lstat_or_none(path)
    return st is not None and stat.S_ISDIR(st.st_mode)


async def remove(path: str) -> None:
    """Remove a file, link or directory tree."""
    if await is_dir(path):
        await asyncio.to_thread(shutil.rmtree, path)
    else:
        await aiofiles.os.remove(path)


async def remove_quietly(path: str) -> None:
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")


async def makedirs(path: str) -> None:
    await aiofiles.os.makedirs(path, exist_ok=True)


async def disk_stats(path: str) -> dict:
    """Live free/used figures for the filesystem holding path; zeros when unreadable."""
    try:
        usage = await asyncio.to_thread(shutil.disk_usage, path)
    except OSError as e:
        logger.warning(f"Disk usage unavailable for {path}: {e}")
        return dict(ZERO_STATS)
    return {
        "storage_bytes_total": usage.total,
        "storage_bytes_available": usage.free,
        "storage_bytes_used": usage.total - usage.free,
    }


async def copy_entry(src: str, dest: str) -> None:
    # links are copied as links so a copy never pulls in data from outside the vault
    await asyncio.to_thread(shutil.copy2, src, dest, follow_symlinks=False)


async def copy_tree(src: str, dest: str) -> int:
    """
    Copy a file or directory tree one entry at a time using an explicit
    worklist of (src, dest) directory pairs. Not atomic: a failure leaves
    whatever was already copied. Returns the number of entries copied.
    """
    if not await is_dir(src):
        await copy_entry(src, dest)
        return 1

    copied = 0
    pending: List[Tuple[str, str]] = [(src, dest)]
    while pending:
        src_dir, dest_dir = pending.pop()
        await makedirs(dest_dir)
        for name in sorted(await aiofiles.os.listdir(src_dir)):
            src_entry = os.path.join(src_dir, name)
            dest_entry = os.path.join(dest_dir, name)
            if await is_dir(src_entry):
                pending.append((src_entry, dest_entry))
            else:
                await copy_entry(src_entry, dest_entry)
                copied += 1
    return copied
