"""
paths.py — resolves caller-supplied vault paths and keeps them inside the vault root.
"""

import os
import posixpath
from dataclasses import dataclass
from typing import Optional

from errors import invalid_path


@dataclass(frozen=True)
class ResolvedPath:
    rel: str   # normalized, always starts with "/"
    abs: str   # filesystem path under the canonical vault root

    @property
    def is_root(self) -> bool:
        return self.rel == "/"

    @property
    def name(self) -> str:
        return posixpath.basename(self.rel)


def normalize_rel(dirty: Optional[str]) -> str:
    # lstrip avoids posix normpath keeping a leading "//"
    return posixpath.normpath("/" + (dirty or "").lstrip("/"))


def is_within(root: str, candidate: str) -> bool:
    return candidate == root or candidate.startswith(root + os.sep)


def ensure_within(vault_root: str, abs_path: str) -> str:
    """Re-check containment right before touching the filesystem."""
    root = os.path.realpath(vault_root)
    if not is_within(root, os.path.realpath(abs_path)):
        raise invalid_path()
    return abs_path


def resolve_path(vault_root: str, dirty: Optional[str]) -> ResolvedPath:
    """
    Map a user path onto the vault. The lexical form is joined onto the
    canonical root; the canonical form of the result (symlinks resolved) must
    still be the root or a descendant of it.
    """
    if dirty is not None and "\x00" in dirty:
        raise invalid_path()
    rel = normalize_rel(dirty)
    root = os.path.realpath(vault_root)
    abs_path = root if rel == "/" else os.path.join(root, rel.lstrip("/"))
    if not is_within(root, os.path.realpath(abs_path)):
        raise invalid_path()
    return ResolvedPath(rel=rel, abs=abs_path)


def rel_from_abs(vault_root: str, abs_path: str) -> str:
    root = os.path.realpath(vault_root)
    return normalize_rel(os.path.relpath(abs_path, root).replace(os.sep, "/"))
