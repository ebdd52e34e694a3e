"""
Request records built from query strings / bodies, and response models.

Query parameters arrive as raw strings; the parsers below turn them into
typed records and raise RequestError with the service's error codes instead
of FastAPI's generic validation errors.
"""

from typing import List, Optional

from fastapi import Query
from pydantic import BaseModel

from errors import RequestError


def parse_flag(value: Optional[str]) -> bool:
    return value == "true"


# ─── Requests ─────────────────────────────────────────────────────────────────

class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TransferParams(BaseModel):
    path_src: str
    path_dest: str
    overwrite: bool = False


class UploadCreateParams(BaseModel):
    path: Optional[str] = None
    size: Optional[int] = None
    overwrite: bool = False


class ChunkParams(BaseModel):
    token: str
    offset: int


class FinalizeParams(BaseModel):
    token: Optional[str] = None
    overwrite: bool = False


def transfer_params(
    path_src: Optional[str] = Query(None),
    path_dest: Optional[str] = Query(None),
    overwrite: Optional[str] = Query(None),
) -> TransferParams:
    if not path_src or not path_dest:
        raise RequestError("missing_path", "Missing path_src or path_dest")
    return TransferParams(path_src=path_src, path_dest=path_dest, overwrite=parse_flag(overwrite))


def upload_create_params(
    path: Optional[str] = Query(None),
    size: Optional[str] = Query(None),
    overwrite: Optional[str] = Query(None),
) -> UploadCreateParams:
    # validated by the pipeline, after the destination checks
    try:
        size_num = int(size)
    except (TypeError, ValueError):
        size_num = None
    return UploadCreateParams(path=path, size=size_num, overwrite=parse_flag(overwrite))


def required_token(token: Optional[str] = Query(None)) -> str:
    if not token:
        raise RequestError("missing_token", "Missing upload token")
    return token


def parse_offset(offset: Optional[str]) -> int:
    try:
        value = int(offset)
    except (TypeError, ValueError):
        value = -1
    if value < 0:
        raise RequestError("invalid_offset", "Missing or invalid offset query parameter")
    return value


def finalize_params(
    token: Optional[str] = Query(None),
    overwrite: Optional[str] = Query(None),
) -> FinalizeParams:
    return FinalizeParams(token=token, overwrite=parse_flag(overwrite))


# ─── Responses ────────────────────────────────────────────────────────────────

class Ok(BaseModel):
    success: bool = True


class TokenOut(Ok):
    token: str


class SessionOut(Ok):
    session: dict


class VaultOut(BaseModel):
    name: str
    users: List[str]
    storage_bytes_total: int
    storage_bytes_available: int
    storage_bytes_used: int


class VaultListOut(Ok):
    vaults: List[VaultOut]


class FileEntry(BaseModel):
    name: str
    path: str
    isDirectory: bool
    size: int
    modified: float


class ListOut(Ok):
    path: str
    files: List[FileEntry]


class PathOut(Ok):
    path: str


class MoveOut(Ok):
    oldPath: str
    newPath: str
    overwrite: bool


class CopyOut(Ok):
    srcPath: str
    destPath: str
    overwrite: bool


class UploadCreateOut(Ok):
    token: str
    overwrite: bool


class FinalizeOut(Ok):
    path: str
    overwrite: bool


class UrlOut(Ok):
    url: str
