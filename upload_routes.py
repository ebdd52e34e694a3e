# upload_routes.py

from fastapi import APIRouter, Depends, Request

import schemas
from audit import client_tag
from auth import Identity, require_auth
from config import AppConfig, VaultConfig, get_config
from errors import RequestError
from paths import ResolvedPath
from uploads import UploadPipeline, check_chunk_size, get_uploads
from vaults import require_vault, resolve_query_path

router = APIRouter(prefix="/api/files/upload", tags=["Resumable Upload"])

OCTET_STREAM = "application/octet-stream"


async def read_chunk_body(request: Request, limit: int) -> bytes:
    """Read the raw body, refusing anything over limit before buffering it."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit():
        check_chunk_size(int(declared), limit)
    body = bytearray()
    async for part in request.stream():
        body.extend(part)
        check_chunk_size(len(body), limit)
    return bytes(body)


# ─── CREATE ───────────────────────────────────────────

@router.post("/create", response_model=schemas.UploadCreateOut)
async def create_upload(
    identity: Identity = Depends(require_auth),
    vault: VaultConfig = Depends(require_vault),
    dest: ResolvedPath = Depends(resolve_query_path),
    params: schemas.UploadCreateParams = Depends(schemas.upload_create_params),
    uploads: UploadPipeline = Depends(get_uploads),
):
    token = await uploads.create(identity.username, vault, dest, params.size, params.overwrite)
    return {"success": True, "token": token, "overwrite": params.overwrite}


# ─── CHUNK ────────────────────────────────────────────

@router.post("", response_model=schemas.Ok)
async def upload_chunk(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    token: str = Depends(schemas.required_token),
    uploads: UploadPipeline = Depends(get_uploads),
    config: AppConfig = Depends(get_config),
):
    await uploads.lookup(token, vault)
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type != OCTET_STREAM:
        raise RequestError(
            "invalid_content_type", f"Invalid content type, expected {OCTET_STREAM}"
        )
    data = await read_chunk_body(request, config.server.max_chunk_bytes)
    if not data:
        raise RequestError("no_data", "No data provided in the request body")
    params = schemas.ChunkParams(token=token, offset=schemas.parse_offset(request.query_params.get("offset")))

    await uploads.write_chunk(params.token, vault, params.offset, data, who=client_tag(request))
    return {"success": True}


# ─── FINALIZE ─────────────────────────────────────────

@router.post("/finalize", response_model=schemas.FinalizeOut)
async def finalize_upload(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    params: schemas.FinalizeParams = Depends(schemas.finalize_params),
    uploads: UploadPipeline = Depends(get_uploads),
):
    path = await uploads.finalize(params.token, vault, params.overwrite, who=client_tag(request))
    return {"success": True, "path": path, "overwrite": params.overwrite}


# ─── CANCEL ───────────────────────────────────────────

@router.post("/cancel", response_model=schemas.Ok)
async def cancel_upload(
    request: Request,
    identity: Identity = Depends(require_auth),
    token: str = Depends(schemas.required_token),
    uploads: UploadPipeline = Depends(get_uploads),
):
    await uploads.cancel(token, who=client_tag(request))
    return {"success": True}
