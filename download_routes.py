# download_routes.py

import os
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import FileResponse, StreamingResponse

import schemas
from audit import client_tag
from auth import Identity, require_auth
from config import VaultConfig
from downloads import DownloadPipeline, get_downloads
from vaults import require_vault

router = APIRouter(prefix="/api/files/download", tags=["Downloads"])
link_router = APIRouter(prefix="/dl", tags=["Downloads"])


# ─── CREATE LINK ──────────────────────────────────────

@router.post("/create", response_model=schemas.TokenOut)
def create_download(
    identity: Identity = Depends(require_auth),
    vault: VaultConfig = Depends(require_vault),
    downloads: DownloadPipeline = Depends(get_downloads),
):
    token = downloads.create(identity.username, vault)
    return {"success": True, "token": token}


# ─── ADD FILES ────────────────────────────────────────

@router.post("/add", response_model=schemas.Ok)
async def add_download_files(
    vault: VaultConfig = Depends(require_vault),
    token: Optional[str] = Query(None),
    body: Optional[dict] = Body(None),
    downloads: DownloadPipeline = Depends(get_downloads),
):
    # the body is loosely typed so a bad "paths" value maps to no_paths / invalid_path
    paths = body.get("paths") if isinstance(body, dict) else None
    await downloads.add_files(token, vault, paths)
    return {"success": True}


# ─── RESOLVE URL ──────────────────────────────────────

@router.get("", response_model=schemas.UrlOut)
async def resolve_download_url(
    token: Optional[str] = Query(None),
    downloads: DownloadPipeline = Depends(get_downloads),
):
    url = await downloads.resolve_url(token)
    return {"success": True, "url": url}


# ─── SERVE ────────────────────────────────────────────

async def _serve(request: Request, token: str, downloads: DownloadPipeline):
    download, vault = await downloads.open(token)
    single_file, paths, zip_name = await downloads.plan(download, vault)

    if single_file is not None:
        return FileResponse(single_file, filename=os.path.basename(single_file))

    stream = downloads.stream_zip(
        vault,
        paths,
        is_disconnected=request.is_disconnected,
        who=client_tag(request),
        label=token,
    )
    return StreamingResponse(
        stream,
        media_type="application/zip",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(zip_name)}"
        },
    )


@link_router.get("/{token}")
async def download(
    request: Request,
    token: str,
    downloads: DownloadPipeline = Depends(get_downloads),
):
    return await _serve(request, token, downloads)


@link_router.get("/{token}/{filename}")
async def download_named(
    request: Request,
    token: str,
    filename: str,
    downloads: DownloadPipeline = Depends(get_downloads),
):
    # the trailing name only makes the link readable; the token decides the content
    return await _serve(request, token, downloads)
