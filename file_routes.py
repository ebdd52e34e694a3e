# file_routes.py

from fastapi import APIRouter, Depends, Request

import file_service
import schemas
from audit import client_tag
from config import VaultConfig
from paths import ResolvedPath
from vaults import require_vault, resolve_query_path

router = APIRouter(prefix="/api/files", tags=["Files"])


@router.get("/list", response_model=schemas.ListOut)
async def list_files(
    vault: VaultConfig = Depends(require_vault),
    target: ResolvedPath = Depends(resolve_query_path),
):
    listing = await file_service.list_directory(vault, target)
    return {"success": True, **listing}


@router.post("/delete", response_model=schemas.PathOut)
async def delete_file(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    target: ResolvedPath = Depends(resolve_query_path),
):
    path = await file_service.delete_path(vault, target, who=client_tag(request))
    return {"success": True, "path": path}


@router.post("/move", response_model=schemas.MoveOut)
async def move_file(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    params: schemas.TransferParams = Depends(schemas.transfer_params),
):
    src, dest = await file_service.transfer(
        file_service.MOVE, vault, params.path_src, params.path_dest, params.overwrite,
        who=client_tag(request),
    )
    return {"success": True, "oldPath": src.rel, "newPath": dest.rel, "overwrite": params.overwrite}


@router.post("/copy", response_model=schemas.CopyOut)
async def copy_file(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    params: schemas.TransferParams = Depends(schemas.transfer_params),
):
    src, dest = await file_service.transfer(
        file_service.COPY, vault, params.path_src, params.path_dest, params.overwrite,
        who=client_tag(request),
    )
    return {"success": True, "srcPath": src.rel, "destPath": dest.rel, "overwrite": params.overwrite}


@router.post("/folder/create", response_model=schemas.PathOut)
async def create_folder(
    request: Request,
    vault: VaultConfig = Depends(require_vault),
    target: ResolvedPath = Depends(resolve_query_path),
):
    path = await file_service.create_folder(vault, target, who=client_tag(request))
    return {"success": True, "path": path}
