# auth_routes.py

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.concurrency import run_in_threadpool

import schemas
from audit import client_tag, get_client_ip
from auth import Identity, require_auth
from config import AppConfig, get_config
from errors import AuthError
from rate_limit import LoginRateLimiter, get_rate_limiter
from security import find_user
from token_store import TokenStore, get_store
from vaults import VaultRegistry, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Auth"])


# ─── LOGIN ────────────────────────────────────────────

@router.post("/auth/login", response_model=schemas.TokenOut)
async def login(
    request: Request,
    credentials: Optional[schemas.LoginRequest] = Body(None),
    config: AppConfig = Depends(get_config),
    limiter: LoginRateLimiter = Depends(get_rate_limiter),
    store: TokenStore = Depends(get_store),
):
    result = limiter.hit(get_client_ip(request))
    if not result.allowed:
        logger.warning(f"{client_tag(request)} Too many login attempts")
        raise AuthError("rate_limited", "Too many login attempts, try again later", status_code=429)

    if credentials is None or not credentials.username or not credentials.password:
        raise AuthError("missing_credentials", "Username and password are required")

    # bcrypt verification blocks; run it off the event loop
    username = await run_in_threadpool(
        find_user, config.users, credentials.username, credentials.password
    )
    if username is None:
        logger.warning(f"{client_tag(request)} Failed login for {credentials.username}")
        raise AuthError("invalid_credentials", "Invalid username or password")

    token = await run_in_threadpool(store.create_session, username)
    request.state.username = username
    logger.info(f"{client_tag(request)} Logged in")
    return {"success": True, "token": token}


# ─── SESSION ──────────────────────────────────────────

@router.post("/auth/logout", response_model=schemas.Ok)
def logout(
    request: Request,
    identity: Identity = Depends(require_auth),
    store: TokenStore = Depends(get_store),
):
    store.delete_session(identity.token)
    logger.info(f"{client_tag(request)} Logged out")
    return {"success": True}


@router.get("/auth", response_model=schemas.SessionOut)
def session_info(identity: Identity = Depends(require_auth)):
    return {"success": True, "session": identity.session.to_dict()}


# ─── VAULTS ───────────────────────────────────────────

@router.get("/vaults", response_model=schemas.VaultListOut, tags=["Vaults"])
async def list_vaults(
    identity: Identity = Depends(require_auth),
    registry: VaultRegistry = Depends(get_registry),
):
    vaults = [await registry.describe(v) for v in registry.vaults_for(identity.username)]
    return {"success": True, "vaults": vaults}
