import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from audit import access_log_middleware, client_tag
from auth_routes import router as auth_router
from config import DATABASE_URL, HOST, LOG_DIR, LOG_LEVEL, AppConfig, load_config
from database import init_db, make_engine, make_session_factory
from download_routes import link_router as download_link_router
from download_routes import router as download_router
from downloads import DownloadPipeline
from errors import VaultError
from file_routes import router as file_router
from logging_config import setup_logging, who
from rate_limit import LoginRateLimiter
from token_store import TokenStore
from upload_routes import router as upload_router
from uploads import UploadPipeline
from vaults import VaultRegistry

logger = logging.getLogger("vaults")


# ─── Background reaper ────────────────────────────────────────────────────────

async def reap_forever(app: FastAPI) -> None:
    """Sweep expired tokens now and then every reap_interval_seconds."""
    interval = app.state.config.server.reap_interval_seconds
    while True:
        try:
            await app.state.store.reap()
        except (OSError, SQLAlchemyError) as e:
            logger.error(f"{who()} Reaper pass failed: {e}")
        app.state.rate_limiter.cleanup()
        await asyncio.sleep(interval)


def _on_reaper_exit(app: FastAPI):
    def callback(task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.critical(f"{who()} Background reaper crashed, shutting down", exc_info=task.exception())
        app.state.store.close()
        os.kill(os.getpid(), signal.SIGTERM)
    return callback


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(app.state.engine)
    reaper = asyncio.create_task(reap_forever(app))
    reaper.add_done_callback(_on_reaper_exit(app))
    logger.info(f"{who()} Serving {len(app.state.config.vaults)} vaults")
    try:
        yield
    finally:
        reaper.cancel()
        try:
            await reaper
        except asyncio.CancelledError:
            pass
        app.state.store.close()
        logger.info(f"{who()} Token store closed")


# ─── Exception handlers ───────────────────────────────────────────────────────

async def vault_error_handler(request: Request, exc: VaultError):
    headers = None
    if exc.status_code == 429:
        headers = {"Retry-After": str(int(request.app.state.rate_limiter.window_seconds))}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "code": "invalid_request", "message": "Malformed request"},
    )


async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"{client_tag(request)} Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "code": "internal_error", "message": "Internal server error"},
    )


# ─── App factory ──────────────────────────────────────────────────────────────

def create_app(config: Optional[AppConfig] = None, database_url: Optional[str] = None) -> FastAPI:
    """
    Build an app with its own token store, vault registry, pipelines and
    login limiter on app.state. Tables are created when the lifespan starts.
    """
    config = config or load_config()
    engine = make_engine(database_url or DATABASE_URL)
    store = TokenStore(engine, make_session_factory(engine), config.server)
    registry = VaultRegistry(config)

    app = FastAPI(
        title="Vaults API",
        description="Multi-user file storage backed by the host filesystem",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.engine = engine
    app.state.store = store
    app.state.registry = registry
    app.state.uploads = UploadPipeline(store)
    app.state.downloads = DownloadPipeline(store, registry)
    app.state.rate_limiter = LoginRateLimiter(
        max_attempts=config.server.auth_rate_limit_attempts,
        window_seconds=config.server.auth_rate_limit_window_seconds,
    )

    app.middleware("http")(access_log_middleware)
    app.add_exception_handler(VaultError, vault_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(auth_router)
    app.include_router(file_router)
    app.include_router(upload_router)
    app.include_router(download_router)
    app.include_router(download_link_router)
    return app


if __name__ == "__main__":
    setup_logging(LOG_LEVEL, LOG_DIR)
    app = create_app()
    uvicorn.run(app, host=HOST, port=app.state.config.server.port, log_config=None)
