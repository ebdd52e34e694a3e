"""
Per-request access log and client address lookup.
"""

import logging
import time

from fastapi import Request

from logging_config import who

logger = logging.getLogger("vaults.access")


def get_client_ip(request: Request) -> str:
    cf = request.headers.get("CF-Connecting-IP")
    if cf:
        return cf
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def client_tag(request: Request) -> str:
    return who(get_client_ip(request), getattr(request.state, "username", None))


async def access_log_middleware(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"{client_tag(request)} [{duration}ms] {request.method} "
            f"{response.status_code} {request.url.path}"
            + (f"?{request.url.query}" if request.url.query else "")
        )
    return response
