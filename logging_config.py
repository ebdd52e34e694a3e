import logging
import sys
from pathlib import Path
from typing import Optional


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """Configure root logging once for the server process."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path / "app.log", encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # the access middleware already logs every API request
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger = logging.getLogger("vaults")
    logger.info("Logging configured")
    return logger


def who(ip: Optional[str] = None, username: Optional[str] = None) -> str:
    """Identity tag used in log lines: [ip as user], [ip], [user] or [SYSTEM]."""
    if ip and username:
        return f"[{ip} as {username}]"
    if username:
        return f"[{username}]"
    return f"[{ip or 'SYSTEM'}]"
