"""
token_store.py — persistent sessions, download links and in-flight uploads.

One TokenStore is created per app and handed to handlers through FastAPI
dependencies. Every method runs its own short, blocking transaction; async
callers await them through run_in_threadpool. Records returned are detached
and safe to read after the call.
"""

import logging
import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, List, Optional

from fastapi import Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

import models
import storage
from config import ServerConfig

logger = logging.getLogger(__name__)

SESSION_TOKEN_LENGTH = 32
UPLOAD_TOKEN_LENGTH = 32
DOWNLOAD_TOKEN_LENGTH = 8


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_token(length: int) -> str:
    return secrets.token_hex(length)[:length]


@dataclass
class DownloadRecord:
    token: str
    username: str
    vault: str
    created: datetime
    paths: List[str] = field(default_factory=list)


class TokenStore:

    def __init__(self, engine: Engine, session_factory: sessionmaker, settings: ServerConfig):
        self._engine = engine
        self._session_factory = session_factory
        self.settings = settings

    @contextmanager
    def _db(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self) -> None:
        self._engine.dispose()

    # ─── Sessions ───────────────────────────────────────────

    def create_session(self, username: str) -> str:
        token = new_token(SESSION_TOKEN_LENGTH)
        now = utcnow()
        with self._db() as db:
            db.add(models.UserSession(token=token, username=username, created=now, accessed=now))
            db.commit()
        return token

    def touch_session(self, token: Optional[str]) -> Optional[models.UserSession]:
        """Return the live session and mark it accessed; None if unknown or inactive too long."""
        if not token:
            return None
        now = utcnow()
        cutoff = now - timedelta(days=self.settings.inactive_session_expire_days)
        with self._db() as db:
            session = db.get(models.UserSession, token)
            if session is None:
                return None
            if session.accessed < cutoff:
                db.delete(session)
                db.commit()
                return None
            session.accessed = now
            db.commit()
            return session

    def delete_session(self, token: str) -> None:
        with self._db() as db:
            db.query(models.UserSession).filter(models.UserSession.token == token).delete()
            db.commit()

    # ─── Uploads ────────────────────────────────────────────

    def create_upload(self, username: str, vault: str, dest_path: str, size: int) -> models.Upload:
        token = new_token(UPLOAD_TOKEN_LENGTH)
        upload = models.Upload(
            token=token,
            username=username,
            vault=vault,
            # same directory as the destination, unique per token
            path_temp=f"{dest_path}.{token}",
            path_dest=dest_path,
            size=size,
            created=utcnow(),
        )
        with self._db() as db:
            db.add(upload)
            db.commit()
        return upload

    def get_upload(self, token: Optional[str]) -> Optional[models.Upload]:
        if not token:
            return None
        with self._db() as db:
            return db.get(models.Upload, token)

    def list_uploads(self) -> List[models.Upload]:
        with self._db() as db:
            return db.query(models.Upload).all()

    def delete_upload(self, token: str) -> bool:
        """Delete the upload row. True only for the caller that actually removed it."""
        with self._db() as db:
            removed = db.query(models.Upload).filter(models.Upload.token == token).delete()
            db.commit()
        return removed > 0

    # ─── Downloads ──────────────────────────────────────────

    def create_download(self, username: str, vault: str) -> str:
        token = new_token(DOWNLOAD_TOKEN_LENGTH)
        with self._db() as db:
            db.add(models.Download(token=token, username=username, vault=vault, created=utcnow()))
            db.commit()
        return token

    def add_download_files(self, token: str, paths: Iterable[str]) -> None:
        with self._db() as db:
            for path in dict.fromkeys(paths):
                if db.get(models.DownloadFile, (token, path)) is None:
                    db.add(models.DownloadFile(token=token, path=path))
            try:
                db.commit()
            except IntegrityError:
                # a concurrent add inserted the same pair; treat as already present
                db.rollback()

    def get_download(self, token: Optional[str]) -> Optional[DownloadRecord]:
        if not token:
            return None
        with self._db() as db:
            download = db.get(models.Download, token)
            if download is None:
                return None
            paths = [
                row.path for row in
                db.query(models.DownloadFile)
                .filter(models.DownloadFile.token == token)
                .order_by(models.DownloadFile.path)
            ]
            return DownloadRecord(
                token=download.token,
                username=download.username,
                vault=download.vault,
                created=download.created,
                paths=paths,
            )

    # ─── Reaping ────────────────────────────────────────────

    def reap_sessions(self) -> int:
        cutoff = utcnow() - timedelta(days=self.settings.inactive_session_expire_days)
        with self._db() as db:
            removed = db.query(models.UserSession).filter(models.UserSession.accessed < cutoff).delete()
            db.commit()
        if removed:
            logger.info(f"Removed {removed} unused sessions")
        return removed

    def reap_downloads(self) -> int:
        cutoff = utcnow() - timedelta(days=self.settings.download_expire_days)
        with self._db() as db:
            expired = db.query(models.Download).filter(models.Download.created < cutoff).all()
            for download in expired:
                db.delete(download)
            db.commit()
        if expired:
            logger.info(f"Removed {len(expired)} old download links")
        return len(expired)

    async def reap_uploads(self) -> int:
        """Drop uploads whose temp file is missing past the grace period or untouched too long."""
        now = time.time()
        max_age = self.settings.upload_expire_hours * 3600
        grace_cutoff = utcnow() - timedelta(seconds=self.settings.upload_grace_seconds)
        uploads = await run_in_threadpool(self.list_uploads)

        removed = 0
        for upload in uploads:
            st = await storage.stat_or_none(upload.path_temp)
            if st is None:
                stale = upload.created < grace_cutoff
            else:
                stale = st.st_mtime < now - max_age
            if not stale:
                continue
            await storage.remove_quietly(upload.path_temp)
            if await run_in_threadpool(self.delete_upload, upload.token):
                removed += 1
        if removed:
            logger.info(f"Removed {removed} old unfinished uploads")
        return removed

    async def reap(self) -> dict:
        return {
            "sessions": await run_in_threadpool(self.reap_sessions),
            "downloads": await run_in_threadpool(self.reap_downloads),
            "uploads": await self.reap_uploads(),
        }


def get_store(request: Request) -> TokenStore:
    return request.app.state.store
