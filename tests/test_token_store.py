import os
import time
from datetime import timedelta

import pytest

import models
from token_store import utcnow


def _backdate(store, model, token, **fields):
    with store._db() as db:
        row = db.get(model, token)
        for name, value in fields.items():
            setattr(row, name, value)
        db.commit()


def test_session_lifecycle(store):
    token = store.create_session("alice")
    assert len(token) == 32

    session = store.touch_session(token)
    assert session.username == "alice"
    assert session.accessed >= session.created

    store.delete_session(token)
    assert store.touch_session(token) is None


def test_touch_unknown_or_empty_session(store):
    assert store.touch_session(None) is None
    assert store.touch_session("nope") is None


def test_inactive_session_is_dropped_on_touch(store):
    token = store.create_session("alice")
    _backdate(store, models.UserSession, token, accessed=utcnow() - timedelta(days=31))
    assert store.touch_session(token) is None
    with store._db() as db:
        assert db.get(models.UserSession, token) is None


def test_upload_record_and_single_claim(store):
    upload = store.create_upload("alice", "team", "/v/team/a.bin", 10)
    assert upload.path_temp == f"/v/team/a.bin.{upload.token}"
    assert store.get_upload(upload.token).size == 10

    assert store.delete_upload(upload.token) is True
    assert store.delete_upload(upload.token) is False
    assert store.get_upload(upload.token) is None


def test_download_files_are_deduplicated(store):
    token = store.create_download("alice", "team")
    assert len(token) == 8
    store.add_download_files(token, ["/b", "/a", "/b"])
    store.add_download_files(token, ["/a"])

    record = store.get_download(token)
    assert record.vault == "team"
    assert record.paths == ["/a", "/b"]


def test_reap_sessions_and_downloads(store):
    fresh = store.create_session("alice")
    stale = store.create_session("bob")
    _backdate(store, models.UserSession, stale, accessed=utcnow() - timedelta(days=40))

    old = store.create_download("alice", "team")
    store.add_download_files(old, ["/x"])
    _backdate(store, models.Download, old, created=utcnow() - timedelta(days=8))
    new = store.create_download("alice", "team")

    assert store.reap_sessions() == 1
    assert store.reap_downloads() == 1
    assert store.touch_session(fresh) is not None
    assert store.get_download(old) is None
    assert store.get_download(new) is not None
    with store._db() as db:
        assert db.query(models.DownloadFile).filter_by(token=old).count() == 0

    # idempotent
    assert store.reap_sessions() == 0
    assert store.reap_downloads() == 0


@pytest.mark.asyncio
async def test_reap_uploads(store, tmp_path):
    dest = str(tmp_path / "file.bin")

    # temp file missing, still within the grace period
    young = store.create_upload("alice", "team", dest, 4)
    # temp file missing, grace period over
    orphan = store.create_upload("alice", "team", dest, 4)
    _backdate(store, models.Upload, orphan.token, created=utcnow() - timedelta(minutes=5))
    # temp file untouched for too long
    stale = store.create_upload("alice", "team", dest, 4)
    with open(stale.path_temp, "wb") as f:
        f.write(b"ab")
    old = time.time() - 25 * 3600
    os.utime(stale.path_temp, (old, old))
    # temp file recently written
    active = store.create_upload("alice", "team", dest, 4)
    with open(active.path_temp, "wb") as f:
        f.write(b"ab")

    assert await store.reap_uploads() == 2

    assert store.get_upload(young.token) is not None
    assert store.get_upload(active.token) is not None
    assert store.get_upload(orphan.token) is None
    assert store.get_upload(stale.token) is None
    assert not os.path.exists(stale.path_temp)
    assert os.path.exists(active.path_temp)
