import io
import shutil
import zipfile

import pytest

from errors import NotFoundError


@pytest.fixture
def tree(vault_roots):
    root = vault_roots["team"]
    (root / "photos").mkdir()
    (root / "photos" / "cat.jpg").write_bytes(b"meow")
    (root / "photos" / "trip").mkdir()
    (root / "photos" / "trip" / "beach.jpg").write_bytes(b"sand")
    (root / "photos" / "empty").mkdir()
    (root / "report final.pdf").write_bytes(b"%PDF")
    (root / "notes.txt").write_text("notes")
    return root


def make_link(client, headers, paths, vault="team"):
    token = client.post(
        "/api/files/download/create", params={"vault": vault}, headers=headers
    ).json()["token"]
    if paths:
        r = client.post(
            "/api/files/download/add",
            params={"vault": vault, "token": token},
            json={"paths": paths},
            headers=headers,
        )
        assert r.json() == {"success": True}
    return token


def url_for(client, token):
    return client.get("/api/files/download", params={"token": token})


def test_single_file_url_and_download(client, alice, tree):
    token = make_link(client, alice, ["/report final.pdf"])
    assert len(token) == 8

    url = url_for(client, token).json()["url"]
    assert url == f"/dl/{token}/report%20final.pdf"

    r = client.get(url)
    assert r.status_code == 200
    assert r.content == b"%PDF"
    # the bare token serves the same thing
    assert client.get(f"/dl/{token}").content == b"%PDF"


def test_directory_url_gets_zip_suffix(client, alice, tree):
    token = make_link(client, alice, ["/photos"])
    assert url_for(client, token).json()["url"] == f"/dl/{token}/photos.zip"


def test_vault_root_is_named_after_vault(client, alice, tree):
    token = make_link(client, alice, ["/"])
    assert url_for(client, token).json()["url"] == f"/dl/{token}/team.zip"


def test_several_paths_get_files_zip(client, alice, tree):
    token = make_link(client, alice, ["/notes.txt", "/photos"])
    assert url_for(client, token).json()["url"] == f"/dl/{token}/files.zip"


def test_directory_zip_keeps_inner_layout(client, alice, tree):
    token = make_link(client, alice, ["/photos"])
    r = client.get(f"/dl/{token}/photos.zip")
    assert r.headers["content-type"] == "application/zip"
    assert "photos.zip" in r.headers["content-disposition"]

    with zipfile.ZipFile(io.BytesIO(r.content)) as zf:
        names = set(zf.namelist())
        assert {"cat.jpg", "trip/", "trip/beach.jpg", "empty/"} <= names
        assert zf.read("trip/beach.jpg") == b"sand"
        assert all(not n.startswith("/") and ".." not in n for n in names)


def test_zip_skips_entries_deleted_after_linking(client, alice, tree):
    token = make_link(client, alice, ["/notes.txt", "/photos/cat.jpg", "/report final.pdf"])
    (tree / "photos" / "cat.jpg").unlink()

    r = client.get(f"/dl/{token}/files.zip")
    assert r.status_code == 200
    with zipfile.ZipFile(io.BytesIO(r.content)) as zf:
        assert zf.testzip() is None
        assert sorted(zf.namelist()) == ["notes.txt", "report final.pdf"]
        assert zf.read("notes.txt") == b"notes"


def test_zip_leaves_out_symlinks(client, alice, tree, vault_roots):
    (vault_roots["private"] / "secret.txt").write_text("secret")
    (tree / "photos" / "leak").symlink_to(vault_roots["private"] / "secret.txt")

    token = make_link(client, alice, ["/photos"])
    with zipfile.ZipFile(io.BytesIO(client.get(f"/dl/{token}").content)) as zf:
        assert "leak" not in zf.namelist()
        assert "cat.jpg" in zf.namelist()


def test_add_errors(client, alice, tree):
    token = make_link(client, alice, [])
    add = lambda **kw: client.post(
        "/api/files/download/add", params={"vault": "team", "token": token}, headers=alice, **kw
    )
    assert add(json={"paths": []}).json()["code"] == "no_paths"
    assert add(json={}).json()["code"] == "no_paths"
    assert add(json={"paths": ["/missing"]}).json()["code"] == "not_found"
    assert add(json={"paths": ["/notes.txt", 7]}).json()["code"] == "invalid_path"

    r = client.post(
        "/api/files/download/add",
        params={"vault": "team", "token": "00000000"},
        json={"paths": ["/notes.txt"]},
        headers=alice,
    )
    assert (r.status_code, r.json()["code"]) == (404, "invalid_token")


def test_download_token_is_bound_to_its_vault(client, bob, tree):
    token = make_link(client, bob, [], vault="private")
    r = client.post(
        "/api/files/download/add",
        params={"vault": "team", "token": token},
        json={"paths": ["/notes.txt"]},
        headers=bob,
    )
    assert r.json()["code"] == "invalid_token"


def test_resolve_errors(client, alice, tree):
    r = client.get("/api/files/download")
    assert (r.status_code, r.json()["code"]) == (400, "missing_token")
    assert url_for(client, "ffffffff").json()["code"] == "invalid_token"
    assert url_for(client, make_link(client, alice, [])).json()["code"] == "no_files"

    token = make_link(client, alice, ["/notes.txt"])
    (tree / "notes.txt").unlink()
    r = url_for(client, token)
    assert (r.status_code, r.json()["code"]) == (404, "not_found")
    assert client.get(f"/dl/{token}").status_code == 404
    assert client.get("/dl/ffffffff/x.zip").status_code == 404


def test_link_whose_target_now_escapes_the_vault(client, alice, tree, vault_roots):
    token = make_link(client, alice, ["/photos/cat.jpg"])
    (vault_roots["private"] / "cat.jpg").write_bytes(b"private")
    # swap the directory for a link pointing out of the vault
    shutil.rmtree(tree / "photos")
    (tree / "photos").symlink_to(vault_roots["private"])

    r = url_for(client, token)
    assert (r.status_code, r.json()["code"]) == (404, "not_found")
    r = client.get(f"/dl/{token}/cat.jpg")
    assert r.status_code == 404
    assert r.content != b"private"


@pytest.mark.asyncio
async def test_link_to_removed_vault(store, downloads, tree):
    token = store.create_download("alice", "gone")
    store.add_download_files(token, ["/notes.txt"])

    with pytest.raises(NotFoundError) as e:
        await downloads.resolve_url(token)
    assert e.value.code == "vault_missing"


@pytest.mark.asyncio
async def test_zip_stream_stops_when_client_leaves(downloads, team, tree):
    async def gone():
        return True

    blocks = [b async for b in downloads.stream_zip(team, ["/photos"], is_disconnected=gone)]
    # stopped after the first entry, so no central directory was written
    data = b"".join(blocks)
    with pytest.raises(zipfile.BadZipFile):
        zipfile.ZipFile(io.BytesIO(data))
