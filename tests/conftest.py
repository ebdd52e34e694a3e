import pytest
from fastapi.testclient import TestClient

from config import AppConfig, ServerConfig, UserConfig, VaultConfig
from database import init_db, make_engine, make_session_factory
from downloads import DownloadPipeline
from main import create_app
from security import hash_password
from token_store import TokenStore
from uploads import UploadPipeline
from vaults import VaultRegistry

PASSWORDS = {"alice": "alice-secret", "Bob": "bob-secret"}


@pytest.fixture(scope="session")
def password_hashes():
    # bcrypt is slow, hash once per run
    return {name: hash_password(pw) for name, pw in PASSWORDS.items()}


@pytest.fixture
def vault_roots(tmp_path):
    roots = {}
    for name in ("team", "private"):
        root = tmp_path / "vaults" / name
        root.mkdir(parents=True)
        roots[name] = root
    return roots


@pytest.fixture
def server_config():
    return ServerConfig(auth_rate_limit_attempts=3, max_chunk_bytes=1024)


@pytest.fixture
def app_config(vault_roots, password_hashes, server_config):
    return AppConfig(
        server=server_config,
        users=[UserConfig(username=n, password_hash=h) for n, h in password_hashes.items()],
        vaults=[
            VaultConfig(name="team", path=str(vault_roots["team"]), users=["alice", "bob"]),
            VaultConfig(name="private", path=str(vault_roots["private"]), users=["bob"]),
        ],
    )


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'state.db'}"


@pytest.fixture
def app(app_config, database_url):
    return create_app(app_config, database_url)


@pytest.fixture
def client(app):
    # entering the client runs the lifespan, which creates the tables
    with TestClient(app) as c:
        yield c


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def alice(client, app):
    return bearer(app.state.store.create_session("alice"))


@pytest.fixture
def bob(client, app):
    return bearer(app.state.store.create_session("bob"))


# ─── Pipeline-level fixtures (no HTTP) ────────────────────────────────────────

@pytest.fixture
def store(database_url, server_config):
    engine = make_engine(database_url)
    init_db(engine)
    s = TokenStore(engine, make_session_factory(engine), server_config)
    yield s
    s.close()


@pytest.fixture
def team(app_config):
    return app_config.vaults[0]


@pytest.fixture
def uploads(store):
    return UploadPipeline(store)


@pytest.fixture
def downloads(store, app_config):
    return DownloadPipeline(store, VaultRegistry(app_config))
