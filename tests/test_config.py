import json
import os

import pytest

from config import ConfigError, VaultConfig, load_config
from rate_limit import LoginRateLimiter
from security import find_user, hash_password, verify_password


def test_load_config_applies_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "users": [{"username": "alice", "password_hash": "x"}],
        "vaults": [{"name": "team", "path": "rel/team", "users": ["alice"]}],
    }))
    config = load_config(str(path))
    assert config.server.port == 8080
    assert config.server.download_expire_days == 7
    assert os.path.isabs(config.vaults[0].path)


def test_duplicate_vault_names_are_rejected(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"vaults": [{"name": "a", "path": "x"}, {"name": "a", "path": "y"}]}))
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_missing_or_broken_config(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.json"))
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(str(broken))


def test_vault_path_is_made_absolute():
    assert os.path.isabs(VaultConfig(name="x", path="relative/dir").path)


def test_password_helpers(password_hashes):
    from config import UserConfig

    users = [UserConfig(username=n, password_hash=h) for n, h in password_hashes.items()]
    assert find_user(users, "bob", "bob-secret") == "bob"
    assert find_user(users, "bob", "alice-secret") is None
    assert verify_password("x", "not-a-hash") is False
    assert verify_password("alice-secret", password_hashes["alice"])
    assert hash_password("x") != hash_password("x")


def test_rate_limiter_window():
    now = [0.0]
    limiter = LoginRateLimiter(max_attempts=2, window_seconds=10, clock=lambda: now[0])

    assert limiter.hit("1.2.3.4").allowed
    assert limiter.hit("1.2.3.4").allowed
    assert not limiter.hit("1.2.3.4").allowed
    assert limiter.hit("5.6.7.8").allowed

    now[0] = 30
    assert limiter.cleanup() == 2
    assert len(limiter) == 0
    assert limiter.hit("1.2.3.4").allowed
