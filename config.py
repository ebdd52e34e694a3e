"""
config.py — environment settings and the JSON service config (users, vaults, timers).
"""

import json
import os
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import Request
from pydantic import BaseModel, Field, ValidationError, field_validator

load_dotenv()

VAULTS_CONFIG = os.getenv("VAULTS_CONFIG", "config.json")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///state.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR")
HOST = os.getenv("HOST", "0.0.0.0")


class ConfigError(ValueError):
    pass


class ServerConfig(BaseModel):
    port: int = 8080
    inactive_session_expire_days: float = 30
    download_expire_days: float = 7
    upload_expire_hours: float = 24
    upload_grace_seconds: float = 60
    reap_interval_seconds: float = 60
    auth_rate_limit_attempts: int = 10
    auth_rate_limit_window_seconds: float = 300
    max_chunk_bytes: int = Field(default=16 * 1024 * 1024, gt=0)


class UserConfig(BaseModel):
    username: str
    password_hash: str


class VaultConfig(BaseModel):
    name: str
    path: str
    users: List[str] = []

    @field_validator("path")
    @classmethod
    def _absolute(cls, value: str) -> str:
        return os.path.abspath(value)


class AppConfig(BaseModel):
    server: ServerConfig = ServerConfig()
    users: List[UserConfig] = []
    vaults: List[VaultConfig] = []

    @field_validator("vaults")
    @classmethod
    def _unique_names(cls, vaults: List[VaultConfig]) -> List[VaultConfig]:
        seen = set()
        for vault in vaults:
            if vault.name in seen:
                raise ValueError(f"Duplicate vault name: {vault.name}")
            seen.add(vault.name)
        return vaults


def load_config(path: Optional[str] = None) -> AppConfig:
    """Read and validate the JSON service config. Raises ConfigError."""
    path = path or VAULTS_CONFIG
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e


def get_config(request: Request) -> AppConfig:
    return request.app.state.config
