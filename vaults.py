"""
Vault lookup and membership checks against the static config.
"""

from typing import Dict, List, Optional

from fastapi import Depends, Query, Request

from auth import Identity, require_auth
from config import AppConfig, VaultConfig
from errors import AuthorizationError, NotFoundError
from paths import ResolvedPath, resolve_path
import storage


class VaultRegistry:

    def __init__(self, config: AppConfig):
        self._vaults: Dict[str, VaultConfig] = {v.name: v for v in config.vaults}

    def get(self, name: Optional[str]) -> Optional[VaultConfig]:
        return self._vaults.get(name) if name else None

    def resolve(self, name: Optional[str]) -> VaultConfig:
        vault = self.get(name)
        if vault is None:
            raise NotFoundError("vault_not_found", "The requested vault does not exist")
        return vault

    @staticmethod
    def is_member(vault: VaultConfig, username: str) -> bool:
        return username.lower() in (u.lower() for u in vault.users)

    def authorize(self, vault: VaultConfig, username: str) -> VaultConfig:
        if not self.is_member(vault, username):
            raise AuthorizationError("forbidden", "You do not have access to this vault")
        return vault

    def vaults_for(self, username: str) -> List[VaultConfig]:
        return [v for v in self._vaults.values() if self.is_member(v, username)]

    async def describe(self, vault: VaultConfig) -> dict:
        stats = await storage.disk_stats(vault.path)
        return {"name": vault.name, "users": vault.users, **stats}


def get_registry(request: Request) -> VaultRegistry:
    return request.app.state.registry


def require_vault(
    vault: Optional[str] = Query(None),
    identity: Identity = Depends(require_auth),
    registry: VaultRegistry = Depends(get_registry),
) -> VaultConfig:
    return registry.authorize(registry.resolve(vault), identity.username)


def resolve_query_path(
    path: Optional[str] = Query(None),
    vault: VaultConfig = Depends(require_vault),
) -> ResolvedPath:
    return resolve_path(vault.path, path)
