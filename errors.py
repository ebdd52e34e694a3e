"""
errors.py — error taxonomy. Every error carries a stable machine code, a
human message and the HTTP status it maps to at the handler boundary.
"""

from typing import Optional


class VaultError(Exception):
    status_code = 500

    def __init__(self, code: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"success": False, "code": self.code, "message": self.message}


class AuthError(VaultError):
    status_code = 401


class AuthorizationError(VaultError):
    status_code = 403


class RequestError(VaultError):
    status_code = 400


class PathError(VaultError):
    status_code = 400


class ConflictError(VaultError):
    status_code = 400


class CapacityError(VaultError):
    status_code = 400


class NotFoundError(VaultError):
    status_code = 404


class StorageIOError(VaultError):
    status_code = 500


def invalid_path() -> PathError:
    return PathError("invalid_path", "Invalid or unsafe path")
