from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

import models
from errors import AuthError
from token_store import TokenStore, get_store

# auto_error off so a missing header yields our own error body
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


@dataclass
class Identity:
    token: str
    username: str
    session: models.UserSession


def require_auth(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    store: TokenStore = Depends(get_store),
) -> Identity:
    """
    Resolve the bearer token to a live session and bump its access time.
    The username is stashed on request.state for the access log.
    """
    session = store.touch_session(token)
    if session is None:
        raise AuthError("unauthorized", "Missing or invalid authentication token")
    username = session.username.lower()
    request.state.username = username
    return Identity(token=session.token, username=username, session=session)
