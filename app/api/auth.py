from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import Config

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def decode_token(token: str, config: Config) -> dict:
    return jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])


def get_current_user(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Optional[str]:
    """Owner identity of the caller, or None when it cannot be established.

    Handlers decide how to answer a missing identity, so this never raises.
    """
    if creds is None or creds.scheme.lower() != "bearer":
        return None
    config: Config = request.app.state.config
    try:
        payload = decode_token(creds.credentials, config)
    except JWTError as exc:
        logger.info("Rejected bearer token: %s", exc)
        return None
    sub = payload.get("sub")
    if not sub:
        logger.info("Rejected bearer token without subject")
        return None
    return str(sub)
