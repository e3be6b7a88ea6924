from __future__ import annotations

import hashlib
import hmac
import logging
from functools import cached_property
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from blobgate.depends import Injected
from blobgate.errors import Unauthorized

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Authenticator:
    """Checks bearer tokens against the hex digest of a shared secret."""

    def __init__(self, secret: str, algorithm: str = "sha1") -> None:
        self._secret = secret
        self._algorithm = algorithm

    @cached_property
    def expected_token(self) -> str:
        # pure and cheap, so a concurrent first access just computes it twice
        return hashlib.new(self._algorithm, self._secret.encode()).hexdigest()

    def verify(self, presented: str | None) -> bool:
        if not presented:
            return False
        return hmac.compare_digest(presented.encode(), self.expected_token.encode())


async def require_token(
    request: Request,
    authenticator: Injected[Authenticator],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> None:
    if credentials is None:
        logger.debug("missing bearer token", extra={"extra": {"path": request.url.path}})
        raise Unauthorized(headers={"WWW-Authenticate": f'Bearer realm="{request.url.hostname or ""}"'})
    if not authenticator.verify(credentials.credentials):
        logger.debug("invalid bearer token", extra={"extra": {"path": request.url.path}})
        raise Unauthorized(headers={"WWW-Authenticate": 'Bearer error="invalid_token"'})
