"""
MODULE OVERVIEW:
Server-side anti-forgery tokens.

WHAT IS HAPPENING HERE:
`GET /csrf-token` hands out random tokens; every mutating route checks the
`X-CSRF-Token` header against the tokens issued so far. Enforcement can be
switched off with `CSRF_ENABLED=false`, in which case the token endpoint
returns an empty token and the check always passes.
"""

import secrets
from collections import deque
from fastapi import HTTPException, Request
from loguru import logger

from chatstream.shared.config import settings


class CsrfTokenManager:
    def __init__(self, enabled: bool = settings.CSRF_ENABLED, header_name: str = settings.CSRF_HEADER_NAME):
        self.enabled = enabled
        self.header_name = header_name
        # Bounded so a client hammering the token endpoint cannot grow memory.
        self._issued: deque[str] = deque(maxlen=1000)

    def get_token(self) -> str:
        if not self.enabled:
            return ""
        token = secrets.token_urlsafe(32)
        self._issued.append(token)
        return token

    def is_valid(self, token: str) -> bool:
        if not token:
            return False
        return any(secrets.compare_digest(token, issued) for issued in self._issued)

    def check(self, request: Request) -> None:
        if not self.enabled:
            return
        token = request.headers.get(self.header_name, "")
        if not token:
            logger.warning(f"event=csrf_rejected reason=missing path={request.url.path}")
            raise HTTPException(
                status_code=403,
                detail=f"Missing CSRF token. Send {self.header_name} (from GET {settings.API_PREFIX}/csrf-token) "
                       f"or set CSRF_ENABLED=false.",
            )
        if not self.is_valid(token):
            logger.warning(f"event=csrf_rejected reason=invalid path={request.url.path}")
            raise HTTPException(status_code=403, detail="Invalid or expired CSRF token. Reload the page.")


def require_csrf(request: Request) -> None:
    """FastAPI dependency guarding every mutating route."""
    request.app.state.csrf.check(request)
