"""Bearer-token authentication against the api_tokens table.

- `Authorization: Bearer <token>`; 401 when missing, malformed, unknown or
  inactive.
- On success `last_used_at` is stamped by a background task after the response
  is sent. A failure there is logged and never changes the response.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass
from uuid import UUID

from fastapi import BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import get_db_session, get_session_factory
from app.core.logging import log_event
from app.repositories.token_repo import find_active_token, touch_last_used


logger = logging.getLogger(__name__)


class AuthError(HTTPException):
    pass


@dataclass(frozen=True, slots=True)
class Principal:
    token_id: UUID
    name: str
    token_fingerprint: str  # stable, non-sensitive identifier for rate limiting/audit logs


def token_fingerprint(token: str) -> str:
    """Non-reversible token fingerprint for rate limiting and audit logs."""
    raw = hashlib.sha256(token.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(raw[:18]).decode("ascii").rstrip("=")


def _unauthorized(detail: str) -> AuthError:
    return AuthError(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise _unauthorized("Missing bearer token.")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise _unauthorized("Missing bearer token.")
    return token


def touch_token_in_background(session_factory: sessionmaker[Session], token_id: UUID) -> None:
    try:
        touch_last_used(session_factory, token_id)
    except Exception as e:  # noqa: BLE001
        log_event(
            logger,
            "token_touch_failed",
            level=logging.WARNING,
            token_id=str(token_id),
            error=f"{type(e).__name__}: {e}",
        )


def get_current_principal(
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db_session),
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
) -> Principal:
    token = extract_bearer_token(request)
    row = find_active_token(db, token)
    if row is None:
        raise _unauthorized("Invalid or inactive token.")

    background_tasks.add_task(touch_token_in_background, session_factory, row.id)
    return Principal(token_id=row.id, name=row.name, token_fingerprint=token_fingerprint(token))


def require_api_token(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
    """Authenticate, then charge the request to the token's hourly budget."""
    request.app.state.rate_limiter.check(principal.token_fingerprint)
    return principal
