"""API bearer tokens stored in ``auth_tokens``."""

from __future__ import annotations

import secrets

from db.models.finance import AuthToken
from sqlalchemy import select
from sqlalchemy.orm import Session

from .logging_setup import get_logger

logger = get_logger(__name__)

_TOKEN_BYTES = 32


def create_auth_token(session: Session, user_id: str) -> str:
    """Issue a new random token for ``user_id`` and return it."""

    if not user_id or not user_id.strip():
        raise ValueError("user_id is required")
    token = secrets.token_urlsafe(_TOKEN_BYTES)
    session.add(AuthToken(user_id=user_id.strip(), token=token))
    session.flush()
    logger.info("issued API token for user %s", user_id)
    return token


def resolve_user_id(session: Session, token: str | None) -> str | None:
    """Return the owner of ``token``, or ``None`` when unknown or blank."""

    if not token or not token.strip():
        return None
    return session.execute(
        select(AuthToken.user_id).where(AuthToken.token == token.strip())
    ).scalar()


__all__ = ["create_auth_token", "resolve_user_id"]
