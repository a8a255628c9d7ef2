"""HTTP import endpoint.

``POST /api/transactions`` accepts ``{"transactions": [...]}`` (1 to 100 items
in the camelCase wire format of :class:`tally.models.ApiTransaction`) with an
``Authorization: Bearer <token>`` header, and answers
``{"message": "...", "count": <rows inserted>}``. Rows whose external id is
already stored for the user are skipped, so ``count`` may be lower than the
batch size.

Run with ``uvicorn --factory tally.server:create_app``.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Annotated

from db.client import session_scope
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .logging_setup import configure_logging, get_logger
from .models import ImportRequest, ImportResponse
from .tokens import resolve_user_id
from .transactions import import_transactions

logger = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)

router = APIRouter()


def get_db(request: Request) -> Iterator[Session]:
    """Yield a request-scoped session; commits on success, rolls back on error."""

    with session_scope(database_url=request.app.state.database_url) as session:
        yield session


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    db: Annotated[Session, Depends(get_db)],
) -> str:
    user_id = resolve_user_id(db, credentials.credentials if credentials else None)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/api/transactions", response_model=ImportResponse)
def post_transactions(
    body: ImportRequest,
    user_id: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> ImportResponse:
    try:
        count = import_transactions(db, user_id, body.transactions)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    logger.info(
        "user %s imported %d of %d transactions", user_id, count, len(body.transactions)
    )
    return ImportResponse(message=f"Added {count} transactions.", count=count)


def create_app(database_url: str | None = None) -> FastAPI:
    """Build the app. ``database_url`` falls back to ``DATABASE_URL``."""

    configure_logging()
    app = FastAPI(title="Tally import API")
    app.state.database_url = database_url
    app.include_router(router)
    return app


__all__ = ["create_app", "get_db", "get_current_user", "router"]
