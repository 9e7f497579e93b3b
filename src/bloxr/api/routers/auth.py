from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...domain.models import TokenRequest, TokenResponse
from ...infrastructure.session_store import SessionStore
from ...security.rate_limit import TOKEN_ISSUE_LIMITER, RateLimitExceeded
from ..deps import get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/token", response_model=TokenResponse)
def issue_token(
    req: TokenRequest,
    request: Request,
    sessions: SessionStore = Depends(get_session_store),
) -> TokenResponse:
    try:
        TOKEN_ISSUE_LIMITER.hit(_client_host(request))
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many token requests. Please try again later.",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc

    session = sessions.create(req.user_id)
    logger.info("Issued session token for user %s (expires %s)", req.user_id, session.expires_at.isoformat())
    return TokenResponse(token=session.token, expires_at=session.expires_at)


def _client_host(request: Request) -> str:
    client = request.client
    return client.host if client and client.host else "unknown"
