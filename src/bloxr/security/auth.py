from __future__ import annotations

"""Bearer-token session authentication.

Every authenticated route depends on ``get_current_user_id``. Missing,
unknown and expired tokens all produce the same 401 so callers cannot tell
which of them occurred; the distinction is only logged.
"""

from typing import Optional
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from ..core.errors import SessionError, StoreUnavailable
from ..infrastructure.session_store import SessionStore


logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)


def unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


def session_store_from(request: Request) -> SessionStore:
    return request.app.state.session_store


async def get_current_user_id(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer" or not creds.credentials:
        logger.debug("Rejected request without bearer token path=%s", request.url.path)
        raise unauthorized()
    store = session_store_from(request)
    try:
        return await run_in_threadpool(store.resolve, creds.credentials)
    except SessionError as exc:
        logger.info("Rejected bearer token (%s) path=%s", exc.reason, request.url.path)
        raise unauthorized() from exc
    except StoreUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store unavailable",
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc
