from __future__ import annotations

"""Endpoints polled by the Studio plugin.

All routes are per-user: the bearer token decides whose queue, context and
runtime error are read or written.
"""

from datetime import UTC, datetime
from typing import Any, Dict
import logging

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError

from ...core.errors import QueueItemNotFound
from ...domain.models import (
    ConfirmRequest,
    ErrorReportRequest,
    PlaceReport,
    WorkspaceContext,
    normalize_payload,
)
from ...infrastructure.queue_store import WorkQueue
from ...observability.metrics import QUEUE_PUSHED
from ...security.auth import get_current_user_id
from ...services import delivery
from ...services.context_store import WorkspaceStore
from ..deps import get_work_queue, get_workspace

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/pending")
def pending(
    user_id: str = Depends(get_current_user_id),
    queue: WorkQueue = Depends(get_work_queue),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> Dict[str, Any]:
    return delivery.pending(queue, workspace, user_id)


@router.post("/push")
def push(
    body: Any = Body(...),
    user_id: str = Depends(get_current_user_id),
    queue: WorkQueue = Depends(get_work_queue),
) -> Dict[str, Any]:
    try:
        payload = normalize_payload(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    except TypeError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    item = queue.push(user_id, payload)
    QUEUE_PUSHED.labels(source="plugin").inc()
    logger.info("Plugin pushed %s %r as %s", payload.type, payload.name, item.id)
    return item.to_wire()


@router.post("/confirm")
def confirm(
    req: ConfirmRequest,
    user_id: str = Depends(get_current_user_id),
    queue: WorkQueue = Depends(get_work_queue),
) -> Dict[str, bool]:
    try:
        delivery.confirm(queue, user_id, req.id)
    except QueueItemNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found") from exc
    return {"ok": True}


@router.post("/error")
def report_error(
    req: ErrorReportRequest,
    user_id: str = Depends(get_current_user_id),
    queue: WorkQueue = Depends(get_work_queue),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> Dict[str, Any]:
    flagged = delivery.report_error(queue, workspace, user_id, req)
    body: Dict[str, Any] = {"ok": True}
    if flagged is not None:
        body["flagged"] = flagged
    return body


@router.get("/heartbeat")
def heartbeat(
    user_id: str = Depends(get_current_user_id),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "status": "ok",
        "timestamp": int(datetime.now(UTC).timestamp() * 1000),
    }
    place = workspace.get_place(user_id)
    if place:
        body["place"] = place
    return delivery.with_last_error(body, workspace, user_id)


@router.get("/context", response_model=WorkspaceContext)
def get_context(
    user_id: str = Depends(get_current_user_id),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> WorkspaceContext:
    return WorkspaceContext(context=workspace.get_context(user_id))


@router.post("/context", response_model=WorkspaceContext)
def put_context(
    req: WorkspaceContext,
    user_id: str = Depends(get_current_user_id),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> WorkspaceContext:
    stored = workspace.put_context(user_id, req.context)
    logger.debug("Workspace context for %s replaced (%d entries)", user_id, len(stored))
    return WorkspaceContext(context=stored)


@router.post("/place")
def report_place(
    req: PlaceReport,
    user_id: str = Depends(get_current_user_id),
    workspace: WorkspaceStore = Depends(get_workspace),
) -> Dict[str, bool]:
    workspace.put_place(user_id, req.model_dump())
    logger.info("Plugin attached user=%s placeId=%s gameId=%s", user_id, req.placeId, req.gameId)
    return {"ok": True}
