from __future__ import annotations

"""Operations behind the plugin's polling contract."""

from typing import Any, Dict, Optional
import logging

from ..domain.models import ErrorReportRequest, RuntimeErrorReport
from ..infrastructure.queue_store import WorkQueue
from ..observability.metrics import QUEUE_CONFIRMED, QUEUE_ERRORS
from .context_store import WorkspaceStore


logger = logging.getLogger(__name__)


def with_last_error(body: Dict[str, Any], workspace: WorkspaceStore, user_id: str) -> Dict[str, Any]:
    """Attach (and clear) the user's outstanding runtime error, if any."""
    last_error = workspace.take_error_if_present(user_id)
    if last_error is not None:
        body["lastError"] = last_error.model_dump()
    return body


def pending(queue: WorkQueue, workspace: WorkspaceStore, user_id: str) -> Dict[str, Any]:
    """Oldest pending record, or ``{}`` when there is no work.

    Read-only on the queue: polling twice returns the same item until the
    plugin confirms it or reports it as failed.
    """
    item = queue.peek_oldest_pending(user_id)
    body: Dict[str, Any] = item.to_wire() if item is not None else {}
    return with_last_error(body, workspace, user_id)


def confirm(queue: WorkQueue, user_id: str, item_id: str) -> None:
    """Raises ``QueueItemNotFound`` for unknown, foreign or already-confirmed ids."""
    queue.confirm(user_id, item_id)
    QUEUE_CONFIRMED.inc()
    logger.info("Confirmed queue item %s for user %s", item_id, user_id)


def report_error(
    queue: WorkQueue,
    workspace: WorkspaceStore,
    user_id: str,
    report: ErrorReportRequest,
) -> Optional[bool]:
    """Record a plugin runtime error.

    Stores the report as the user's last runtime error first, so it survives
    a queue outage, then flips the referenced item (if any) to ``error``.
    Returns whether an item was flagged, or ``None`` when no id was supplied.
    """
    workspace.record_error(
        user_id,
        RuntimeErrorReport(message=report.message, script=report.script, line=report.line),
    )
    flagged: Optional[bool] = None
    if report.id:
        flagged = queue.mark_error(user_id, report.id)
    QUEUE_ERRORS.inc()
    logger.warning(
        "Plugin runtime error user=%s item=%s script=%s line=%s: %s",
        user_id,
        report.id,
        report.script,
        report.line,
        report.message,
    )
    return flagged
