from __future__ import annotations

from typing import List, Sequence, TypeVar


T = TypeVar("T")

HISTORY_HEAD = 2
HISTORY_TAIL = 16
HISTORY_MAX = 20


def trim_history(
    history: Sequence[T],
    head: int = HISTORY_HEAD,
    tail: int = HISTORY_TAIL,
    limit: int = HISTORY_MAX,
) -> List[T]:
    """Bound the history sent back to the model.

    Histories within ``limit`` pass through untouched. Longer ones keep the
    first ``head`` turns (the original ask) plus the most recent ``tail``.
    """
    items = list(history)
    if len(items) <= limit:
        return items
    head = max(0, min(head, limit))
    tail = max(0, min(tail, limit - head))
    kept_tail = items[-tail:] if tail else []
    return items[:head] + kept_tail
