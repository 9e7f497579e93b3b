from __future__ import annotations

"""Shared Mongo connection bootstrap for the document-store backends.

If Mongo is unreachable at start and BLOXR_REQUIRE_MONGO is not set, stores
fall back to their in-memory implementation so dev/CI keep working. Once a
store is connected, backend failures are raised as ``StoreUnavailable``.
"""

import logging
import os
from typing import Any, Optional


logger = logging.getLogger(__name__)


def mongo_required() -> bool:
    return os.getenv("BLOXR_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes")


def connect_database() -> Optional[Any]:
    """Return a pymongo ``Database`` or ``None`` when Mongo cannot be reached."""
    try:
        from pymongo import MongoClient  # type: ignore

        mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        mongo_db = os.getenv("MONGO_DB", "bloxr")
        client = MongoClient(mongo_url, serverSelectionTimeoutMS=500, tz_aware=True)
        # Trigger server selection
        client.server_info()
        return client[mongo_db]
    except Exception as exc:
        if mongo_required():
            raise RuntimeError("Mongo store required but not available") from exc
        logger.warning("Mongo unavailable (%s); using in-memory store", exc)
        return None
