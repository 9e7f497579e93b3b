import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from bloxr.api.main import create_app  # noqa: E402
from bloxr.config import Settings  # noqa: E402
from bloxr.infrastructure import chat_store, queue_store, session_store  # noqa: E402
from bloxr.infrastructure.chat_store import InMemoryChatStore  # noqa: E402
from bloxr.infrastructure.queue_store import InMemoryWorkQueue  # noqa: E402
from bloxr.infrastructure.session_store import InMemorySessionStore  # noqa: E402
from bloxr.security.rate_limit import reset_rate_limits  # noqa: E402
from bloxr.services.context_store import WorkspaceContextStore  # noqa: E402

from .utils import FakeTokenSource  # noqa: E402


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    # Each test starts with clean store singletons and rate-limit counters
    monkeypatch.setattr(session_store, "_store", None, raising=False)
    monkeypatch.setattr(queue_store, "_queue", None, raising=False)
    monkeypatch.setattr(chat_store, "_store", None, raising=False)
    monkeypatch.delenv("BLOXR_STORE_IMPL", raising=False)
    monkeypatch.delenv("BLOXR_REQUIRE_MONGO", raising=False)
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def token_source():
    return FakeTokenSource(["Here you go."])


@pytest.fixture
def stores():
    return {
        "session_store": InMemorySessionStore(),
        "work_queue": InMemoryWorkQueue(),
        "chat_store": InMemoryChatStore(),
        "workspace": WorkspaceContextStore(),
    }


@pytest.fixture
def app(stores, token_source):
    return create_app(Settings(), token_source=token_source, **stores)


@pytest.fixture
def client(app):
    return TestClient(app)
