import os

# Must be set before importing app: load_dotenv() does not override existing env vars,
# so these take precedence over whatever is in .env.
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:5173")
os.environ.setdefault("BYPASS_ALLOWED_HOSTS", "")

import httpx
import pytest
from fastapi.testclient import TestClient

from app import app, get_http_client
from store import TaskStore, get_store


@pytest.fixture
def task_store():
    """A fresh, empty store per test so tasks never leak between tests."""
    return TaskStore()


@pytest.fixture
def client(task_store):
    """
    A TestClient whose get_store dependency is overridden to use the per-test
    store. Server exceptions are re-raised: every failure the app is expected
    to survive must already be turned into an envelope by the middleware.
    """
    app.dependency_overrides[get_store] = lambda: task_store
    yield TestClient(app, raise_server_exceptions=True)
    app.dependency_overrides.clear()


@pytest.fixture
def remote():
    """
    Installs an httpx.MockTransport behind the proxy endpoint.

    Call it with a handler taking an httpx.Request and returning an
    httpx.Response (or raising an httpx error).
    """
    def install(handler):
        async def override_get_http_client():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as c:
                yield c

        app.dependency_overrides[get_http_client] = override_get_http_client

    return install
