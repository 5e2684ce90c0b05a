import sys
from pathlib import Path
from typing import Any, Callable, Dict

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from config import settings
from main import create_app
from services.demo_cache import demo_cache
from services.identity import DEFAULT_USER_ID, identity_provider
from services.mailer import account_mailer

INGEST_KEY = "test-ingest-key-0123456789"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_dashboard_services() -> None:
    demo_cache.clear()
    identity_provider.reset()
    account_mailer.clear()
    yield
    demo_cache.clear()
    identity_provider.reset()
    account_mailer.clear()


@pytest.fixture
def settings_override() -> Callable[..., None]:
    original: Dict[str, Any] = {}

    def _apply(**overrides: Any) -> None:
        for key, value in overrides.items():
            if key not in original:
                original[key] = getattr(settings, key)
            setattr(settings, key, value)

    yield _apply

    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture
def memory_store(settings_override: Callable[..., None]) -> None:
    settings_override(
        telemetry_backend="memory",
        ingest_api_key=INGEST_KEY,
        mail_webhook_url=None,
        mail_smtp_host=None,
    )
    yield


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(DEFAULT_USER_ID)}"}


@pytest.fixture
def anonymous_client(memory_store: None) -> TestClient:
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def client(memory_store: None, auth_headers: Dict[str, str]) -> TestClient:
    app = create_app()
    with TestClient(app, headers=auth_headers) as test_client:
        yield test_client
