"""Shared fixtures for the relay test suite."""

import pytest
from fastapi.testclient import TestClient

from relay.app.core.config import settings
from relay.app.main import app
from relay.app.middleware.rate_limit import reset_rate_limiter

TEST_API_KEY = "sk-ant-test-key"


@pytest.fixture(autouse=True)
def fresh_rate_limiter():
    """Every test starts with an empty limiter built from settings."""
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", TEST_API_KEY)
    monkeypatch.setattr(settings, "anthropic_base_url", "https://api.anthropic.com")
    return TEST_API_KEY


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def chat_body():
    return {
        "model": "claude-sonnet-4-20250514",
        "messages": [{"role": "user", "content": "hi"}],
    }
