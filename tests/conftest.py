"""Shared fixtures for call gateway tests."""

import hashlib

import pytest
from fastapi.testclient import TestClient

from callgate.app.core.config import settings
from callgate.app.middleware.rate_limit import reset_rate_limiter

PASSWORD = "demo-password"
VALID_HASH = hashlib.sha256(PASSWORD.encode()).hexdigest()


@pytest.fixture(autouse=True)
def gateway_settings(monkeypatch):
    """Configure a complete deployment and start each test with a fresh limiter."""
    monkeypatch.setattr(settings, "access_password_hash", VALID_HASH)
    monkeypatch.setattr(settings, "elevenlabs_api_key", "test-xi-key")
    monkeypatch.setattr(settings, "elevenlabs_agent_id", "agent_123")
    monkeypatch.setattr(settings, "elevenlabs_base_url", "https://api.elevenlabs.io/v1")
    monkeypatch.setattr(settings, "elevenlabs_call_path", "/convai/phone-calls")
    monkeypatch.setattr(settings, "elevenlabs_phone_number_id", "")
    monkeypatch.setattr(settings, "mock_provider", False)
    monkeypatch.setattr(settings, "redis_enabled", False)
    monkeypatch.setattr(settings, "rate_limit_max_requests", 10)
    monkeypatch.setattr(settings, "rate_limit_window_seconds", 60)
    reset_rate_limiter()
    yield settings
    reset_rate_limiter()


@pytest.fixture
def tight_rate_limit(gateway_settings, monkeypatch):
    """Three requests per window; request it before ``client`` so the limiter picks it up."""
    monkeypatch.setattr(gateway_settings, "rate_limit_max_requests", 3)
    return 3


@pytest.fixture
def client():
    from callgate.app.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def valid_body():
    return {
        "phone_number": "+14805551234",
        "business_name": "Acme Plumbing",
        "owner_name": "Dana",
        "password_hash": VALID_HASH,
    }
