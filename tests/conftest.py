"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("ZAPRITE_API_KEY", "test-zaprite-key")
os.environ.setdefault("ZAPRITE_WEBHOOK_SECRET", "test-zaprite-webhook-secret")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("BITCOIN_INVOICE_WATCH", "false")


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from glassworks.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def make_settings() -> Callable[..., Any]:
    """Build a Settings instance with overrides, independent of the cached one."""
    from glassworks.core.config import Settings

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "supabase_url": "https://test-project.supabase.co",
            "supabase_secret_key": "test-secret-key",
            "bitcoin_invoice_watch": False,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("glassworks.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from glassworks.main import app

    with TestClient(app) as test_client:
        yield test_client
