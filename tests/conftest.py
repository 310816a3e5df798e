"""Pytest configuration and fixtures."""

import os
import time
from collections.abc import Callable, Generator
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from jose import jwt
from jwt.algorithms import ECAlgorithm

# ES256 key pair standing in for the Supabase project signing key
_signing_key = ec.generate_private_key(ec.SECP256R1())
TEST_SIGNING_KEY_PEM = _signing_key.private_bytes(
    serialization.Encoding.PEM,
    serialization.PrivateFormat.PKCS8,
    serialization.NoEncryption(),
).decode()
TEST_SIGNING_KEY_JWK = ECAlgorithm.to_jwk(_signing_key.public_key())

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ["SUPABASE_SIGNING_KEY_JWK"] = TEST_SIGNING_KEY_JWK
os.environ.setdefault("LEDGER_BACKEND", "memory")
os.environ.setdefault("SYNC_ENABLED", "false")
os.environ.setdefault("CASHBACK_RATE", "0.7")
os.environ.setdefault("HTTP_MAX_RETRIES", "1")


def create_test_token(
    sub: str = "550e8400-e29b-41d4-a716-446655440000",
    email: str | None = "test@example.com",
    app_role: str | None = None,
    exp_offset: int = 3600,
    key: str = TEST_SIGNING_KEY_PEM,
) -> str:
    """Create an ES256 access token shaped like a Supabase one."""
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": sub,
        "email": email,
        "role": "authenticated",
        "exp": now + exp_offset,
        "iat": now,
        "aud": "authenticated",
        "iss": "https://test-project.supabase.co/auth/v1",
    }
    if app_role:
        payload["app_metadata"] = {"provider": "email", "role": app_role}
    return jwt.encode(payload, key, algorithm="ES256")


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from affhelper.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def ledger_config() -> Any:
    """Ledger config with the default 70% cashback share."""
    from affhelper.core.config import LedgerConfig

    return LedgerConfig(cashback_rate=Decimal("0.7"), min_withdrawal_amount=Decimal("50000"))


@pytest.fixture
def store() -> Any:
    """Provide an empty in-memory ledger store."""
    from affhelper.services.ledger_store import InMemoryLedgerStore

    return InMemoryLedgerStore()


@pytest.fixture
def user_id(store: Any) -> UUID:
    """Register a regular user in the store and return its ID."""
    uid = uuid4()
    store.add_user(uid)
    return uid


@pytest.fixture
def create_token() -> Callable[..., str]:
    """Expose the test token factory to tests."""
    return create_test_token


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Factory for Authorization headers carrying a valid test token."""

    def _headers(user_id: UUID | str, app_role: str | None = None) -> dict[str, str]:
        token = create_test_token(sub=str(user_id), app_role=app_role)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("affhelper.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def link_service(store: Any, ledger_config: Any) -> Any:
    """Link conversion service over the in-memory store; tests add providers."""
    from affhelper.services.link_conversion_service import LinkConversionService

    return LinkConversionService(store, {}, ledger_config)


@pytest.fixture
def sync_service(store: Any, ledger_config: Any) -> Any:
    """Order sync service over the in-memory store with no sources."""
    from affhelper.services.order_ledger import OrderLedger
    from affhelper.services.order_sync_service import OrderSyncService

    return OrderSyncService(OrderLedger(store, ledger_config), sources=[])


@pytest.fixture
def client(link_service: Any, sync_service: Any) -> Generator[TestClient, None, None]:
    """Provide a test client with services wired to the in-memory store.

    Yields:
        TestClient: FastAPI test client.
    """
    from affhelper.main import app
    from affhelper.services.link_conversion_service import get_link_conversion_service
    from affhelper.services.order_sync_service import get_order_sync_service

    app.dependency_overrides[get_link_conversion_service] = lambda: link_service
    app.dependency_overrides[get_order_sync_service] = lambda: sync_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


class FakeLinkProvider:
    """Shopee-like link provider that records calls instead of hitting the network."""

    def __init__(self, platform: Any = None, metadata: Any = None, short_link: str = "https://s.shopee.vn/aff") -> None:
        from affhelper.models.order import Platform

        self.platform = platform or Platform.SHOPEE
        self.metadata = metadata
        self.short_link = short_link
        self.metadata_error: Exception | None = None
        self.link_error: Exception | None = None
        self.generated: list[tuple[str, list[str]]] = []

    def matches(self, url: str) -> bool:
        return True

    async def resolve_url(self, url: str) -> str:
        return url.replace("https://s.shopee.vn/short", "https://shopee.vn/Case-i.100.200")

    def extract_product_id(self, url: str) -> str | None:
        return url.rsplit(".", 1)[-1] if "-i." in url else None

    async def generate_link(self, url: str, tracking_ids: list[str]) -> str:
        if self.link_error:
            raise self.link_error
        self.generated.append((url, tracking_ids))
        return self.short_link

    async def fetch_product_metadata(self, product_id: str | None, resolved_url: str) -> Any:
        if self.metadata_error:
            raise self.metadata_error
        return self.metadata


@pytest.fixture
def fake_provider(link_service: Any) -> FakeLinkProvider:
    """Register a fake Shopee provider on the link service."""
    from affhelper.models.order import Platform

    provider = FakeLinkProvider()
    link_service.providers[Platform.SHOPEE] = provider
    return provider
