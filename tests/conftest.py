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
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")

from src.core.config import Settings  # noqa: E402
from tests.fakes import FakeGateway, FakeSupabase  # noqa: E402

EVENT_ID = "evt-my-show"
USER_ID = "profile-alice"
AUTH_USER_ID = "11111111-1111-4111-8111-111111111111"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build Settings with overrides and no backoff between retries."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "settlement_retry_min_wait": 0,
            "settlement_retry_max_wait": 0,
            "frontend_url": "https://tickets.example.com",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture(params=["transactional", "sequential"])
def settlement_mode(request: pytest.FixtureRequest) -> str:
    """Run a test once per settlement store strategy."""
    return request.param


@pytest.fixture
def settings(make_settings: Callable[..., Settings], settlement_mode: str) -> Settings:
    """Settings for the current settlement mode."""
    return make_settings(settlement_mode=settlement_mode)


@pytest.fixture
def db() -> FakeSupabase:
    """Empty in-memory Supabase."""
    return FakeSupabase()


@pytest.fixture
def gateway() -> FakeGateway:
    """In-memory Stripe gateway."""
    return FakeGateway()


@pytest.fixture
def seeded_db(db: FakeSupabase) -> FakeSupabase:
    """Database with one event, two ticket types and one customer.

    tt_42 is the ticket type of the concrete purchase scenarios:
    price 1000, fee 100, five left.
    """
    db.seed("events", {"id": EVENT_ID, "slug": "my-show", "title": "My Show", "currency": "usd"})
    db.seed(
        "ticket_types",
        {
            "id": "tt_42",
            "event_id": EVENT_ID,
            "name": "General Admission",
            "price": 1000,
            "fees": 100,
            "currency": "usd",
            "total_quantity": 5,
            "available_quantity": 5,
            "min_per_order": 1,
            "max_per_order": 10,
            "tier": "general",
            "is_active": True,
            "stripe_product_id": "prod_ga",
            "stripe_price_id": "price_ga",
        },
        {
            "id": "tt_vip",
            "event_id": EVENT_ID,
            "name": "VIP",
            "price": 5000,
            "fees": 250,
            "currency": "usd",
            "total_quantity": 2,
            "available_quantity": 2,
            "min_per_order": 1,
            "max_per_order": 2,
            "tier": "vip",
            "is_active": True,
            "stripe_product_id": "prod_vip",
            "stripe_price_id": None,
        },
    )
    db.seed(
        "profiles",
        {"id": USER_ID, "user_id": AUTH_USER_ID, "email": "alice@example.com", "display_name": "Alice"},
    )
    db.seed("payment_customers", {"stripe_customer_id": "cus_alice", "user_id": USER_ID})
    return db


@pytest.fixture
def alice(seeded_db: FakeSupabase) -> dict[str, Any]:
    """Profile of the buyer in the seeded database."""
    return next(p for p in seeded_db.rows("profiles") if p["id"] == USER_ID)


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client for the health check.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def checkout_service(seeded_db: FakeSupabase, gateway: FakeGateway, make_settings: Callable[..., Settings]) -> Any:
    """CheckoutService over the seeded database and the in-memory gateway."""
    from src.services.checkout_service import CheckoutService
    from src.services.inventory_store import InventoryStore
    from src.services.profile_service import ProfileService
    from src.services.settlement_ledger import SettlementLedger

    settings = make_settings()
    return CheckoutService(
        ledger=SettlementLedger(seeded_db),
        inventory=InventoryStore(seeded_db, settings),
        profiles=ProfileService(seeded_db),
        gateway=gateway,
        settings=settings,
    )


@pytest.fixture
def api_client(
    client: TestClient,
    checkout_service: Any,
    seeded_db: FakeSupabase,
    alice: dict[str, Any],
    make_settings: Callable[..., Settings],
) -> TestClient:
    """Test client with services bound to the fakes and alice signed in as a customer."""
    from uuid import UUID

    from src.api.deps import (
        get_checkout_service,
        get_current_profile,
        get_current_user,
        get_inventory_store,
        get_ticket_service,
    )
    from src.main import app
    from src.schemas.auth import UserContext
    from src.services.inventory_store import InventoryStore
    from src.services.ticket_service import TicketService

    user = UserContext(user_id=UUID(AUTH_USER_ID), email=alice["email"], role="customer")
    app.dependency_overrides[get_checkout_service] = lambda: checkout_service
    app.dependency_overrides[get_inventory_store] = lambda: InventoryStore(seeded_db, make_settings())
    app.dependency_overrides[get_ticket_service] = lambda: TicketService(seeded_db)
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_current_profile] = lambda: alice
    return client


@pytest.fixture
def as_staff(api_client: TestClient) -> TestClient:
    """Signed in user with the staff role."""
    from uuid import UUID

    from src.api.deps import get_current_user
    from src.main import app
    from src.schemas.auth import UserContext

    app.dependency_overrides[get_current_user] = lambda: UserContext(
        user_id=UUID(AUTH_USER_ID), email="staff@example.com", role="staff"
    )
    return api_client
