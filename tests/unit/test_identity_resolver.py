"""Unit tests for IdentityResolver."""

import logging
from typing import Any

import pytest

from src.api.middleware.error_handler import IdentityUnresolvedError, UpstreamUnavailableError
from src.core.config import Settings
from src.schemas.notification import CheckoutCompleted, PaymentConfirmed
from src.services.identity_resolver import (
    IdentityResolver,
    ResolutionContext,
    parse_event_slug,
    parse_quantity,
)
from src.services.inventory_store import InventoryStore
from src.services.profile_service import ProfileService
from tests.conftest import USER_ID
from tests.fakes import FakeGateway, FakeSupabase

SUCCESS_URL = "https://tickets.example.com/event/my-show/success?ticketTypeId=tt_42&quantity=3"


@pytest.fixture
def resolver(seeded_db: FakeSupabase, gateway: FakeGateway, make_settings: Any) -> IdentityResolver:
    settings: Settings = make_settings()
    return IdentityResolver(
        inventory=InventoryStore(seeded_db, settings),
        profiles=ProfileService(seeded_db),
        gateway=gateway,
    )


def record(**fields: Any) -> PaymentConfirmed:
    values: dict[str, Any] = {"external_ref": "cs_test_1", "customer_ref": "cus_alice"}
    values.update(fields)
    return PaymentConfirmed(**values)


class TestParseHelpers:
    """Tests for the return URL helpers."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            (SUCCESS_URL, 3),
            ("https://x/event/a/success?quantity=0", 1),
            ("https://x/event/a/success?quantity=-2", 1),
            ("https://x/event/a/success?quantity=two", 1),
            ("https://x/event/a/success", 1),
            (None, 1),
        ],
    )
    def test_parse_quantity(self, url: str | None, expected: int) -> None:
        """Quantity is a positive integer from the query string, else 1."""
        assert parse_quantity(url) == expected

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            (SUCCESS_URL, "my-show"),
            ("https://x/en/event/summer-fest/", "summer-fest"),
            ("https://x/events/summer-fest/success", None),
            ("https://x/event", None),
            (None, None),
        ],
    )
    def test_parse_event_slug(self, url: str | None, expected: str | None) -> None:
        """The slug is the path segment after /event/."""
        assert parse_event_slug(url) == expected


class TestTicketTypeResolution:
    """Tests for the ordered ticket type resolution steps."""

    @pytest.mark.asyncio
    async def test_product_reference_wins(self, resolver: IdentityResolver) -> None:
        """The product mapping beats metadata and return URL."""
        identity = await resolver.resolve(
            record(
                product_ref="prod_vip",
                metadata={"ticket_type_id": "tt_42"},
                return_url=SUCCESS_URL,
            )
        )

        assert identity.ticket_type["id"] == "tt_vip"
        assert identity.step == "product_mapping"

    @pytest.mark.asyncio
    async def test_metadata_beats_return_url(self, resolver: IdentityResolver) -> None:
        """Checkout metadata is used before the return URL query."""
        identity = await resolver.resolve(
            record(
                product_ref="prod_unknown",
                metadata={"ticket_type_id": "tt_vip"},
                return_url=SUCCESS_URL,
            )
        )

        assert identity.ticket_type["id"] == "tt_vip"
        assert identity.step == "checkout_metadata"

    @pytest.mark.asyncio
    async def test_scenario_c_return_url_query(self, resolver: IdentityResolver, gateway: FakeGateway) -> None:
        """No product reference and no metadata resolve through ticketTypeId and quantity."""
        identity = await resolver.resolve(record(return_url=SUCCESS_URL))

        assert identity.ticket_type["id"] == "tt_42"
        assert identity.quantity == 3
        assert identity.step == "return_url_query"
        assert identity.user["id"] == USER_ID

    @pytest.mark.asyncio
    async def test_event_slug_requires_single_active_ticket_type(
        self, resolver: IdentityResolver
    ) -> None:
        """An event with two active ticket types cannot be resolved by slug."""
        with pytest.raises(IdentityUnresolvedError):
            await resolver.resolve(
                record(return_url="https://tickets.example.com/event/my-show/success")
            )

    @pytest.mark.asyncio
    async def test_event_slug_is_low_confidence(
        self,
        resolver: IdentityResolver,
        seeded_db: FakeSupabase,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A single active ticket type is picked by slug and logged as low confidence."""
        for tt in seeded_db.rows("ticket_types"):
            if tt["id"] == "tt_vip":
                tt["is_active"] = False

        with caplog.at_level(logging.WARNING, logger="src.services.identity_resolver"):
            identity = await resolver.resolve(
                record(return_url="https://tickets.example.com/event/my-show/success")
            )

        assert identity.ticket_type["id"] == "tt_42"
        assert identity.step == "event_slug"
        assert identity.quantity == 1
        assert any("Low-confidence" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_each_step_tried_in_order(self, resolver: IdentityResolver) -> None:
        """Steps run in declared order and stop at the first match."""
        tried: list[str] = []

        def tracking(name: str, result: Any):
            async def step(context: ResolutionContext) -> Any:
                tried.append(name)
                return result

            return step

        resolver.steps = [
            ("first", tracking("first", None)),
            ("second", tracking("second", None)),
            ("third", resolver._from_checkout_metadata),
            ("fourth", tracking("fourth", None)),
        ]

        match = await resolver.resolve_ticket_type(
            ResolutionContext(record=record(metadata={"ticket_type_id": "tt_42"}), gateway=resolver.gateway)
        )

        assert tried == ["first", "second"]
        assert match.ticket_type["id"] == "tt_42"

    @pytest.mark.asyncio
    async def test_all_steps_fail(self, resolver: IdentityResolver, gateway: FakeGateway) -> None:
        """No product, metadata or return URL anywhere raises IdentityUnresolvedError."""
        with pytest.raises(IdentityUnresolvedError):
            await resolver.resolve(record())

        assert gateway.calls.count("get_checkout_session:cs_test_1") == 1

    @pytest.mark.asyncio
    async def test_checkout_fetched_once_when_record_lacks_details(
        self, resolver: IdentityResolver, gateway: FakeGateway
    ) -> None:
        """Metadata and return URL are read from one checkout lookup."""
        gateway.checkouts["cs_test_1"] = {
            "id": "cs_test_1",
            "metadata": {},
            "success_url": SUCCESS_URL,
        }

        identity = await resolver.resolve(record())

        assert identity.ticket_type["id"] == "tt_42"
        assert identity.quantity == 3
        assert gateway.calls.count("get_checkout_session:cs_test_1") == 1

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, resolver: IdentityResolver, gateway: FakeGateway) -> None:
        """A retryable Stripe failure is not mistaken for an unresolved identity."""
        gateway.unavailable_calls = 1

        with pytest.raises(UpstreamUnavailableError):
            await resolver.resolve(record())


class TestUserResolution:
    """Tests for resolve_user."""

    @pytest.mark.asyncio
    async def test_uses_customer_mapping(self, resolver: IdentityResolver, gateway: FakeGateway) -> None:
        """A mapped customer resolves without calling Stripe."""
        user = await resolver.resolve_user(record())

        assert user["id"] == USER_ID
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_customer_email_and_backfills(
        self, resolver: IdentityResolver, gateway: FakeGateway, seeded_db: FakeSupabase
    ) -> None:
        """An unmapped customer is matched by email, case-insensitively, and then mapped."""
        gateway.customers["cus_new"] = {"id": "cus_new", "email": "Alice@Example.com"}

        user = await resolver.resolve_user(record(customer_ref="cus_new"))

        assert user["id"] == USER_ID
        mapping = [c for c in seeded_db.rows("payment_customers") if c["stripe_customer_id"] == "cus_new"]
        assert len(mapping) == 1
        assert mapping[0]["user_id"] == USER_ID

        gateway.calls.clear()
        assert (await resolver.resolve_user(record(customer_ref="cus_new")))["id"] == USER_ID
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_uses_checkout_email_without_customer(self, resolver: IdentityResolver) -> None:
        """Guest checkouts resolve by the email entered at checkout."""
        user = await resolver.resolve_user(record(customer_ref=None, customer_email="alice@example.com"))

        assert user["id"] == USER_ID

    @pytest.mark.asyncio
    async def test_scenario_d_unknown_customer(
        self, resolver: IdentityResolver, gateway: FakeGateway, seeded_db: FakeSupabase
    ) -> None:
        """Neither mapping nor email match raises and writes nothing."""
        gateway.customers["cus_stranger"] = {"id": "cus_stranger", "email": "stranger@example.com"}
        mappings_before = len(seeded_db.rows("payment_customers"))

        with pytest.raises(IdentityUnresolvedError):
            await resolver.resolve(
                CheckoutCompleted(
                    external_ref="cs_test_d",
                    customer_ref="cus_stranger",
                    status="paid",
                    return_url=SUCCESS_URL,
                )
            )

        assert len(seeded_db.rows("payment_customers")) == mappings_before
        assert seeded_db.rows("orders") == []

    @pytest.mark.asyncio
    async def test_known_user_skips_lookup(self, resolver: IdentityResolver, gateway: FakeGateway) -> None:
        """A caller-supplied user is used as is."""
        caller = {"id": "profile-bob", "email": "bob@example.com"}

        identity = await resolver.resolve(record(customer_ref="cus_other", return_url=SUCCESS_URL), user=caller)

        assert identity.user is caller
        assert not any(call.startswith("get_customer") for call in gateway.calls)
