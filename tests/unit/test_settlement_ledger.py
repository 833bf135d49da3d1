"""Unit tests for SettlementLedger and its identifier helpers."""

import logging
import re
from datetime import datetime, timedelta, timezone

import pytest

from src.services.settlement_ledger import (
    FAILURES_TABLE,
    SettlementLedger,
    generate_order_number,
    generate_qr_code,
    generate_ticket_number,
)
from tests.conftest import EVENT_ID, USER_ID
from tests.fakes import FakeSupabase


class TestIdentifiers:
    """Tests for the human-readable identifier generators."""

    def test_order_number_format(self) -> None:
        """Order numbers look like NP-<base36 time>-<4 chars>."""
        assert re.fullmatch(r"NP-[0-9A-Z]+-[0-9A-Z]{4}", generate_order_number())

    def test_ticket_number_format(self) -> None:
        """Ticket numbers look like TKT-<base36 time>-<6 chars>."""
        assert re.fullmatch(r"TKT-[0-9A-Z]+-[0-9A-Z]{6}", generate_ticket_number())

    def test_qr_codes_are_unique(self) -> None:
        """QR tokens are random and URL-safe."""
        codes = {generate_qr_code() for _ in range(100)}

        assert len(codes) == 100
        assert all(re.fullmatch(r"[A-Za-z0-9_-]+", code) for code in codes)


class TestLookups:
    """Tests for order lookups."""

    @pytest.mark.asyncio
    async def test_find_latest_order_respects_since(self, db: FakeSupabase) -> None:
        """Only orders at or after `since` are returned, newest first."""
        now = datetime.now(timezone.utc)
        for ref, age in (("cs_old", 30), ("cs_mid", 5), ("cs_new", 1)):
            db.seed(
                "orders",
                {
                    "user_id": USER_ID,
                    "event_id": EVENT_ID,
                    "stripe_checkout_session_id": ref,
                    "created_at": (now - timedelta(minutes=age)).isoformat(),
                },
            )
        ledger = SettlementLedger(db)

        latest = await ledger.find_latest_order(USER_ID, EVENT_ID, since=now - timedelta(minutes=10))
        none = await ledger.find_latest_order(USER_ID, "other-event", since=now - timedelta(minutes=10))

        assert latest is not None
        assert latest["stripe_checkout_session_id"] == "cs_new"
        assert none is None

    @pytest.mark.asyncio
    async def test_list_ticket_ids(self, db: FakeSupabase) -> None:
        """Ticket IDs are scoped to their order."""
        db.seed(
            "tickets",
            {"id": "t1", "order_id": "o1", "ticket_number": "TKT-1"},
            {"id": "t2", "order_id": "o1", "ticket_number": "TKT-2"},
            {"id": "t3", "order_id": "o2", "ticket_number": "TKT-3"},
        )

        assert await SettlementLedger(db).list_ticket_ids("o1") == ["t1", "t2"]


class TestWrites:
    """Tests for order writes and failure records."""

    def test_delete_order_removes_tickets(self, db: FakeSupabase) -> None:
        """Undoing a settlement removes the order and every ticket it owns."""
        ledger = SettlementLedger(db)
        order = ledger.insert_order({"stripe_checkout_session_id": "cs_1", "order_number": "NP-1"})
        ledger.insert_tickets(
            [
                {"order_id": order["id"], "ticket_number": "TKT-1", "qr_code": "a"},
                {"order_id": order["id"], "ticket_number": "TKT-2", "qr_code": "b"},
            ]
        )

        ledger.delete_order(order["id"])

        assert db.rows("orders") == []
        assert db.rows("tickets") == []

    @pytest.mark.asyncio
    async def test_record_failure(self, db: FakeSupabase) -> None:
        """Failures are stored with their notification payload."""
        await SettlementLedger(db).record_failure(
            "cs_1", "identity_unresolved", "no match", {"external_ref": "cs_1"}
        )

        [row] = db.rows(FAILURES_TABLE)
        assert row["stripe_checkout_session_id"] == "cs_1"
        assert row["error_type"] == "identity_unresolved"
        assert row["notification"] == {"external_ref": "cs_1"}

    @pytest.mark.asyncio
    async def test_record_failure_never_raises(
        self, db: FakeSupabase, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failure to record is logged with the row instead of raised."""
        db.fail_on(FAILURES_TABLE, "insert")

        with caplog.at_level(logging.ERROR, logger="src.services.settlement_ledger"):
            await SettlementLedger(db).record_failure("cs_1", "identity_unresolved", "no match")

        assert db.rows(FAILURES_TABLE) == []
        assert any("cs_1" in r.getMessage() for r in caplog.records)
