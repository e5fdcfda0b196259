"""
Tests for SqlEntitlementStore.

Uses mocked database sessions to verify transaction handling: a transition
commits once, and any failure rolls back and surfaces as TransientStoreError.
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest
from conftest import NOW, TEAM_ID, fixed_clock
from sqlalchemy.exc import OperationalError

from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.models.api import BillingStatus
from rhythm_gateway.models.domain import EntitlementChange, WebhookEvent
from rhythm_gateway.services.entitlements import SqlEntitlementStore

PREMIUM = EntitlementChange(
    is_premium=True,
    billing_status=BillingStatus.ACTIVE,
    at_risk=False,
    stripe_subscription_id="sub_123",
    plan="monthly",
)
EVENT = WebhookEvent(
    event_id="evt_1",
    event_type="customer.subscription.updated",
    created=datetime(2026, 10, 18, 12, 0, tzinfo=UTC),
    customer_id="cus_alpha",
    status="active",
)


def _result(rowcount: int) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    return result


def _team_row(**overrides):
    row = MagicMock()
    row.id = TEAM_ID
    row.is_premium = False
    row.billing_status = "past_due"
    row.at_risk = True
    row.stripe_customer_id = "cus_alpha"
    row.stripe_subscription_id = "sub_123"
    row.plan = "yearly"
    row.premium_grace_until = None
    row.billing_event_at = NOW
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


# ============================================================================
# Reads
# ============================================================================


class TestEntitlementReads:
    """Tests for get, find_team_by_customer and is_processed."""

    async def test_get_maps_team_row(self, db_session):
        """A team row becomes EntitlementData with a typed billing status."""
        db_session.execute.return_value.scalar_one_or_none.return_value = _team_row()

        entitlement = await SqlEntitlementStore(db_session).get(TEAM_ID)

        assert entitlement is not None
        assert entitlement.team_id == TEAM_ID
        assert entitlement.billing_status == BillingStatus.PAST_DUE
        assert entitlement.at_risk is True
        assert entitlement.plan == "yearly"
        assert entitlement.billing_event_at == NOW

    async def test_get_unknown_team(self, db_session):
        """A missing team reads as None."""
        assert await SqlEntitlementStore(db_session).get("team-ghost") is None

    async def test_find_team_by_customer(self, db_session):
        """The customer lookup returns the team id column."""
        db_session.execute.return_value.scalar_one_or_none.return_value = TEAM_ID

        assert await SqlEntitlementStore(db_session).find_team_by_customer("cus_alpha") == TEAM_ID

    async def test_is_processed(self, db_session):
        """An existing marker row means the event was already applied."""
        store = SqlEntitlementStore(db_session)
        assert await store.is_processed("evt_1") is False

        db_session.execute.return_value.scalar_one_or_none.return_value = "evt_1"
        assert await store.is_processed("evt_1") is True

    async def test_read_failure_is_transient(self, db_session):
        """Database errors on reads surface as TransientStoreError."""
        db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(TransientStoreError) as exc_info:
            await SqlEntitlementStore(db_session).get(TEAM_ID)
        assert exc_info.value.operation == "entitlement_get"


# ============================================================================
# Apply
# ============================================================================


class TestEntitlementApply:
    """Tests for the atomic apply transaction."""

    async def test_apply_commits_once(self, db_session):
        """Marker, team and mirror statements run, then one commit."""
        db_session.execute.side_effect = [_result(1), _result(1), _result(3)]

        members = await SqlEntitlementStore(db_session, clock=fixed_clock()).apply(
            TEAM_ID, PREMIUM, EVENT
        )

        assert members == 3
        assert db_session.execute.await_count == 3
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    async def test_apply_raced_duplicate_writes_nothing(self, db_session):
        """If the marker already exists, nothing else executes."""
        db_session.execute.side_effect = [_result(0)]

        members = await SqlEntitlementStore(db_session).apply(TEAM_ID, PREMIUM, EVENT)

        assert members is None
        assert db_session.execute.await_count == 1
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    async def test_apply_failure_rolls_back(self, db_session):
        """A failure after the marker rolls back the whole transition."""
        db_session.execute.side_effect = [
            _result(1),
            OperationalError("UPDATE teams", {}, Exception("connection reset")),
        ]

        with pytest.raises(TransientStoreError) as exc_info:
            await SqlEntitlementStore(db_session).apply(TEAM_ID, PREMIUM, EVENT)

        assert exc_info.value.operation == "entitlement_apply"
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    async def test_commit_failure_rolls_back(self, db_session):
        """A failed commit is rolled back and reported as transient."""
        db_session.execute.side_effect = [_result(1), _result(1), _result(2)]
        db_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("lost"))

        with pytest.raises(TransientStoreError):
            await SqlEntitlementStore(db_session).apply(TEAM_ID, PREMIUM, EVENT)

        db_session.rollback.assert_awaited_once()

    async def test_team_update_carries_billing_event_time(self, db_session):
        """The team update records the event's creation time for ordering."""
        db_session.execute.side_effect = [_result(1), _result(1), _result(0)]

        await SqlEntitlementStore(db_session).apply(TEAM_ID, PREMIUM, EVENT)

        team_stmt = db_session.execute.await_args_list[1].args[0]
        params = team_stmt.compile().params
        assert params["billing_event_at"] == EVENT.created
        assert params["is_premium"] is True
        assert params["billing_status"] == "active"
        assert "stripe_customer_id" not in params
