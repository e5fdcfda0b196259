"""
Entitlement Store - Team premium state, member mirrors and processed-event ledger.

NO DICTIONARIES - Reads return EntitlementData, writes take EntitlementChange.

A transition is one database transaction: the processed-event marker, the
team row and every member's users.is_premium mirror commit together or not
at all.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from rhythm_gateway.db.models import ProcessedWebhookEvent, Team, TeamUser, User, utc_now
from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.models.api import BillingStatus
from rhythm_gateway.models.domain import EntitlementChange, EntitlementData, WebhookEvent

logger = get_logger(__name__)


class EntitlementStore(Protocol):
    """Data access for team entitlements."""

    async def get(self, team_id: str) -> EntitlementData | None:
        """Current entitlement of a team, None if the team does not exist."""
        ...

    async def find_team_by_customer(self, customer_id: str) -> str | None:
        """Team id associated with a Stripe customer id."""
        ...

    async def is_processed(self, event_id: str) -> bool:
        """Whether a transition for this event id has already been committed."""
        ...

    async def apply(
        self, team_id: str, change: EntitlementChange, event: WebhookEvent
    ) -> int | None:
        """
        Commit a transition atomically.

        Returns:
            Number of member mirrors updated, or None if another delivery of
            the same event committed first (nothing written).
        """
        ...


def _to_entitlement(team: Team) -> EntitlementData:
    return EntitlementData(
        team_id=team.id,
        is_premium=team.is_premium,
        billing_status=BillingStatus(team.billing_status),
        at_risk=team.at_risk,
        stripe_customer_id=team.stripe_customer_id,
        stripe_subscription_id=team.stripe_subscription_id,
        plan=team.plan,
        premium_grace_until=team.premium_grace_until,
        billing_event_at=team.billing_event_at,
    )


class SqlEntitlementStore:
    """EntitlementStore backed by teams, users, team_users and processed_webhook_events."""

    def __init__(
        self, session: AsyncSession, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.session = session
        self.clock = clock

    async def get(self, team_id: str) -> EntitlementData | None:
        try:
            result = await self.session.execute(select(Team).where(Team.id == team_id))
            team = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("entitlement_get", str(exc)) from exc
        return _to_entitlement(team) if team is not None else None

    async def find_team_by_customer(self, customer_id: str) -> str | None:
        try:
            result = await self.session.execute(
                select(Team.id).where(Team.stripe_customer_id == customer_id)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("entitlement_find_customer", str(exc)) from exc

    async def is_processed(self, event_id: str) -> bool:
        try:
            result = await self.session.execute(
                select(ProcessedWebhookEvent.event_id).where(
                    ProcessedWebhookEvent.event_id == event_id
                )
            )
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("entitlement_is_processed", str(exc)) from exc

    async def apply(
        self, team_id: str, change: EntitlementChange, event: WebhookEvent
    ) -> int | None:
        now = self.clock()

        marker_stmt = (
            pg_insert(ProcessedWebhookEvent)
            .values(
                event_id=event.event_id,
                event_type=event.event_type,
                team_id=team_id,
                processed_at=now,
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
        )

        team_stmt = (
            update(Team)
            .where(Team.id == team_id)
            .values(
                is_premium=change.is_premium,
                billing_status=change.billing_status.value,
                at_risk=change.at_risk,
                stripe_subscription_id=change.stripe_subscription_id,
                plan=change.plan,
                premium_grace_until=change.premium_grace_until,
                updated_at=now,
            )
        )
        if change.stripe_customer_id is not None:
            team_stmt = team_stmt.values(stripe_customer_id=change.stripe_customer_id)
        if event.created is not None:
            team_stmt = team_stmt.values(billing_event_at=event.created)

        members = select(TeamUser.user_id).where(TeamUser.team_id == team_id)
        mirror_stmt = (
            update(User)
            .where(User.id.in_(members))
            .values(is_premium=change.is_premium)
            .execution_options(synchronize_session=False)
        )

        try:
            marker = await self.session.execute(marker_stmt)
            if marker.rowcount == 0:
                # Concurrent delivery of the same event already committed
                await self.session.rollback()
                logger.info("entitlement_apply_raced", event_id=event.event_id, team_id=team_id)
                return None

            await self.session.execute(team_stmt)
            mirrored = await self.session.execute(mirror_stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "entitlement_apply_failed",
                event_id=event.event_id,
                team_id=team_id,
                error=str(exc),
            )
            raise TransientStoreError("entitlement_apply", str(exc)) from exc

        return int(mirrored.rowcount or 0)
