"""
Quota Service - Per-team daily request allowance.

Limits depend on the team's premium flag and reset at UTC midnight. Two
consistency policies are supported:

- eventual: count the team's usage records since midnight. Requests in flight
  concurrently all see the same count, so a burst can overshoot the limit by
  at most the number of concurrent requests.
- strict: atomically increment a per-team, per-day counter only while it is
  below the limit. Never overshoots. A request consumes quota as soon as it
  passes the check, so one later rejected by payload validation,
  authorization or tenant scope (400, 403, 413) still counts. Under eventual
  such a request writes no usage record and costs nothing.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from rhythm_gateway.config import Settings, settings
from rhythm_gateway.db.models import APIQuotaCounter, utc_now
from rhythm_gateway.exceptions import QuotaExceededError, TransientStoreError
from rhythm_gateway.models.api import QuotaPolicy
from rhythm_gateway.models.domain import Principal, QuotaStatus
from rhythm_gateway.observability.metrics import metrics
from rhythm_gateway.services.entitlements import EntitlementStore
from rhythm_gateway.services.usage_ledger import UsageLedger

logger = get_logger(__name__)


def start_of_utc_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing `now`."""
    now = now.astimezone(UTC)
    return datetime(now.year, now.month, now.day, tzinfo=UTC)


def next_utc_midnight(now: datetime) -> datetime:
    """Start of the next UTC day."""
    return start_of_utc_day(now) + timedelta(days=1)


class QuotaCounter(Protocol):
    """Atomic per-day counters for the strict policy."""

    async def try_increment(self, team_id: str, day: date, limit: int) -> int | None:
        """Increment the counter if below `limit`; return the new count, or None if full."""
        ...

    async def current(self, team_id: str, day: date) -> int:
        """Current counter value (0 if no row)."""
        ...


class SqlQuotaCounter:
    """QuotaCounter backed by a conditional upsert on api_quota_counters."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def try_increment(self, team_id: str, day: date, limit: int) -> int | None:
        stmt = pg_insert(APIQuotaCounter).values(team_id=team_id, day=day, count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[APIQuotaCounter.team_id, APIQuotaCounter.day],
            set_={"count": APIQuotaCounter.count + 1},
            where=APIQuotaCounter.count < limit,
        ).returning(APIQuotaCounter.count)

        try:
            result = await self.session.execute(stmt)
            count = result.scalar_one_or_none()
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("quota_increment", str(exc)) from exc
        return count

    async def current(self, team_id: str, day: date) -> int:
        try:
            result = await self.session.execute(
                select(APIQuotaCounter.count).where(
                    APIQuotaCounter.team_id == team_id, APIQuotaCounter.day == day
                )
            )
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("quota_current", str(exc)) from exc
        return int(result.scalar_one_or_none() or 0)


class QuotaService:
    """Decides whether a team may make another request today."""

    def __init__(
        self,
        entitlements: EntitlementStore,
        ledger: UsageLedger,
        counter: QuotaCounter | None = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.entitlements = entitlements
        self.ledger = ledger
        self.counter = counter
        self.config = config
        self.clock = clock

    @property
    def policy(self) -> QuotaPolicy:
        return QuotaPolicy(self.config.quota_policy)

    async def daily_limit(self, team_id: str) -> tuple[int, bool]:
        """Return (limit, is_premium) for a team. Unknown teams get the free limit."""
        entitlement = await self.entitlements.get(team_id)
        premium = bool(entitlement and entitlement.is_premium)
        limit = (
            self.config.premium_daily_request_limit
            if premium
            else self.config.free_daily_request_limit
        )
        return limit, premium

    async def usage_today(self, team_id: str) -> int:
        """Requests already counted against today's quota."""
        now = self.clock()
        if self.policy == QuotaPolicy.STRICT and self.counter is not None:
            return await self.counter.current(team_id, start_of_utc_day(now).date())
        return await self.ledger.count_for_team_since(team_id, start_of_utc_day(now))

    async def check(self, principal: Principal) -> QuotaStatus:
        """
        Admit one request for the principal's team.

        Returns:
            QuotaStatus where `used` includes the admitted request.

        Raises:
            QuotaExceededError: If the team has used its full allowance.
        """
        now = self.clock()
        day_start = start_of_utc_day(now)
        reset = next_utc_midnight(now)
        limit, premium = await self.daily_limit(principal.team_id)

        if self.policy == QuotaPolicy.STRICT and self.counter is not None:
            count = await self.counter.try_increment(principal.team_id, day_start.date(), limit)
            if count is None:
                used = await self.counter.current(principal.team_id, day_start.date())
                self._reject(principal, limit, used, premium)
                raise QuotaExceededError(limit=limit, used=used, reset=reset)
            used = count
        else:
            already = await self.ledger.count_for_team_since(principal.team_id, day_start)
            if already >= limit:
                self._reject(principal, limit, already, premium)
                raise QuotaExceededError(limit=limit, used=already, reset=reset)
            used = already + 1

        metrics.record_quota_decision(premium=premium, allowed=True)
        return QuotaStatus(limit=limit, used=used, reset=reset)

    def _reject(self, principal: Principal, limit: int, used: int, premium: bool) -> None:
        metrics.record_quota_decision(premium=premium, allowed=False)
        logger.warning(
            "quota_exceeded",
            team_id=principal.team_id,
            key_id=str(principal.key_id),
            limit=limit,
            used=used,
            policy=self.policy.value,
        )
