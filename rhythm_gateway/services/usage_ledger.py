"""
Usage Ledger - Append-only log of dispatched gateway requests.

Counts are always aggregated per team across all of the team's keys, never
per key.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy import Integer, cast, func, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rhythm_gateway.db.models import APIKey, APIUsageLog
from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.models.api import DailyUsage
from rhythm_gateway.models.domain import UsageRecordData


class UsageLedger(Protocol):
    """Append and query usage records."""

    async def record(self, usage: UsageRecordData) -> None:
        """Append one usage record."""
        ...

    async def count_for_team_since(self, team_id: str, since: datetime) -> int:
        """Number of records for all of a team's keys created at or after `since`."""
        ...

    async def daily_usage(self, team_id: str, since: datetime) -> list[DailyUsage]:
        """Per-UTC-day usage breakdown for a team, oldest first."""
        ...

    async def discard_pending(self) -> None:
        """Drop uncommitted work a failed handler left on a shared connection."""
        ...


class SqlUsageLedger:
    """UsageLedger backed by api_usage_logs joined to api_keys."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(self, usage: UsageRecordData) -> None:
        stmt = insert(APIUsageLog).values(
            api_key_id=usage.key_id,
            endpoint=usage.endpoint,
            method=usage.method,
            response_code=usage.response_code,
            response_time_ms=usage.response_time_ms,
            created_at=usage.created_at,
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("usage_record", str(exc)) from exc

    async def discard_pending(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as exc:
            raise TransientStoreError("usage_discard", str(exc)) from exc

    async def count_for_team_since(self, team_id: str, since: datetime) -> int:
        stmt = (
            select(func.count(APIUsageLog.id))
            .join(APIKey, APIKey.id == APIUsageLog.api_key_id)
            .where(APIKey.team_id == team_id, APIUsageLog.created_at >= since)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("usage_count", str(exc)) from exc
        return int(result.scalar_one() or 0)

    async def daily_usage(self, team_id: str, since: datetime) -> list[DailyUsage]:
        day = func.date(func.timezone("UTC", APIUsageLog.created_at)).label("day")
        stmt = (
            select(
                day,
                func.count(APIUsageLog.id),
                func.avg(APIUsageLog.response_time_ms),
                func.sum(cast(APIUsageLog.response_code >= 400, Integer)),
            )
            .join(APIKey, APIKey.id == APIUsageLog.api_key_id)
            .where(APIKey.team_id == team_id, APIUsageLog.created_at >= since)
            .group_by(day)
            .order_by(day)
        )
        try:
            result = await self.session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise TransientStoreError("usage_daily", str(exc)) from exc
        return [
            DailyUsage(
                date=str(row_day),
                request_count=int(count),
                avg_response_time=round(float(avg or 0), 2),
                error_count=int(errors or 0),
            )
            for row_day, count, avg, errors in rows
        ]
