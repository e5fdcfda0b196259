"""
Resource Repository - Team-scoped reads and writes behind the public API.

Ownership lookups answer a single question: does this resource belong to this
team? A resource that does not exist and a resource owned by another team
give the same answer, so callers cannot learn whether it exists.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from rhythm_gateway.db.models import APIKey, Play, Signal, Team, TeamUser, User, utc_now
from rhythm_gateway.exceptions import TransientStoreError
from rhythm_gateway.models.api import (
    AnalyticsSummary,
    PlayResponse,
    ResourceType,
    SignalResponse,
    TeamMemberResponse,
)

logger = get_logger(__name__)


class OwnershipResolver(Protocol):
    """Tenant ownership checks used by the gateway."""

    async def owns(self, team_id: str, resource_type: ResourceType, resource_id: str) -> bool:
        ...


def _play(play: Play) -> PlayResponse:
    return PlayResponse(
        id=play.id,
        name=play.name,
        target_outcome=play.target_outcome,
        why_this_play=play.why_this_play,
        how_to_run=play.how_to_run,
        status=play.status,
        created_at=play.created_at,
    )


def _signal(signal: Signal, play_name: str | None) -> SignalResponse:
    return SignalResponse(
        id=signal.id,
        play_id=signal.play_id,
        play_name=play_name,
        observation=signal.observation,
        meaning=signal.meaning,
        action=signal.action,
        created_at=signal.created_at,
    )


class ResourceRepository:
    """
    SQL access to plays, signals, members and team billing profile.

    The session is shared with the usage ledger for the same request, so every
    failed statement rolls the session back before raising TransientStoreError.
    """

    def __init__(
        self, session: AsyncSession, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self.session = session
        self.clock = clock

    async def _failed(self, operation: str, exc: SQLAlchemyError) -> TransientStoreError:
        await self.session.rollback()
        logger.error("resource_store_failed", operation=operation, error=str(exc))
        return TransientStoreError(operation, str(exc))

    async def owns(self, team_id: str, resource_type: ResourceType, resource_id: str) -> bool:
        if resource_type == ResourceType.PLAY:
            stmt = select(Play.id).where(Play.id == resource_id, Play.team_id == team_id)
        elif resource_type == ResourceType.SIGNAL:
            stmt = (
                select(Signal.id)
                .join(Play, Play.id == Signal.play_id)
                .where(Signal.id == resource_id, Play.team_id == team_id)
            )
        elif resource_type == ResourceType.API_KEY:
            try:
                key_id = UUID(resource_id)
            except ValueError:
                return False
            stmt = select(APIKey.id).where(APIKey.id == key_id, APIKey.team_id == team_id)
        else:
            return False

        try:
            result = await self.session.execute(stmt)
            return result.first() is not None
        except SQLAlchemyError as exc:
            raise await self._failed("ownership_lookup", exc) from exc

    # ------------------------------------------------------------------ plays

    async def list_plays(self, team_id: str) -> list[PlayResponse]:
        try:
            result = await self.session.execute(
                select(Play).where(Play.team_id == team_id).order_by(Play.created_at.desc())
            )
            plays = result.scalars().all()
        except SQLAlchemyError as exc:
            raise await self._failed("play_list", exc) from exc
        return [_play(play) for play in plays]

    async def get_play(self, team_id: str, play_id: str) -> PlayResponse | None:
        try:
            result = await self.session.execute(
                select(Play).where(Play.id == play_id, Play.team_id == team_id)
            )
            play = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise await self._failed("play_get", exc) from exc
        return _play(play) if play is not None else None

    async def create_play(
        self,
        team_id: str,
        name: str,
        target_outcome: str,
        why_this_play: str | None = None,
        how_to_run: str | None = None,
    ) -> PlayResponse:
        play = Play(
            id=str(uuid4()),
            team_id=team_id,
            name=name,
            target_outcome=target_outcome,
            why_this_play=why_this_play,
            how_to_run=how_to_run,
            status="active",
            created_at=self.clock(),
        )
        try:
            self.session.add(play)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._failed("play_create", exc) from exc
        return _play(play)

    # ---------------------------------------------------------------- signals

    async def list_signals(self, team_id: str, play_id: str | None = None) -> list[SignalResponse]:
        stmt = (
            select(Signal, Play.name)
            .join(Play, Play.id == Signal.play_id)
            .where(Play.team_id == team_id)
        )
        if play_id is not None:
            stmt = stmt.where(Signal.play_id == play_id)
        try:
            result = await self.session.execute(stmt.order_by(Signal.created_at.desc()))
            rows = result.all()
        except SQLAlchemyError as exc:
            raise await self._failed("signal_list", exc) from exc
        return [_signal(signal, play_name) for signal, play_name in rows]

    async def create_signal(
        self, play_id: str, meaning: str, action: str, observation: str | None = None
    ) -> SignalResponse:
        signal = Signal(
            id=str(uuid4()),
            play_id=play_id,
            observation=observation,
            meaning=meaning,
            action=action,
            created_at=self.clock(),
        )
        try:
            self.session.add(signal)
            await self.session.commit()
            play_name = await self.session.scalar(select(Play.name).where(Play.id == play_id))
        except SQLAlchemyError as exc:
            raise await self._failed("signal_create", exc) from exc
        return _signal(signal, play_name)

    # -------------------------------------------------------------- analytics

    async def analytics(self, team_id: str) -> AnalyticsSummary:
        try:
            total_plays = await self.session.scalar(
                select(func.count(Play.id)).where(Play.team_id == team_id)
            )
            active_plays = await self.session.scalar(
                select(func.count(Play.id)).where(
                    Play.team_id == team_id, Play.status == "active"
                )
            )
            total_signals = await self.session.scalar(
                select(func.count(Signal.id))
                .join(Play, Play.id == Signal.play_id)
                .where(Play.team_id == team_id)
            )
        except SQLAlchemyError as exc:
            raise await self._failed("analytics", exc) from exc
        return AnalyticsSummary(
            total_plays=total_plays or 0,
            active_plays=active_plays or 0,
            total_signals=total_signals or 0,
        )

    # ---------------------------------------------------------- team / users

    async def list_members(self, team_id: str) -> list[TeamMemberResponse]:
        try:
            result = await self.session.execute(
                select(User, TeamUser.role)
                .join(TeamUser, TeamUser.user_id == User.id)
                .where(TeamUser.team_id == team_id)
                .order_by(User.email)
            )
            rows = result.all()
        except SQLAlchemyError as exc:
            raise await self._failed("member_list", exc) from exc
        return [
            TeamMemberResponse(
                id=user.id,
                email=user.email,
                name=user.name,
                role=role,
                is_premium=user.is_premium,
            )
            for user, role in rows
        ]

    async def team_name(self, team_id: str) -> str | None:
        try:
            return await self.session.scalar(select(Team.name).where(Team.id == team_id))
        except SQLAlchemyError as exc:
            raise await self._failed("team_name", exc) from exc

    async def user_email(self, user_id: str) -> str | None:
        try:
            return await self.session.scalar(select(User.email).where(User.id == user_id))
        except SQLAlchemyError as exc:
            raise await self._failed("user_email", exc) from exc

    async def set_stripe_customer(self, team_id: str, customer_id: str) -> None:
        """Associate a newly created Stripe customer with a team."""
        try:
            await self.session.execute(
                update(Team)
                .where(Team.id == team_id, Team.stripe_customer_id.is_(None))
                .values(stripe_customer_id=customer_id, updated_at=self.clock())
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._failed("set_stripe_customer", exc) from exc
