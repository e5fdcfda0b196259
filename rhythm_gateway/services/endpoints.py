"""
Endpoint Registry - Public /api endpoints and their handlers.

Handlers run only after the gateway has authenticated the caller, charged the
quota, validated the body and checked every referenced resource against the
caller's team.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from structlog import get_logger

from rhythm_gateway.db.models import utc_now
from rhythm_gateway.exceptions import InvalidFieldError, TenantAccessError
from rhythm_gateway.models.api import (
    AnalyticsResponse,
    ApiKeyCreatedResponse,
    ApiKeyListResponse,
    ApiKeyResponse,
    ApiKeyRevokedResponse,
    CheckoutResponse,
    PlayDetailResponse,
    PlayListResponse,
    RateLimitInfo,
    ResourceType,
    SignalDetailResponse,
    SignalListResponse,
    SubscriptionPlan,
    TeamMemberListResponse,
    UsageSummaryResponse,
    UsageTotals,
)
from rhythm_gateway.services.api_key import APIKeyService
from rhythm_gateway.services.entitlements import EntitlementStore
from rhythm_gateway.services.gateway import (
    EndpointSpec,
    GatewayResponse,
    ParamSource,
    RequestContext,
    ResourceRef,
)
from rhythm_gateway.services.quota import start_of_utc_day
from rhythm_gateway.services.resources import ResourceRepository
from rhythm_gateway.services.stripe_provider import StripeCheckoutProvider
from rhythm_gateway.services.usage_ledger import UsageLedger

logger = get_logger(__name__)

USAGE_WINDOW_DAYS = 7


def _optional_str(value: Any) -> str | None:
    return None if value in (None, "") else str(value)


class ResourceHandlers:
    """Resource handlers bound to one request's stores and providers."""

    def __init__(
        self,
        resources: ResourceRepository,
        api_keys: APIKeyService,
        ledger: UsageLedger,
        entitlements: EntitlementStore,
        checkout: StripeCheckoutProvider,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.resources = resources
        self.api_keys = api_keys
        self.ledger = ledger
        self.entitlements = entitlements
        self.checkout = checkout
        self.clock = clock

    # plays

    async def list_plays(self, ctx: RequestContext) -> GatewayResponse:
        plays = await self.resources.list_plays(ctx.principal.team_id)
        return GatewayResponse(200, PlayListResponse(plays=plays))

    async def get_play(self, ctx: RequestContext) -> GatewayResponse:
        play_id = ctx.path_params["play_id"]
        play = await self.resources.get_play(ctx.principal.team_id, play_id)
        if play is None:
            raise TenantAccessError(ResourceType.PLAY.value, play_id)
        return GatewayResponse(200, PlayDetailResponse(play=play))

    async def create_play(self, ctx: RequestContext) -> GatewayResponse:
        play = await self.resources.create_play(
            team_id=ctx.principal.team_id,
            name=str(ctx.body["name"]),
            target_outcome=str(ctx.body["target_outcome"]),
            why_this_play=_optional_str(ctx.body.get("why_this_play")),
            how_to_run=_optional_str(ctx.body.get("how_to_run")),
        )
        logger.info("play_created", team_id=ctx.principal.team_id, play_id=play.id)
        return GatewayResponse(201, PlayDetailResponse(play=play))

    # signals

    async def list_signals(self, ctx: RequestContext) -> GatewayResponse:
        signals = await self.resources.list_signals(
            ctx.principal.team_id, play_id=_optional_str(ctx.query_params.get("play_id"))
        )
        return GatewayResponse(200, SignalListResponse(signals=signals))

    async def create_signal(self, ctx: RequestContext) -> GatewayResponse:
        signal = await self.resources.create_signal(
            play_id=str(ctx.body["play_id"]),
            meaning=str(ctx.body["meaning"]),
            action=str(ctx.body["action"]),
            observation=_optional_str(ctx.body.get("observation")),
        )
        logger.info("signal_created", team_id=ctx.principal.team_id, signal_id=signal.id)
        return GatewayResponse(201, SignalDetailResponse(signal=signal))

    # analytics and usage

    async def analytics(self, ctx: RequestContext) -> GatewayResponse:
        summary = await self.resources.analytics(ctx.principal.team_id)
        return GatewayResponse(200, AnalyticsResponse(analytics=summary))

    async def developer_usage(self, ctx: RequestContext) -> GatewayResponse:
        since = start_of_utc_day(self.clock()) - timedelta(days=USAGE_WINDOW_DAYS - 1)
        daily = await self.ledger.daily_usage(ctx.principal.team_id, since)

        total_requests = sum(day.request_count for day in daily)
        weighted = sum(day.avg_response_time * day.request_count for day in daily)
        totals = UsageTotals(
            total_requests=total_requests,
            active_days=len(daily),
            overall_avg_response_time=round(weighted / total_requests, 2) if total_requests else 0,
        )
        rate_limit = RateLimitInfo(
            daily=ctx.quota.limit, used=ctx.quota.used, remaining=ctx.quota.remaining
        )
        return GatewayResponse(
            200,
            UsageSummaryResponse(daily_usage=daily, total_stats=totals, rate_limit=rate_limit),
        )

    # billing

    async def create_checkout(self, ctx: RequestContext) -> GatewayResponse:
        try:
            plan = SubscriptionPlan(ctx.body["plan"])
        except ValueError as exc:
            raise InvalidFieldError("plan", f"unsupported plan {ctx.body['plan']!r}") from exc

        team_id = ctx.principal.team_id
        entitlement = await self.entitlements.get(team_id)
        customer_id = entitlement.stripe_customer_id if entitlement else None

        if customer_id is None:
            team_name = await self.resources.team_name(team_id) or team_id
            email = await self.resources.user_email(ctx.principal.user_id)
            customer_id = await self.checkout.create_customer(team_id, team_name, email)
            await self.resources.set_stripe_customer(team_id, customer_id)

        session = await self.checkout.create_checkout_session(
            team_id=team_id,
            user_id=ctx.principal.user_id,
            plan=plan,
            customer_id=customer_id,
        )
        return GatewayResponse(
            200, CheckoutResponse(id=session.session_id, url=session.url, plan=plan)
        )

    # admin

    async def list_members(self, ctx: RequestContext) -> GatewayResponse:
        members = await self.resources.list_members(ctx.principal.team_id)
        return GatewayResponse(200, TeamMemberListResponse(users=members))

    async def list_keys(self, ctx: RequestContext) -> GatewayResponse:
        records = await self.api_keys.list_api_keys(ctx.principal.team_id)
        keys = [
            ApiKeyResponse(
                id=record.key_id,
                name=record.name,
                key_prefix=record.key_prefix,
                created_at=record.created_at,
                last_used_at=record.last_used_at,
            )
            for record in records
        ]
        return GatewayResponse(200, ApiKeyListResponse(keys=keys))

    async def create_key(self, ctx: RequestContext) -> GatewayResponse:
        generated = await self.api_keys.create_api_key(
            name=str(ctx.body["name"]),
            team_id=ctx.principal.team_id,
            user_id=ctx.principal.user_id,
        )
        return GatewayResponse(
            201,
            ApiKeyCreatedResponse(
                id=generated.key_id,
                name=generated.name,
                key=generated.plaintext_key,
                key_prefix=generated.key_prefix,
                created_at=generated.created_at,
            ),
        )

    async def revoke_key(self, ctx: RequestContext) -> GatewayResponse:
        key_id = UUID(ctx.path_params["key_id"])
        revoked = await self.api_keys.revoke_api_key(key_id, ctx.principal.team_id)
        return GatewayResponse(200, ApiKeyRevokedResponse(id=key_id, revoked=revoked))


def build_endpoints(handlers: ResourceHandlers) -> list[EndpointSpec]:
    """The public API surface served through the gateway."""
    play_in_path = ResourceRef(ParamSource.PATH, "play_id", ResourceType.PLAY)
    return [
        EndpointSpec("GET", "/api/plays", handlers.list_plays),
        EndpointSpec(
            "POST",
            "/api/plays",
            handlers.create_play,
            required_fields=("name", "target_outcome"),
        ),
        EndpointSpec(
            "GET", "/api/plays/{play_id}", handlers.get_play, resource_refs=(play_in_path,)
        ),
        EndpointSpec(
            "GET",
            "/api/signals",
            handlers.list_signals,
            resource_refs=(ResourceRef(ParamSource.QUERY, "play_id", ResourceType.PLAY),),
        ),
        EndpointSpec(
            "POST",
            "/api/signals",
            handlers.create_signal,
            required_fields=("play_id", "meaning", "action"),
            resource_refs=(ResourceRef(ParamSource.BODY, "play_id", ResourceType.PLAY),),
        ),
        EndpointSpec("GET", "/api/analytics", handlers.analytics),
        EndpointSpec("GET", "/api/developer/usage", handlers.developer_usage),
        EndpointSpec(
            "POST",
            "/api/billing/checkout",
            handlers.create_checkout,
            required_fields=("plan",),
            requires_admin=True,
        ),
        EndpointSpec("GET", "/api/admin/users", handlers.list_members),
        EndpointSpec("GET", "/api/admin/keys", handlers.list_keys),
        EndpointSpec("POST", "/api/admin/keys", handlers.create_key, required_fields=("name",)),
        EndpointSpec(
            "DELETE",
            "/api/admin/keys/{key_id}",
            handlers.revoke_key,
            resource_refs=(ResourceRef(ParamSource.PATH, "key_id", ResourceType.API_KEY),),
        ),
    ]
