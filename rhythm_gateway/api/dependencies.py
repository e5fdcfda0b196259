"""
FastAPI Dependencies - Per-request construction of the gateway and webhook processor.

NO DICTIONARIES - All dependencies return typed objects.

Every store shares the request's AsyncSession. Tests replace these factories
through app.dependency_overrides.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rhythm_gateway.config import Settings, get_settings
from rhythm_gateway.db.session import get_write_db
from rhythm_gateway.services.api_key import APIKeyService, SqlKeyStore
from rhythm_gateway.services.endpoints import ResourceHandlers, build_endpoints
from rhythm_gateway.services.entitlements import SqlEntitlementStore
from rhythm_gateway.services.gateway import ApiGateway
from rhythm_gateway.services.quota import QuotaService, SqlQuotaCounter
from rhythm_gateway.services.resources import ResourceRepository
from rhythm_gateway.services.stripe_provider import StripeCheckoutProvider
from rhythm_gateway.services.usage_ledger import SqlUsageLedger
from rhythm_gateway.services.webhook import WebhookProcessor


def get_checkout_provider(
    config: Settings = Depends(get_settings),
) -> StripeCheckoutProvider:
    """Stripe Checkout provider configured from settings."""
    return StripeCheckoutProvider(config)


def get_api_gateway(
    db: AsyncSession = Depends(get_write_db),
    checkout: StripeCheckoutProvider = Depends(get_checkout_provider),
    config: Settings = Depends(get_settings),
) -> ApiGateway:
    """
    Build the gateway pipeline for one request.

    Usage:
        @router.api_route("/api/{path:path}", methods=[...])
        async def gateway_entry(gateway: ApiGateway = Depends(get_api_gateway)):
            ...
    """
    ledger = SqlUsageLedger(db)
    entitlements = SqlEntitlementStore(db)
    resources = ResourceRepository(db)
    handlers = ResourceHandlers(
        resources=resources,
        api_keys=APIKeyService(db),
        ledger=ledger,
        entitlements=entitlements,
        checkout=checkout,
    )
    return ApiGateway(
        keys=SqlKeyStore(db),
        quota=QuotaService(entitlements, ledger, SqlQuotaCounter(db), config=config),
        ledger=ledger,
        ownership=resources,
        endpoints=build_endpoints(handlers),
        config=config,
    )


def get_webhook_processor(db: AsyncSession = Depends(get_write_db)) -> WebhookProcessor:
    """Webhook processor writing to the request's session."""
    return WebhookProcessor(SqlEntitlementStore(db))
