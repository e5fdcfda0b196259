"""
API Routes - Stripe webhook, gateway entry point and health check.

NO DICTIONARIES - Responses use Pydantic models or the gateway's typed results.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from rhythm_gateway.api.dependencies import get_api_gateway, get_webhook_processor
from rhythm_gateway.config import Settings, get_settings
from rhythm_gateway.db.session import get_write_db
from rhythm_gateway.exceptions import (
    PayloadTooLargeError,
    TransientStoreError,
    WebhookPayloadError,
    WebhookVerificationError,
)
from rhythm_gateway.models.api import ErrorResponse, HealthResponse, WebhookAckResponse
from rhythm_gateway.observability.metrics import metrics
from rhythm_gateway.services.gateway import ApiGateway, GatewayRequest, read_limited_body
from rhythm_gateway.services.webhook import WebhookProcessor, parse_payload, verify_signature

logger = get_logger(__name__)

router = APIRouter()

GATEWAY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.post(
    "/v1/billing/webhooks/stripe",
    response_model=WebhookAckResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
    config: Settings = Depends(get_settings),
) -> WebhookAckResponse | JSONResponse:
    """
    Handle Stripe webhook events.

    Verifies the signature over the raw body before parsing it, then applies
    the entitlement transition. Returns 500 only when the delivery should be
    retried.
    """
    limit = config.max_webhook_payload_bytes
    declared = request.headers.get("content-length")
    try:
        if declared and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLargeError(size=int(declared), limit=limit)
        payload = await read_limited_body(request.stream(), limit)
    except PayloadTooLargeError as exc:
        metrics.record_webhook_rejection("payload_too_large")
        logger.warning("stripe_webhook_rejected", reason="payload_too_large", size=exc.size)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    signature = request.headers.get("stripe-signature")

    if not verify_signature(payload, signature, config.stripe_webhook_secret):
        metrics.record_webhook_rejection("invalid_signature")
        logger.warning("stripe_webhook_rejected", reason="invalid_signature")
        rejection = WebhookVerificationError("signature verification failed")
        return JSONResponse(status_code=rejection.status_code, content=rejection.to_body())

    try:
        event = parse_payload(payload)
    except WebhookPayloadError as exc:
        metrics.record_webhook_rejection("invalid_payload")
        logger.warning("stripe_webhook_rejected", reason="invalid_payload", error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    logger.info("stripe_webhook_received", event_id=event.event_id, event_type=event.event_type)

    try:
        transition = await processor.process(event)
    except TransientStoreError as exc:
        metrics.record_error(type(exc).__name__, "webhook_process")
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            error=str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(error="Webhook processing failed").model_dump(),
        )

    return WebhookAckResponse(status=transition.outcome, event_id=event.event_id)


@router.api_route("/api/{path:path}", methods=GATEWAY_METHODS, include_in_schema=False)
async def gateway_entry(
    request: Request,
    gateway: ApiGateway = Depends(get_api_gateway),
) -> Response:
    """
    Public API entry point.

    Authenticated with `Authorization: Bearer <api key>`; every request runs
    through the gateway pipeline.
    """
    result = await gateway.handle(
        GatewayRequest(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
            query_params=request.query_params,
            stream=request.stream,
        )
    )
    return JSONResponse(
        status_code=result.status_code,
        content=result.json_body(),
        headers=dict(result.headers),
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_write_db),
    config: Settings = Depends(get_settings),
) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        version=config.api_version,
        timestamp=datetime.now(UTC).isoformat(),
    )
