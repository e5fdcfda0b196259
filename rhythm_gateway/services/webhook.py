"""
Webhook Processor - Stripe subscription events to team entitlements.

NO DICTIONARIES - Payloads are parsed into WebhookEvent before any decision.

Every transition is an absolute assignment of the team's entitlement, so a
redelivered event can never double-apply. Duplicate event ids are acknowledged
without touching the store, and events older than the last applied billing
event are acknowledged as stale.
"""

import json
from datetime import UTC, datetime
from typing import Any

import stripe
from structlog import get_logger

from rhythm_gateway.config import settings
from rhythm_gateway.exceptions import WebhookPayloadError
from rhythm_gateway.models.api import (
    BillingStatus,
    SubscriptionPlan,
    WebhookEventType,
    WebhookOutcome,
)
from rhythm_gateway.models.domain import (
    EntitlementChange,
    EntitlementData,
    EntitlementTransition,
    WebhookEvent,
)
from rhythm_gateway.observability.metrics import metrics
from rhythm_gateway.observability.tracing import trace_operation
from rhythm_gateway.services.entitlements import EntitlementStore

logger = get_logger(__name__)

ACTIVE_STATUSES = frozenset({"active"})
DELINQUENT_STATUSES = frozenset({"past_due", "unpaid"})
ENDED_STATUSES = frozenset({"canceled", "incomplete_expired"})


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    secret: str,
    tolerance: int | None = None,
) -> bool:
    """
    Verify a Stripe-Signature header against the raw request body.

    Fails closed: a missing header or secret, a body that is not UTF-8, a
    malformed header, a stale timestamp, a mismatch, or any unexpected error
    all return False.
    """
    if not signature_header or not secret:
        return False

    if tolerance is None:
        tolerance = settings.stripe_signature_tolerance_seconds

    try:
        payload = raw_body.decode("utf-8")
        return bool(
            stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance)
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("stripe_webhook_signature_invalid", error=str(exc))
        return False
    except Exception as exc:
        logger.error(
            "stripe_webhook_signature_check_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return False


def _id_of(value: Any) -> str | None:
    """Stripe fields like `customer` are either an id or an expanded object."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_payload(raw_body: bytes) -> WebhookEvent:
    """
    Parse a verified Stripe event body.

    Raises:
        WebhookPayloadError: If the body is not a JSON object with an `id`,
            a `type` and a `data.object`.
    """
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookPayloadError(f"Malformed JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise WebhookPayloadError("Event is not a JSON object")

    event_id = payload.get("id")
    event_type = payload.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise WebhookPayloadError("Event id missing")
    if not isinstance(event_type, str) or not event_type:
        raise WebhookPayloadError("Event type missing")

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise WebhookPayloadError("Event data.object missing")

    created = payload.get("created")
    created_at = (
        datetime.fromtimestamp(created, UTC)
        if isinstance(created, (int, float)) and not isinstance(created, bool)
        else None
    )

    metadata = obj.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    # Subscription objects carry their own id; checkout sessions and invoices
    # reference the subscription.
    if event_type.startswith("customer.subscription."):
        subscription_id = _str_or_none(obj.get("id"))
    else:
        subscription_id = _id_of(obj.get("subscription"))

    return WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        created=created_at,
        customer_id=_id_of(obj.get("customer")),
        subscription_id=subscription_id,
        status=_str_or_none(obj.get("status")),
        team_id=_str_or_none(metadata.get("team_id")),
        user_id=_str_or_none(metadata.get("user_id")),
        plan=_str_or_none(metadata.get("plan")),
    )


def _premium(
    subscription_id: str | None, plan: str | None, customer_id: str | None = None
) -> EntitlementChange:
    return EntitlementChange(
        is_premium=True,
        billing_status=BillingStatus.ACTIVE,
        at_risk=False,
        stripe_subscription_id=subscription_id,
        plan=plan,
        stripe_customer_id=customer_id,
    )


def _delinquent(subscription_id: str | None, plan: str | None) -> EntitlementChange:
    return EntitlementChange(
        is_premium=False,
        billing_status=BillingStatus.PAST_DUE,
        at_risk=True,
        stripe_subscription_id=subscription_id,
        plan=plan,
    )


def _downgraded() -> EntitlementChange:
    return EntitlementChange(
        is_premium=False,
        billing_status=BillingStatus.FREE,
        at_risk=False,
        stripe_subscription_id=None,
        plan=None,
    )


class WebhookProcessor:
    """Applies verified Stripe events to the Entitlement Store."""

    def __init__(self, store: EntitlementStore) -> None:
        self.store = store

    async def process(self, event: WebhookEvent) -> EntitlementTransition:
        """
        Process one event and return the acknowledged outcome.

        Raises:
            TransientStoreError: If the store fails; nothing has been applied
                and the delivery should be retried.
        """
        with trace_operation(
            "webhook.process", event_id=event.event_id, event_type=event.event_type
        ) as span:
            transition = await self._process(event)
            span.set_attribute("outcome", transition.outcome.value)
            if transition.team_id:
                span.set_attribute("team_id", transition.team_id)

        metrics.record_webhook_event(event.event_type, transition.outcome.value)
        logger.info(
            "webhook_event_processed",
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=transition.outcome.value,
            team_id=transition.team_id,
            reason=transition.reason,
            members_updated=transition.members_updated,
        )
        return transition

    async def _process(self, event: WebhookEvent) -> EntitlementTransition:
        supported = {member.value for member in WebhookEventType}
        if event.event_type not in supported:
            return self._acknowledge(event, WebhookOutcome.IGNORED, reason="unhandled_event_type")

        if await self.store.is_processed(event.event_id):
            return self._acknowledge(event, WebhookOutcome.DUPLICATE, reason="already_processed")

        team_id = await self._resolve_team(event)
        if team_id is None:
            logger.warning(
                "webhook_team_not_found",
                event_id=event.event_id,
                event_type=event.event_type,
                customer_id=event.customer_id,
                metadata_team_id=event.team_id,
            )
            return self._acknowledge(event, WebhookOutcome.IGNORED, reason="team_not_found")

        entitlement = await self.store.get(team_id)
        if entitlement is None:
            logger.warning("webhook_team_missing", event_id=event.event_id, team_id=team_id)
            return self._acknowledge(
                event, WebhookOutcome.IGNORED, team_id=team_id, reason="team_not_found"
            )

        if (
            event.created is not None
            and entitlement.billing_event_at is not None
            and event.created < entitlement.billing_event_at
        ):
            logger.info(
                "webhook_event_stale",
                event_id=event.event_id,
                team_id=team_id,
                event_created=event.created.isoformat(),
                billing_event_at=entitlement.billing_event_at.isoformat(),
            )
            return self._acknowledge(
                event, WebhookOutcome.STALE, team_id=team_id, reason="older_than_last_applied"
            )

        if (
            event.event_type == WebhookEventType.CHECKOUT_COMPLETED.value
            and event.customer_id is not None
        ):
            owner = await self.store.find_team_by_customer(event.customer_id)
            if owner is not None and owner != team_id:
                logger.warning(
                    "webhook_customer_owned_by_other_team",
                    event_id=event.event_id,
                    team_id=team_id,
                    owner_team_id=owner,
                    customer_id=event.customer_id,
                )
                return self._acknowledge(
                    event,
                    WebhookOutcome.IGNORED,
                    team_id=team_id,
                    reason="customer_owned_by_other_team",
                )

        change = self._change_for(event, entitlement)
        if change is None:
            return self._acknowledge(
                event,
                WebhookOutcome.IGNORED,
                team_id=team_id,
                reason=f"unhandled_subscription_status:{event.status}",
            )

        members_updated = await self.store.apply(team_id, change, event)
        if members_updated is None:
            return self._acknowledge(
                event, WebhookOutcome.DUPLICATE, team_id=team_id, reason="already_processed"
            )

        logger.info(
            "entitlement_updated",
            event_id=event.event_id,
            team_id=team_id,
            is_premium=change.is_premium,
            billing_status=change.billing_status.value,
            at_risk=change.at_risk,
        )
        return EntitlementTransition(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=WebhookOutcome.SUCCESS,
            team_id=team_id,
            change=change,
            members_updated=members_updated,
        )

    async def _resolve_team(self, event: WebhookEvent) -> str | None:
        if event.event_type == WebhookEventType.CHECKOUT_COMPLETED.value:
            return event.team_id
        if event.customer_id is None:
            return None
        return await self.store.find_team_by_customer(event.customer_id)

    def _change_for(
        self, event: WebhookEvent, entitlement: EntitlementData
    ) -> EntitlementChange | None:
        event_type = WebhookEventType(event.event_type)
        subscription_id = event.subscription_id or entitlement.stripe_subscription_id

        if event_type == WebhookEventType.CHECKOUT_COMPLETED:
            plans = {plan.value for plan in SubscriptionPlan}
            plan = event.plan if event.plan in plans else entitlement.plan
            return _premium(subscription_id, plan, customer_id=event.customer_id)

        if event_type == WebhookEventType.SUBSCRIPTION_DELETED:
            return _downgraded()

        if event_type == WebhookEventType.INVOICE_PAYMENT_FAILED:
            return _delinquent(subscription_id, entitlement.plan)

        # customer.subscription.created / customer.subscription.updated
        if event.status in ACTIVE_STATUSES:
            return _premium(subscription_id, entitlement.plan)
        if event.status in DELINQUENT_STATUSES:
            return _delinquent(subscription_id, entitlement.plan)
        if event.status in ENDED_STATUSES:
            return _downgraded()
        return None

    def _acknowledge(
        self,
        event: WebhookEvent,
        outcome: WebhookOutcome,
        team_id: str | None = None,
        reason: str | None = None,
    ) -> EntitlementTransition:
        return EntitlementTransition(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            team_id=team_id,
            reason=reason,
        )
