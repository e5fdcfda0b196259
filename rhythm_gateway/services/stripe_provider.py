"""
Stripe Checkout Provider.

NO DICTIONARIES - Results are returned as CheckoutSession dataclasses.

The Stripe SDK is synchronous; every call runs in a worker thread bounded by
STRIPE_TIMEOUT_SECONDS so it cannot stall the event loop.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import stripe
from structlog import get_logger

from rhythm_gateway.config import Settings, settings
from rhythm_gateway.exceptions import PaymentProviderError
from rhythm_gateway.models.api import SubscriptionPlan
from rhythm_gateway.models.domain import CheckoutSession

logger = get_logger(__name__)

CHECKOUT_FAILED_MESSAGE = "Failed to create Stripe checkout session"


class StripeCheckoutProvider:
    """Creates Stripe customers and subscription Checkout sessions for teams."""

    def __init__(self, config: Settings = settings) -> None:
        """
        Initialize Stripe provider.

        Args:
            config: Settings carrying the API key, price ids, app URL and timeout
        """
        self.config = config
        stripe.api_key = config.stripe_api_key

    async def _call(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, **kwargs),
                timeout=self.config.stripe_timeout_seconds,
            )
        except TimeoutError as exc:
            logger.error(
                "stripe_call_timed_out",
                operation=operation,
                timeout_seconds=self.config.stripe_timeout_seconds,
            )
            raise PaymentProviderError(CHECKOUT_FAILED_MESSAGE) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_call_failed",
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(CHECKOUT_FAILED_MESSAGE) from exc

    async def create_customer(self, team_id: str, team_name: str, email: str | None) -> str:
        """
        Create a Stripe customer for a team.

        Returns:
            Stripe customer ID

        Raises:
            PaymentProviderError: If the Stripe call fails or times out
        """
        logger.info("creating_stripe_customer", team_id=team_id)
        customer = await self._call(
            "customer_create",
            stripe.Customer.create,
            name=team_name,
            email=email,
            metadata={"team_id": team_id},
        )
        customer_id: str = customer.id
        logger.info("stripe_customer_created", team_id=team_id, customer_id=customer_id)
        return customer_id

    async def create_checkout_session(
        self,
        team_id: str,
        user_id: str,
        plan: SubscriptionPlan,
        customer_id: str | None = None,
    ) -> CheckoutSession:
        """
        Create a subscription-mode Checkout session.

        The session metadata (team_id, user_id, plan) comes back on the
        checkout.session.completed webhook and drives the premium upgrade.

        Raises:
            PaymentProviderError: If no price is configured for the plan, or the
                Stripe call fails or times out
        """
        price_id = self.config.price_id_for_plan(plan.value)
        if not price_id:
            logger.error("stripe_price_not_configured", plan=plan.value)
            raise PaymentProviderError(CHECKOUT_FAILED_MESSAGE)

        logger.info(
            "creating_stripe_checkout_session",
            team_id=team_id,
            user_id=user_id,
            plan=plan.value,
        )

        metadata = {"team_id": team_id, "user_id": user_id, "plan": plan.value}
        session = await self._call(
            "checkout_session_create",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            metadata=metadata,
            subscription_data={"metadata": metadata},
            success_url=f"{self.config.app_url}/billing?checkout=success",
            cancel_url=f"{self.config.app_url}/billing?checkout=cancelled",
        )

        logger.info(
            "stripe_checkout_session_created",
            session_id=session.id,
            team_id=team_id,
            plan=plan.value,
        )

        return CheckoutSession(
            session_id=session.id,
            url=session.url or "",
            plan=plan.value,
            customer_id=customer_id,
        )
