"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from rhythm_gateway.models.api import BillingStatus, UserRole, WebhookOutcome


@dataclass(frozen=True)
class ApiKeyRecord:
    """Key Store row joined with its owner's role."""

    key_id: UUID
    team_id: str
    user_id: str
    user_role: str | None
    is_active: bool
    key_prefix: str = ""
    name: str = ""
    created_at: datetime | None = None
    last_used_at: datetime | None = None

    @property
    def is_admin(self) -> bool:
        return self.user_role == UserRole.ADMIN.value


@dataclass(frozen=True)
class Principal:
    """Authenticated caller of the gateway."""

    key_id: UUID
    team_id: str
    user_id: str
    user_role: str | None

    @property
    def is_admin(self) -> bool:
        return self.user_role == UserRole.ADMIN.value


@dataclass(frozen=True)
class UsageRecordData:
    """Immutable usage log entry written once per dispatched request."""

    key_id: UUID
    endpoint: str
    method: str
    response_code: int
    response_time_ms: int
    created_at: datetime

    def __post_init__(self) -> None:
        if self.response_time_ms < 0:
            raise ValueError(f"Latency cannot be negative: {self.response_time_ms}")


@dataclass(frozen=True)
class QuotaStatus:
    """Result of a passed quota check."""

    limit: int
    used: int
    reset: datetime

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)


@dataclass(frozen=True)
class EntitlementData:
    """Snapshot of a team's billing entitlement."""

    team_id: str
    is_premium: bool
    billing_status: BillingStatus
    at_risk: bool
    stripe_customer_id: str | None
    stripe_subscription_id: str | None
    plan: str | None = None
    premium_grace_until: datetime | None = None
    billing_event_at: datetime | None = None

    def __post_init__(self) -> None:
        """Premium implies an active subscription."""
        if self.is_premium and self.billing_status != BillingStatus.ACTIVE:
            raise ValueError(
                f"Team {self.team_id} cannot be premium with status {self.billing_status.value}"
            )


@dataclass(frozen=True)
class WebhookEvent:
    """Provider-agnostic view of a Stripe event relevant to entitlements."""

    event_id: str
    event_type: str
    created: datetime | None = None
    customer_id: str | None = None
    subscription_id: str | None = None
    status: str | None = None
    team_id: str | None = None
    user_id: str | None = None
    plan: str | None = None


@dataclass(frozen=True)
class EntitlementChange:
    """
    Absolute entitlement state to assign to a team.

    Every field is written as-is (never incremented), so applying the same
    change twice has the same effect as applying it once.
    """

    is_premium: bool
    billing_status: BillingStatus
    at_risk: bool
    stripe_subscription_id: str | None
    plan: str | None
    premium_grace_until: datetime | None = None
    stripe_customer_id: str | None = None

    def __post_init__(self) -> None:
        if self.is_premium and self.billing_status != BillingStatus.ACTIVE:
            raise ValueError("Premium entitlement requires active billing status")


@dataclass(frozen=True)
class EntitlementTransition:
    """Outcome of processing one webhook event."""

    event_id: str
    event_type: str
    outcome: WebhookOutcome
    team_id: str | None = None
    change: EntitlementChange | None = None
    members_updated: int = 0
    reason: str | None = None


@dataclass(frozen=True)
class GeneratedApiKey:
    """Newly created API key (plaintext is shown once)."""

    key_id: UUID
    plaintext_key: str
    key_prefix: str
    name: str
    team_id: str
    user_id: str
    created_at: datetime


@dataclass(frozen=True)
class CheckoutSession:
    """Stripe Checkout session handed back to the caller."""

    session_id: str
    url: str
    plan: str
    customer_id: str | None = None
