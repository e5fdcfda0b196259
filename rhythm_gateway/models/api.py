"""
API Models - Pydantic models and enums shared by routes and services.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class BillingStatus(str, Enum):
    """Team billing status enumeration."""

    FREE = "free"
    ACTIVE = "active"
    PAST_DUE = "past_due"


class UserRole(str, Enum):
    """Role of the user owning an API key."""

    ADMIN = "admin"
    MEMBER = "member"
    USER = "user"


class QuotaPolicy(str, Enum):
    """Consistency policy for the daily quota check."""

    EVENTUAL = "eventual"
    STRICT = "strict"


class WebhookEventType(str, Enum):
    """Stripe event types the entitlement processor acts on."""

    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class WebhookOutcome(str, Enum):
    """How a webhook delivery was acknowledged."""

    SUCCESS = "success"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    STALE = "stale"


class SubscriptionPlan(str, Enum):
    """Subscription plans sold through Stripe Checkout."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


# ============================================================================
# Response Models
# ============================================================================


class ErrorResponse(BaseModel):
    """Canonical error body for every rejection."""

    error: str


class WebhookAckResponse(BaseModel):
    """POST /v1/billing/webhooks/stripe response."""

    status: WebhookOutcome
    event_id: str


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    version: str
    timestamp: str


class CheckoutResponse(BaseModel):
    """POST /api/billing/checkout response."""

    id: str
    url: str
    plan: SubscriptionPlan


class RateLimitInfo(BaseModel):
    """Daily rate limit state for a team."""

    daily: int
    used: int
    remaining: int


class DailyUsage(BaseModel):
    """One day of API usage for a team."""

    date: str
    request_count: int
    avg_response_time: float
    error_count: int


class UsageTotals(BaseModel):
    """Aggregate API usage for a team over the reporting window."""

    total_requests: int = Field(..., serialization_alias="totalRequests")
    active_days: int = Field(..., serialization_alias="activeDays")
    overall_avg_response_time: float = Field(..., serialization_alias="overallAvgResponseTime")


class UsageSummaryResponse(BaseModel):
    """GET /api/developer/usage response."""

    daily_usage: list[DailyUsage] = Field(..., serialization_alias="dailyUsage")
    total_stats: UsageTotals = Field(..., serialization_alias="totalStats")
    rate_limit: RateLimitInfo = Field(..., serialization_alias="rateLimit")


# ============================================================================
# Resource Models
# ============================================================================


class ResourceType(str, Enum):
    """Team-owned resources that request parameters may reference."""

    PLAY = "play"
    SIGNAL = "signal"
    API_KEY = "api_key"


class PlayResponse(BaseModel):
    """A play owned by the caller's team."""

    id: str
    name: str
    target_outcome: str | None = None
    why_this_play: str | None = None
    how_to_run: str | None = None
    status: str
    created_at: datetime


class PlayListResponse(BaseModel):
    """GET /api/plays response."""

    plays: list[PlayResponse]


class PlayDetailResponse(BaseModel):
    """GET /api/plays/{play_id} and POST /api/plays response."""

    play: PlayResponse


class SignalResponse(BaseModel):
    """A signal logged against one of the team's plays."""

    id: str
    play_id: str
    play_name: str | None = None
    observation: str | None = None
    meaning: str
    action: str
    created_at: datetime


class SignalListResponse(BaseModel):
    """GET /api/signals response."""

    signals: list[SignalResponse]


class SignalDetailResponse(BaseModel):
    """POST /api/signals response."""

    signal: SignalResponse


class AnalyticsSummary(BaseModel):
    """Basic team counters."""

    total_plays: int = Field(..., serialization_alias="totalPlays")
    active_plays: int = Field(..., serialization_alias="activePlays")
    total_signals: int = Field(..., serialization_alias="totalSignals")


class AnalyticsResponse(BaseModel):
    """GET /api/analytics response."""

    analytics: AnalyticsSummary


class TeamMemberResponse(BaseModel):
    """A member of the caller's team."""

    id: str
    email: str
    name: str | None = None
    role: str
    is_premium: bool


class TeamMemberListResponse(BaseModel):
    """GET /api/admin/users response."""

    users: list[TeamMemberResponse]


class ApiKeyResponse(BaseModel):
    """API key metadata (never the key itself)."""

    id: UUID
    name: str
    key_prefix: str
    created_at: datetime | None = None
    last_used_at: datetime | None = None


class ApiKeyListResponse(BaseModel):
    """GET /api/admin/keys response."""

    keys: list[ApiKeyResponse]


class ApiKeyCreatedResponse(BaseModel):
    """POST /api/admin/keys response. The plaintext key is only returned here."""

    id: UUID
    name: str
    key: str
    key_prefix: str
    created_at: datetime


class ApiKeyRevokedResponse(BaseModel):
    """DELETE /api/admin/keys/{key_id} response."""

    id: UUID
    revoked: bool
