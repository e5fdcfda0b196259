"""
Tests for exception classes.

Covers status codes, caller-visible bodies and string representations.
"""

from datetime import UTC, datetime

import pytest

from rhythm_gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    EndpointNotFoundError,
    GatewayError,
    InvalidFieldError,
    MalformedPayloadError,
    MissingFieldsError,
    PayloadTooLargeError,
    PaymentProviderError,
    QuotaExceededError,
    TenantAccessError,
    TransientStoreError,
    ValidationError,
    WebhookPayloadError,
    WebhookVerificationError,
)


class TestGatewayError:
    """Tests for the base GatewayError."""

    def test_default_body_hides_details(self):
        """The base error renders a generic 500 body."""
        exc = GatewayError("connection string leaked here")
        assert exc.status_code == 500
        assert exc.to_body() == {"error": "Internal server error"}

    @pytest.mark.parametrize(
        "exc",
        [
            AuthenticationError("API key required"),
            AuthorizationError("admin"),
            TenantAccessError("play", "p1"),
            QuotaExceededError(1, 1, datetime(2026, 10, 19, tzinfo=UTC)),
            MalformedPayloadError("bad"),
            MissingFieldsError(["name"]),
            InvalidFieldError("plan", "bad"),
            PayloadTooLargeError(10, 5),
            EndpointNotFoundError("GET", "/api/x"),
            WebhookVerificationError("bad"),
            WebhookPayloadError("bad"),
            TransientStoreError("op", "bad"),
            PaymentProviderError("bad"),
        ],
    )
    def test_all_errors_are_gateway_errors(self, exc):
        assert isinstance(exc, GatewayError)
        assert "error" in exc.to_body()


class TestAuthenticationError:
    """Tests for AuthenticationError."""

    @pytest.mark.parametrize("message", ["API key required", "Invalid API key"])
    def test_message_is_public(self, message):
        exc = AuthenticationError(message)
        assert exc.status_code == 401
        assert exc.to_body() == {"error": message}
        assert message in str(exc)


class TestForbiddenErrors:
    """Tests for AuthorizationError and TenantAccessError."""

    def test_authorization(self):
        exc = AuthorizationError("admin")
        assert exc.status_code == 403
        assert exc.required_role == "admin"
        assert exc.to_body() == {"error": "Insufficient permissions"}

    def test_tenant_access_does_not_leak_id(self):
        """The body never echoes the resource id."""
        exc = TenantAccessError("play", "play-secret")
        assert exc.status_code == 403
        assert exc.to_body() == {"error": "Access denied to this resource"}
        assert "play-secret" in str(exc)


class TestQuotaExceededError:
    """Tests for QuotaExceededError."""

    def test_body(self):
        reset = datetime(2026, 10, 19, tzinfo=UTC)
        exc = QuotaExceededError(limit=1000, used=1000, reset=reset)
        assert exc.status_code == 429
        assert exc.to_body() == {
            "error": "Rate limit exceeded",
            "limit": 1000,
            "used": 1000,
            "reset": "2026-10-19T00:00:00+00:00",
        }


class TestValidationErrors:
    """Tests for payload validation errors."""

    def test_malformed(self):
        exc = MalformedPayloadError("Expecting value")
        assert exc.status_code == 400
        assert exc.to_body() == {"error": "Invalid JSON payload"}
        assert isinstance(exc, ValidationError)

    def test_missing_fields_joined(self):
        exc = MissingFieldsError(["play_id", "meaning", "action"])
        assert exc.fields == ["play_id", "meaning", "action"]
        assert exc.to_body() == {"error": "Missing required fields: play_id, meaning, action"}

    def test_invalid_field(self):
        exc = InvalidFieldError("plan", "unsupported plan 'weekly'")
        assert exc.status_code == 400
        assert exc.to_body() == {"error": "Invalid value for field: plan"}
        assert "weekly" in str(exc)

    def test_payload_too_large(self):
        exc = PayloadTooLargeError(size=200_000, limit=102_400)
        assert exc.status_code == 413
        assert exc.to_body() == {"error": "Payload too large"}
        assert "102400" in str(exc)


class TestOtherErrors:
    """Tests for routing, webhook, store and provider errors."""

    def test_not_found(self):
        exc = EndpointNotFoundError("GET", "/api/nope")
        assert exc.status_code == 404
        assert exc.to_body() == {"error": "Not found"}

    def test_webhook_errors(self):
        assert WebhookVerificationError("x").to_body() == {"error": "Invalid webhook signature"}
        assert WebhookPayloadError("x").to_body() == {"error": "Invalid webhook payload"}

    def test_transient_store_error(self):
        exc = TransientStoreError("entitlement_apply", "connection reset")
        assert exc.status_code == 500
        assert exc.operation == "entitlement_apply"
        assert "connection reset" in str(exc)
        assert exc.to_body() == {"error": "Internal server error"}

    def test_payment_provider_error(self):
        exc = PaymentProviderError("Failed to create Stripe checkout session")
        assert exc.message == "Failed to create Stripe checkout session"
        assert exc.to_body() == {"error": "Internal server error"}
