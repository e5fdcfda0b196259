"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Gateway-facing errors carry their HTTP status code and the exact message the
caller sees, so routes can render them without a lookup table.
"""

from datetime import datetime
from typing import Any


class GatewayError(Exception):
    """Base exception for all gateway and billing errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def to_body(self) -> dict[str, Any]:
        """Render the caller-visible error body."""
        return {"error": self.public_message}


class AuthenticationError(GatewayError):
    """Raised when no API key is supplied or the key is unknown or revoked."""

    status_code = 401

    def __init__(self, message: str) -> None:
        self.message = message
        self.public_message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(GatewayError):
    """Raised when the key owner lacks the role an endpoint requires."""

    status_code = 403
    public_message = "Insufficient permissions"

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"Authorization failed: requires role {required_role}")


class TenantAccessError(GatewayError):
    """Raised when a request references a resource outside the caller's team."""

    status_code = 403
    public_message = "Access denied to this resource"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"Access denied to {resource_type} {resource_id}")


class QuotaExceededError(GatewayError):
    """Raised when a team has used its daily request allowance."""

    status_code = 429
    public_message = "Rate limit exceeded"

    def __init__(self, limit: int, used: int, reset: datetime) -> None:
        self.limit = limit
        self.used = used
        self.reset = reset
        super().__init__(f"Rate limit exceeded: {used}/{limit}, resets {reset.isoformat()}")

    def to_body(self) -> dict[str, Any]:
        return {
            "error": self.public_message,
            "limit": self.limit,
            "used": self.used,
            "reset": self.reset.isoformat(),
        }


class ValidationError(GatewayError):
    """Base class for malformed or incomplete request payloads."""

    status_code = 400


class MalformedPayloadError(ValidationError):
    """Raised when a request body is not a JSON object."""

    public_message = "Invalid JSON payload"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid JSON payload: {reason}")


class MissingFieldsError(ValidationError):
    """Raised when required fields are absent; names all of them at once."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        self.public_message = f"Missing required fields: {', '.join(fields)}"
        super().__init__(self.public_message)


class InvalidFieldError(ValidationError):
    """Raised when a present field has a value the endpoint cannot accept."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        self.public_message = f"Invalid value for field: {field}"
        super().__init__(f"Invalid value for field {field}: {reason}")


class PayloadTooLargeError(ValidationError):
    """Raised when a request body exceeds the configured size limit."""

    status_code = 413
    public_message = "Payload too large"

    def __init__(self, size: int, limit: int) -> None:
        self.size = size
        self.limit = limit
        super().__init__(f"Payload of at least {size} bytes exceeds limit of {limit} bytes")


class EndpointNotFoundError(GatewayError):
    """Raised when no endpoint matches the request path and method."""

    status_code = 404
    public_message = "Not found"

    def __init__(self, method: str, path: str) -> None:
        self.method = method
        self.path = path
        super().__init__(f"No endpoint for {method} {path}")


class WebhookVerificationError(GatewayError):
    """Raised when a webhook signature cannot be verified."""

    status_code = 400
    public_message = "Invalid webhook signature"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class WebhookPayloadError(GatewayError):
    """Raised when a verified webhook body cannot be parsed into an event."""

    status_code = 400
    public_message = "Invalid webhook payload"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook payload error: {message}")


class TransientStoreError(GatewayError):
    """Raised when a store write or read fails in a way worth retrying."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Store operation {operation} failed: {message}")


class PaymentProviderError(GatewayError):
    """Raised when a payment provider call fails or times out."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")
