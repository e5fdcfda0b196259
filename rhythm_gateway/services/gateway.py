"""
API Gateway - Request pipeline in front of the public /api endpoints.

NO DICTIONARIES - Requests, endpoints and responses are typed dataclasses;
only the rendered JSON body is a mapping.

Pipeline order (each stage may short-circuit with {"error": ...}):

    authenticate -> resolve endpoint -> quota -> payload -> authorize
    -> tenant scope -> dispatch -> usage record

Exactly one usage record is written per dispatched request, whether the
handler returned or raised. Rejected requests are never dispatched and never
recorded.
"""

import json
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from structlog import get_logger

from rhythm_gateway.config import Settings, settings
from rhythm_gateway.db.models import utc_now
from rhythm_gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    EndpointNotFoundError,
    GatewayError,
    MalformedPayloadError,
    MissingFieldsError,
    PayloadTooLargeError,
    TenantAccessError,
)
from rhythm_gateway.models.api import ResourceType, UserRole
from rhythm_gateway.models.domain import Principal, QuotaStatus, UsageRecordData
from rhythm_gateway.observability.logging import log_context
from rhythm_gateway.observability.metrics import metrics
from rhythm_gateway.observability.tracing import trace_operation
from rhythm_gateway.services.api_key import KeyStore, hash_api_key
from rhythm_gateway.services.quota import QuotaService
from rhythm_gateway.services.resources import OwnershipResolver
from rhythm_gateway.services.usage_ledger import UsageLedger

logger = get_logger(__name__)

ADMIN_PATH_PREFIX = "/api/admin/"
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
_PARAM_PATTERN = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


def _compile_pattern(pattern: str) -> re.Pattern[str]:
    """Turn "/api/plays/{play_id}" into a regex with named groups."""
    parts = []
    for segment in pattern.strip("/").split("/"):
        param = _PARAM_PATTERN.fullmatch(segment)
        parts.append(f"(?P<{param.group(1)}>[^/]+)" if param else re.escape(segment))
    return re.compile("^/" + "/".join(parts) + "/?$")


async def read_limited_body(stream: AsyncIterator[bytes], limit: int) -> bytes:
    """
    Read a request body, aborting as soon as it grows past `limit` bytes.

    Raises:
        PayloadTooLargeError: If more than `limit` bytes arrive.
    """
    received = bytearray()
    async for chunk in stream:
        received.extend(chunk)
        if len(received) > limit:
            raise PayloadTooLargeError(size=len(received), limit=limit)
    return bytes(received)


class ParamSource(str, Enum):
    """Where a resource reference is read from."""

    PATH = "path"
    QUERY = "query"
    BODY = "body"


@dataclass(frozen=True)
class ResourceRef:
    """A request parameter naming a team-owned resource."""

    source: ParamSource
    name: str
    resource_type: ResourceType


@dataclass(frozen=True)
class GatewayRequest:
    """Transport-independent view of an incoming /api request."""

    method: str
    path: str
    headers: Mapping[str, str]
    query_params: Mapping[str, str]
    stream: Callable[[], AsyncIterator[bytes]]


@dataclass(frozen=True)
class GatewayResponse:
    """Status, JSON content and extra headers produced by the pipeline."""

    status_code: int
    content: BaseModel | Mapping[str, Any]
    headers: Mapping[str, str] = field(default_factory=dict)

    def json_body(self) -> Any:
        if isinstance(self.content, BaseModel):
            return self.content.model_dump(mode="json", by_alias=True)
        return dict(self.content)


@dataclass(frozen=True)
class RequestContext:
    """Everything a resource handler may use; already authenticated and scoped."""

    principal: Principal
    path_params: Mapping[str, str]
    query_params: Mapping[str, str]
    body: Mapping[str, Any]
    quota: QuotaStatus


Handler = Callable[[RequestContext], Awaitable[GatewayResponse]]


@dataclass(frozen=True)
class EndpointSpec:
    """
    One public API endpoint.

    Paths under /api/admin/ always require the admin role; `requires_admin`
    extends that to endpoints elsewhere.
    """

    method: str
    pattern: str
    handler: Handler
    required_fields: tuple[str, ...] = ()
    resource_refs: tuple[ResourceRef, ...] = ()
    requires_admin: bool = False
    _regex: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_regex", _compile_pattern(self.pattern))

    @property
    def admin_only(self) -> bool:
        return self.requires_admin or self.pattern.startswith(ADMIN_PATH_PREFIX)

    def match(self, method: str, path: str) -> dict[str, str] | None:
        """Path parameters if this endpoint serves the request, else None."""
        if method.upper() != self.method:
            return None
        found = self._regex.match(path)
        return found.groupdict() if found else None


class ApiGateway:
    """Runs every /api request through the pipeline and records usage."""

    def __init__(
        self,
        keys: KeyStore,
        quota: QuotaService,
        ledger: UsageLedger,
        ownership: OwnershipResolver,
        endpoints: Sequence[EndpointSpec],
        config: Settings = settings,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.keys = keys
        self.quota = quota
        self.ledger = ledger
        self.ownership = ownership
        self.endpoints = list(endpoints)
        self.config = config
        self.clock = clock
        self.timer = timer

    async def handle(self, request: GatewayRequest) -> GatewayResponse:
        """Run the pipeline. Every GatewayError becomes an error response."""
        with trace_operation("gateway.handle", method=request.method, path=request.path) as span:
            try:
                principal = await self.authenticate(request.headers.get("authorization"))
                endpoint, path_params = self.resolve(request.method, request.path)
                quota = await self.quota.check(principal)
                body = await self.validate_payload(request, endpoint)
                self.authorize(principal, endpoint)
                await self.enforce_tenant_scope(
                    principal, endpoint, path_params, request.query_params, body
                )
            except GatewayError as exc:
                span.set_attribute("rejected", type(exc).__name__)
                return self._reject(request, exc)

            context = RequestContext(
                principal=principal,
                path_params=path_params,
                query_params=request.query_params,
                body=body,
                quota=quota,
            )
            response = await self.dispatch(request, endpoint, context)
            span.set_attribute("status_code", response.status_code)
            return response

    # ------------------------------------------------------------ stages

    async def authenticate(self, authorization: str | None) -> Principal:
        """
        Resolve a Bearer API key to its principal.

        Raises:
            AuthenticationError: "API key required" when absent, "Invalid API
                key" when unknown or revoked.
        """
        scheme, _, token = (authorization or "").partition(" ")
        token = token.strip()
        if scheme.lower() != "bearer" or not token:
            raise AuthenticationError("API key required")

        record = await self.keys.find_by_hash(hash_api_key(token))
        if record is None or not record.is_active:
            raise AuthenticationError("Invalid API key")

        try:
            await self.keys.touch(record.key_id, self.clock())
        except GatewayError as exc:
            logger.warning("api_key_touch_failed", key_id=str(record.key_id), error=str(exc))

        return Principal(
            key_id=record.key_id,
            team_id=record.team_id,
            user_id=record.user_id,
            user_role=record.user_role,
        )

    def resolve(self, method: str, path: str) -> tuple[EndpointSpec, dict[str, str]]:
        """Find the endpoint for a request, or raise EndpointNotFoundError."""
        for endpoint in self.endpoints:
            params = endpoint.match(method, path)
            if params is not None:
                return endpoint, params
        raise EndpointNotFoundError(method, path)

    async def validate_payload(
        self, request: GatewayRequest, endpoint: EndpointSpec
    ) -> dict[str, Any]:
        """
        Size check, JSON parse and required-field check for body methods.

        An empty body is treated as an empty object.
        """
        if request.method.upper() not in BODY_METHODS:
            return {}

        limit = self.config.max_payload_bytes
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > limit:
            raise PayloadTooLargeError(size=int(declared), limit=limit)

        raw = await read_limited_body(request.stream(), limit)

        if raw.strip():
            try:
                body = json.loads(raw)
            except (ValueError, RecursionError) as exc:
                raise MalformedPayloadError(str(exc)) from exc
        else:
            body = {}

        if not isinstance(body, dict):
            raise MalformedPayloadError(f"expected object, got {type(body).__name__}")

        missing = [name for name in endpoint.required_fields if body.get(name) in (None, "")]
        if missing:
            raise MissingFieldsError(missing)

        return body

    def authorize(self, principal: Principal, endpoint: EndpointSpec) -> None:
        if endpoint.admin_only and not principal.is_admin:
            raise AuthorizationError(UserRole.ADMIN.value)

    async def enforce_tenant_scope(
        self,
        principal: Principal,
        endpoint: EndpointSpec,
        path_params: Mapping[str, str],
        query_params: Mapping[str, str],
        body: Mapping[str, Any],
    ) -> None:
        """
        Every referenced resource must belong to the caller's team.

        Raises:
            TenantAccessError: For foreign and unknown resources alike.
        """
        sources: dict[ParamSource, Mapping[str, Any]] = {
            ParamSource.PATH: path_params,
            ParamSource.QUERY: query_params,
            ParamSource.BODY: body,
        }
        for ref in endpoint.resource_refs:
            value = sources[ref.source].get(ref.name)
            if value is None or value == "":
                continue
            if not isinstance(value, str) or not await self.ownership.owns(
                principal.team_id, ref.resource_type, value
            ):
                raise TenantAccessError(ref.resource_type.value, str(value))

    async def dispatch(
        self, request: GatewayRequest, endpoint: EndpointSpec, context: RequestContext
    ) -> GatewayResponse:
        """Invoke the handler, then write exactly one usage record."""
        principal = context.principal
        with log_context(team_id=principal.team_id, key_id=str(principal.key_id)):
            started = self.timer()
            try:
                response = await endpoint.handler(context)
            except GatewayError as exc:
                logger.warning(
                    "gateway_handler_rejected",
                    endpoint=endpoint.pattern,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                response = GatewayResponse(status_code=exc.status_code, content=exc.to_body())
                await self._discard_pending(endpoint)
            except Exception as exc:
                logger.error(
                    "gateway_handler_failed",
                    endpoint=endpoint.pattern,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                metrics.record_error(type(exc).__name__, "gateway_dispatch")
                response = GatewayResponse(status_code=500, content=GatewayError().to_body())
                await self._discard_pending(endpoint)
            elapsed_ms = max(int((self.timer() - started) * 1000), 0)

            await self._record_usage(request, principal, response.status_code, elapsed_ms)
            metrics.record_dispatch(endpoint.pattern, response.status_code)

        return GatewayResponse(
            status_code=response.status_code,
            content=response.content,
            headers={**response.headers, **rate_limit_headers(context.quota)},
        )

    # ----------------------------------------------------------- helpers

    async def _discard_pending(self, endpoint: EndpointSpec) -> None:
        """Roll back whatever the failed handler left open so usage can still be written."""
        try:
            await self.ledger.discard_pending()
        except GatewayError as exc:
            logger.error("usage_discard_failed", endpoint=endpoint.pattern, error=str(exc))

    async def _record_usage(
        self, request: GatewayRequest, principal: Principal, status_code: int, elapsed_ms: int
    ) -> None:
        usage = UsageRecordData(
            key_id=principal.key_id,
            endpoint=request.path,
            method=request.method.upper(),
            response_code=status_code,
            response_time_ms=elapsed_ms,
            created_at=self.clock(),
        )
        try:
            await self.ledger.record(usage)
        except GatewayError as exc:
            # Don't fail a completed request because its usage record was lost
            logger.error(
                "usage_record_failed",
                endpoint=request.path,
                method=usage.method,
                status_code=status_code,
                error=str(exc),
            )
            metrics.record_error(type(exc).__name__, "usage_record")

    def _reject(self, request: GatewayRequest, exc: GatewayError) -> GatewayResponse:
        metrics.record_rejection(type(exc).__name__, exc.status_code)
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "gateway_request_rejected",
            method=request.method,
            path=request.path,
            status_code=exc.status_code,
            reason=type(exc).__name__,
            error=str(exc),
        )
        return GatewayResponse(status_code=exc.status_code, content=exc.to_body())


def rate_limit_headers(quota: QuotaStatus) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(quota.limit),
        "X-RateLimit-Remaining": str(quota.remaining),
        "X-RateLimit-Reset": quota.reset.isoformat(),
    }
