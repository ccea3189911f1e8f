"""
Request orchestrator

Executes outbound calls (scoped data store operations and serverless
functions) with a correlation id, tenant headers, per-tenant rate limiting,
bounded exponential backoff on transient failures and a single
refresh-and-retry on authentication failure. Every call resolves to an
ApiResponse; nothing is raised to the caller.
"""

import asyncio
import random
import time
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pydantic import BaseModel
import structlog

from agritenant.core.config import get_settings
from agritenant.core.errors import (
    AuthenticationRequiredError,
    BackendAuthError,
    BackendError,
    InvalidRequestError,
    RateLimitExceededError,
    TenancyError,
    TransientBackendError,
)
from agritenant.core.events import utcnow
from agritenant.core.session import AuthProvider
from agritenant.services.functions import FunctionInvoker
from agritenant.services.scoped_gateway import TenantScopedGateway

logger = structlog.get_logger(__name__)

Operation = Callable[[Dict[str, str]], Awaitable[Any]]


class ResponseMeta(BaseModel):
    duration_ms: float
    attempts: int
    timestamp: datetime
    tenant_id: Optional[str] = None


class ApiResponse(BaseModel):
    """Uniform result of an orchestrated call"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    correlation_id: str
    meta: Optional[ResponseMeta] = None
    redirect_to: Optional[str] = None
    retry_after: Optional[float] = None


class FixedWindowRateLimiter:
    """Per-key fixed-window request counter. Process local"""

    def __init__(
        self,
        window_seconds: Optional[float] = None,
        max_requests: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.window_seconds = settings.RATE_LIMIT_WINDOW_SECONDS if window_seconds is None else window_seconds
        self.max_requests = settings.RATE_LIMIT_MAX_REQUESTS if max_requests is None else max_requests
        self.clock = clock
        # key -> (window start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}

    def acquire(self, key: str):
        """Count one request for key, or raise RateLimitExceededError"""
        now = self.clock()
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_seconds:
            start, count = now, 0
        if count >= self.max_requests:
            retry_after = max(0.0, start + self.window_seconds - now)
            raise RateLimitExceededError(
                f"Rate limit exceeded: {self.max_requests} requests per {self.window_seconds:g}s",
                retry_after=retry_after,
            )
        self._windows[key] = (start, count + 1)

    def remaining(self, key: str) -> int:
        now = self.clock()
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window_seconds:
            return self.max_requests
        return max(0, self.max_requests - count)

    def reset(self, key: Optional[str] = None):
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)


class RequestOrchestrator:
    """Resilient executor for tenant-aware outbound calls"""

    def __init__(
        self,
        auth: AuthProvider,
        functions: Optional[FunctionInvoker] = None,
        gateway_factory: Optional[Callable[[str], TenantScopedGateway]] = None,
        tenant_id: Optional[str] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        max_retries: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        base_delay_seconds: Optional[float] = None,
        jitter_ratio: Optional[float] = None,
        sign_in_path: Optional[str] = None,
        on_auth_redirect: Optional[Callable[[str], Any]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.auth = auth
        self.functions = functions
        self.gateway_factory = gateway_factory
        self.tenant_id = tenant_id
        self.rate_limiter = rate_limiter if rate_limiter is not None else FixedWindowRateLimiter()
        self.max_retries = settings.REQUEST_MAX_RETRIES if max_retries is None else max_retries
        self.timeout_seconds = settings.REQUEST_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.base_delay_seconds = (
            settings.RETRY_BASE_DELAY_SECONDS if base_delay_seconds is None else base_delay_seconds
        )
        self.jitter_ratio = settings.RETRY_JITTER_RATIO if jitter_ratio is None else jitter_ratio
        self.sign_in_path = sign_in_path or settings.SIGN_IN_PATH
        self.on_auth_redirect = on_auth_redirect
        self.sleep = sleep
        self.rand = rand
        self.clock = clock
        self.correlation_header = settings.CORRELATION_HEADER
        self.tenant_header = settings.TENANT_HEADER
        self.api_version_header = settings.API_VERSION_HEADER
        self.api_version = settings.API_VERSION

    def build_headers(self, correlation_id: str, tenant_id: Optional[str]) -> Dict[str, str]:
        headers = {
            self.correlation_header: correlation_id,
            self.api_version_header: self.api_version,
        }
        if tenant_id:
            headers[self.tenant_header] = tenant_id
        return headers

    def backoff_delay(self, attempt: int) -> float:
        """base * 2^attempt * (1 + jitter), attempt counted from 0"""
        return self.base_delay_seconds * (2 ** attempt) * (1 + self.jitter_ratio * self.rand())

    def _failure(self, correlation_id: str, error: Exception, started: float, attempts: int,
                 tenant_id: Optional[str], **extra) -> ApiResponse:
        return ApiResponse(
            success=False,
            error=getattr(error, "message", None) or str(error) or error.__class__.__name__,
            error_code=getattr(error, "code", "UNEXPECTED_ERROR"),
            correlation_id=correlation_id,
            meta=self._meta(started, attempts, tenant_id),
            **extra,
        )

    def _meta(self, started: float, attempts: int, tenant_id: Optional[str]) -> ResponseMeta:
        return ResponseMeta(
            duration_ms=round((self.clock() - started) * 1000, 2),
            attempts=attempts,
            timestamp=utcnow(),
            tenant_id=tenant_id,
        )

    async def _attempt(self, operation: Operation, headers: Dict[str, str], timeout: float) -> Any:
        try:
            return await asyncio.wait_for(operation(headers), timeout)
        except asyncio.TimeoutError as e:
            raise TransientBackendError(f"Request timed out after {timeout:g}s") from e
        except ConnectionError as e:
            raise TransientBackendError(f"Network error: {e}") from e

    async def execute(
        self,
        operation: Operation,
        name: str = "request",
        tenant_id: Optional[str] = None,
        include_tenant: bool = True,
        retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """Run operation(headers) under rate limiting, retry and auth-refresh policy"""
        correlation_id = str(uuid.uuid4())
        tenant_id = tenant_id or self.tenant_id
        retries = self.max_retries if retries is None else retries
        timeout = self.timeout_seconds if timeout is None else timeout
        headers = self.build_headers(correlation_id, tenant_id if include_tenant else None)
        log = logger.bind(correlation_id=correlation_id, tenant_id=tenant_id, request=name)
        started = self.clock()

        if tenant_id:
            try:
                self.rate_limiter.acquire(tenant_id)
            except RateLimitExceededError as e:
                log.warning("Rate limit exceeded", retry_after=e.retry_after)
                return self._failure(correlation_id, e, started, 0, tenant_id, retry_after=e.retry_after)

        attempts = 0
        last_error: Optional[Exception] = None
        for attempt in range(retries + 1):
            attempts += 1
            log.debug("Request attempt", attempt=attempts)
            try:
                data = await self._attempt(operation, headers, timeout)
                return ApiResponse(
                    success=True,
                    data=data,
                    correlation_id=correlation_id,
                    meta=self._meta(started, attempts, tenant_id),
                )
            except (BackendAuthError, AuthenticationRequiredError):
                log.warning("Authentication failure, refreshing session")
                return await self._retry_after_refresh(
                    operation, headers, timeout, correlation_id, started, attempts, tenant_id, log
                )
            except TransientBackendError as e:
                last_error = e
                if attempt < retries:
                    delay = self.backoff_delay(attempt)
                    log.warning("Transient failure, retrying", attempt=attempts, delay=round(delay, 3), error=e.message)
                    await self.sleep(delay)
            except TenancyError as e:
                log.warning("Request failed", error=e.message, error_code=e.code)
                return self._failure(correlation_id, e, started, attempts, tenant_id)
            except Exception as e:
                log.error("Unexpected request failure", error=str(e), exc_info=True)
                return self._failure(correlation_id, e, started, attempts, tenant_id)

        log.error("Request failed after retries", attempts=attempts, error=str(last_error))
        return self._failure(correlation_id, last_error, started, attempts, tenant_id)

    async def _retry_after_refresh(self, operation: Operation, headers: Dict[str, str], timeout: float,
                                   correlation_id: str, started: float, attempts: int,
                                   tenant_id: Optional[str], log) -> ApiResponse:
        """One session refresh, one retry, then redirect to sign-in"""
        try:
            refreshed = await self.auth.refresh_session()
        except Exception as e:
            log.error("Session refresh raised", error=str(e))
            refreshed = False

        if refreshed:
            attempts += 1
            try:
                data = await self._attempt(operation, headers, timeout)
                return ApiResponse(
                    success=True,
                    data=data,
                    correlation_id=correlation_id,
                    meta=self._meta(started, attempts, tenant_id),
                )
            except (BackendAuthError, AuthenticationRequiredError):
                log.warning("Authentication still failing after refresh")
            except Exception as e:
                log.warning("Request failed after session refresh", error=str(e))
                return self._failure(correlation_id, e, started, attempts, tenant_id)

        await self._redirect_to_sign_in(log)
        error = AuthenticationRequiredError("Session expired. Please sign in again.", redirect_to=self.sign_in_path)
        return self._failure(correlation_id, error, started, attempts, tenant_id, redirect_to=self.sign_in_path)

    async def _redirect_to_sign_in(self, log):
        log.info("Redirecting to sign-in", path=self.sign_in_path)
        if self.on_auth_redirect is None:
            return
        try:
            result = self.on_auth_redirect(self.sign_in_path)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            log.error("Sign-in redirect handler failed", error=str(e))

    # -- database path --------------------------------------------------

    def _gateway(self, tenant_id: Optional[str]) -> TenantScopedGateway:
        tenant_id = tenant_id or self.tenant_id
        if not tenant_id:
            raise InvalidRequestError("No tenant context available")
        if self.gateway_factory is None:
            raise InvalidRequestError("No data store configured")
        return self.gateway_factory(tenant_id)

    async def _database(self, name: str, tenant_id: Optional[str],
                        call: Callable[[TenantScopedGateway], Awaitable[Any]], **options) -> ApiResponse:
        try:
            gateway = self._gateway(tenant_id)
        except InvalidRequestError as e:
            return self._failure(str(uuid.uuid4()), e, self.clock(), 0, tenant_id)
        return await self.execute(lambda headers: call(gateway), name=name, tenant_id=gateway.tenant_id, **options)

    def _with_tenant(self, data: Dict[str, Any], tenant_id: Optional[str], include_tenant: bool) -> Dict[str, Any]:
        tenant_id = tenant_id or self.tenant_id
        if include_tenant and tenant_id:
            return {**data, "tenant_id": tenant_id}
        return dict(data)

    @staticmethod
    def _require_id(record_id: Any, operation: str):
        if record_id is None or record_id == "":
            raise InvalidRequestError(f"{operation} requires an id")

    async def get(self, collection: str, filters: Optional[Dict[str, Any]] = None, columns=None,
                  order_by: Optional[str] = None, tenant_id: Optional[str] = None, **options) -> ApiResponse:
        return await self._database(
            f"GET {collection}", tenant_id,
            lambda gw: gw.select(collection, columns=columns, filters=filters, order_by=order_by),
            **options,
        )

    async def post(self, collection: str, data, tenant_id: Optional[str] = None,
                   include_tenant: bool = True, **options) -> ApiResponse:
        if isinstance(data, list):
            body = [self._with_tenant(d, tenant_id, include_tenant) for d in data]
        else:
            body = self._with_tenant(data, tenant_id, include_tenant)
        return await self._database(
            f"POST {collection}", tenant_id, lambda gw: gw.insert(collection, body),
            include_tenant=include_tenant, **options,
        )

    async def _update_one(self, method: str, collection: str, record_id, data: Dict[str, Any],
                          tenant_id: Optional[str], include_tenant: bool, **options) -> ApiResponse:
        try:
            self._require_id(record_id, method)
        except InvalidRequestError as e:
            return self._failure(str(uuid.uuid4()), e, self.clock(), 0, tenant_id or self.tenant_id)
        body = self._with_tenant(data, tenant_id, include_tenant)

        async def call(gw: TenantScopedGateway):
            rows = await gw.update(collection, body, {"id": record_id})
            if not rows:
                raise BackendError(f"{collection} record {record_id} not found", status_code=404)
            return rows[0]

        return await self._database(
            f"{method} {collection}", tenant_id, call, include_tenant=include_tenant, **options
        )

    async def put(self, collection: str, record_id, data: Dict[str, Any], tenant_id: Optional[str] = None,
                  include_tenant: bool = True, **options) -> ApiResponse:
        return await self._update_one("PUT", collection, record_id, data, tenant_id, include_tenant, **options)

    async def patch(self, collection: str, record_id, data: Dict[str, Any], tenant_id: Optional[str] = None,
                    include_tenant: bool = True, **options) -> ApiResponse:
        return await self._update_one("PATCH", collection, record_id, data, tenant_id, include_tenant, **options)

    async def delete(self, collection: str, record_id, tenant_id: Optional[str] = None, **options) -> ApiResponse:
        try:
            self._require_id(record_id, "DELETE")
        except InvalidRequestError as e:
            return self._failure(str(uuid.uuid4()), e, self.clock(), 0, tenant_id or self.tenant_id)
        return await self._database(
            f"DELETE {collection}", tenant_id,
            lambda gw: gw.delete(collection, {"id": record_id}),
            **options,
        )

    # -- serverless functions ---------------------------------------------

    async def invoke_function(self, name: str, body: Optional[Dict[str, Any]] = None,
                              tenant_id: Optional[str] = None, include_tenant: bool = False,
                              **options) -> ApiResponse:
        """Call a serverless function; tenant injection is opt-in here"""
        if self.functions is None:
            return self._failure(
                str(uuid.uuid4()), InvalidRequestError("No function invoker configured"),
                self.clock(), 0, tenant_id or self.tenant_id,
            )
        payload = self._with_tenant(body or {}, tenant_id, include_tenant)
        timeout = options.get("timeout") or self.timeout_seconds
        return await self.execute(
            lambda headers: self.functions.invoke(name, payload, headers, timeout),
            name=f"function {name}",
            tenant_id=tenant_id,
            include_tenant=include_tenant,
            **options,
        )
