"""
Tests for retry, auth refresh, rate limiting and the tenant-scoped database path
"""

import asyncio

import pytest

from agritenant.core.errors import BackendAuthError, BackendError, RateLimitExceededError, TransientBackendError
from agritenant.services.context import TenancyContext
from agritenant.services.request_orchestrator import FixedWindowRateLimiter, RequestOrchestrator
from agritenant.services.selection_store import MemorySelectionStore

from conftest import FakeAuthProvider, ManualClock


class Recorder:
    """Operation that fails with the queued errors, then returns data"""

    def __init__(self, *errors, data=None):
        self.errors = list(errors)
        self.data = data if data is not None else {"ok": True}
        self.headers = []

    async def __call__(self, headers):
        self.headers.append(headers)
        if self.errors:
            error = self.errors.pop(0) if len(self.errors) > 1 else self.errors[0]
            if error is not None:
                raise error
        return self.data

    @property
    def calls(self):
        return len(self.headers)


class AlwaysFails(Recorder):
    async def __call__(self, headers):
        self.headers.append(headers)
        raise self.errors[0]


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def redirects():
    return []


@pytest.fixture
def orchestrator(clock, sleeps, redirects):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return RequestOrchestrator(
        FakeAuthProvider(),
        tenant_id="tenant-a",
        rate_limiter=FixedWindowRateLimiter(clock=clock),
        max_retries=3,
        base_delay_seconds=1.0,
        jitter_ratio=0.1,
        on_auth_redirect=redirects.append,
        sleep=fake_sleep,
        rand=lambda: 0.5,
    )


@pytest.mark.asyncio
async def test_success_carries_correlation_and_meta(orchestrator):
    op = Recorder(data=[1, 2, 3])

    response = await orchestrator.execute(op, name="list")

    assert response.success
    assert response.data == [1, 2, 3]
    assert response.meta.attempts == 1
    assert response.meta.tenant_id == "tenant-a"
    assert op.headers[0]["X-Correlation-ID"] == response.correlation_id


@pytest.mark.asyncio
async def test_headers_carry_version_and_tenant(orchestrator):
    op = Recorder()
    await orchestrator.execute(op)
    await orchestrator.execute(op, include_tenant=False)

    assert op.headers[0]["X-API-Version"] == "v1"
    assert op.headers[0]["X-Tenant-ID"] == "tenant-a"
    assert "X-Tenant-ID" not in op.headers[1]
    assert op.headers[0]["X-Correlation-ID"] != op.headers[1]["X-Correlation-ID"]


@pytest.mark.asyncio
async def test_transient_failures_are_retried_with_backoff(orchestrator, sleeps):
    op = AlwaysFails(TransientBackendError("HTTP 503: unavailable", status_code=503))

    response = await orchestrator.execute(op)

    assert not response.success
    assert response.error_code == "TRANSIENT_ERROR"
    assert op.calls == 4
    assert response.meta.attempts == 4
    assert sleeps == pytest.approx([1.05, 2.1, 4.2])


def test_backoff_delay_bounds():
    low = RequestOrchestrator(FakeAuthProvider(), base_delay_seconds=1.0, jitter_ratio=0.1, rand=lambda: 0.0)
    high = RequestOrchestrator(FakeAuthProvider(), base_delay_seconds=1.0, jitter_ratio=0.1, rand=lambda: 0.999)

    for attempt in range(4):
        assert low.backoff_delay(attempt) == 2 ** attempt
        assert 2 ** attempt <= high.backoff_delay(attempt) < 2 ** attempt * 1.1
        assert low.backoff_delay(attempt + 1) > high.backoff_delay(attempt)


@pytest.mark.asyncio
async def test_recovers_after_transient_failures(orchestrator, sleeps):
    op = Recorder(TransientBackendError("blip"), ConnectionError("reset"), None)

    response = await orchestrator.execute(op)

    assert response.success
    assert response.meta.attempts == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried(orchestrator, sleeps):
    op = AlwaysFails(BackendError("HTTP 400: bad filter", status_code=400))

    response = await orchestrator.execute(op)

    assert not response.success
    assert response.error_code == "BACKEND_ERROR"
    assert op.calls == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_failure_response(orchestrator):
    op = AlwaysFails(KeyError("boom"))
    response = await orchestrator.execute(op)
    assert not response.success
    assert response.error_code == "UNEXPECTED_ERROR"


@pytest.mark.asyncio
async def test_timeout_is_transient(orchestrator):
    async def slow(headers):
        await asyncio.sleep(1)

    response = await orchestrator.execute(slow, retries=0, timeout=0.01)

    assert not response.success
    assert response.error_code == "TRANSIENT_ERROR"
    assert "timed out" in response.error


@pytest.mark.asyncio
async def test_auth_failure_refreshes_once_then_redirects(orchestrator, sleeps, redirects):
    op = AlwaysFails(BackendAuthError("HTTP 401: jwt expired", status_code=401))

    response = await orchestrator.execute(op)

    assert not response.success
    assert response.error_code == "AUTHENTICATION_REQUIRED"
    assert response.redirect_to == "/auth"
    assert orchestrator.auth.refresh_calls == 1
    assert op.calls == 2
    assert sleeps == []
    assert redirects == ["/auth"]


@pytest.mark.asyncio
async def test_failed_refresh_redirects_without_retry(orchestrator, redirects):
    orchestrator.auth.refresh_succeeds = False
    op = AlwaysFails(BackendAuthError("HTTP 401", status_code=401))

    response = await orchestrator.execute(op)

    assert response.redirect_to == "/auth"
    assert op.calls == 1
    assert redirects == ["/auth"]


@pytest.mark.asyncio
async def test_refresh_then_success(orchestrator, redirects):
    op = Recorder(BackendAuthError("HTTP 401", status_code=401), None)

    response = await orchestrator.execute(op)

    assert response.success
    assert response.meta.attempts == 2
    assert orchestrator.auth.refresh_calls == 1
    assert redirects == []


@pytest.mark.asyncio
async def test_rate_limit_per_tenant_window(orchestrator, clock):
    op = Recorder()
    for _ in range(1000):
        assert (await orchestrator.execute(op)).success

    limited = await orchestrator.execute(op)

    assert not limited.success
    assert limited.error_code == "RATE_LIMITED"
    assert limited.retry_after == pytest.approx(60)
    assert op.calls == 1000

    # Another tenant has its own window
    assert (await orchestrator.execute(op, tenant_id="tenant-b")).success

    clock.advance(60)
    assert (await orchestrator.execute(op)).success


@pytest.mark.asyncio
async def test_retries_count_once_against_rate_limit(clock):
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=5, clock=clock)

    async def no_sleep(delay):
        pass

    orchestrator = RequestOrchestrator(FakeAuthProvider(), tenant_id="tenant-a", rate_limiter=limiter,
                                       max_retries=3, sleep=no_sleep)
    await orchestrator.execute(AlwaysFails(TransientBackendError("down")))

    assert limiter.remaining("tenant-a") == 4


def test_rate_limiter_retry_after_shrinks(clock):
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1, clock=clock)
    limiter.acquire("t")
    clock.advance(45)

    with pytest.raises(RateLimitExceededError) as exc:
        limiter.acquire("t")
    assert exc.value.retry_after == pytest.approx(15)

    limiter.reset("t")
    limiter.acquire("t")


@pytest.mark.asyncio
async def test_invoke_function_does_not_inject_tenant_by_default(orchestrator):
    calls = []

    class Functions:
        async def invoke(self, name, body=None, headers=None, timeout=None):
            calls.append((name, body, headers))
            return {"status": "queued"}

    orchestrator.functions = Functions()

    response = await orchestrator.invoke_function("send-sms", {"to": "+91"})
    opted_in = await orchestrator.invoke_function("send-sms", {"to": "+91"}, include_tenant=True)

    assert response.data == {"status": "queued"}
    assert calls[0][1] == {"to": "+91"}
    assert "X-Tenant-ID" not in calls[0][2]
    assert opted_in.success
    assert calls[1][1] == {"to": "+91", "tenant_id": "tenant-a"}
    assert calls[1][2]["X-Tenant-ID"] == "tenant-a"


@pytest.mark.asyncio
async def test_invoke_function_without_invoker(orchestrator):
    response = await orchestrator.invoke_function("send-sms")
    assert response.error_code == "INVALID_REQUEST"


# -- database path through the tenancy context ------------------------------


@pytest.fixture
def context(db, seed, auth):
    auth.sign_in_as("user-1")
    ctx = TenancyContext.from_session(db, auth, selection_store=MemorySelectionStore())
    return ctx


@pytest.mark.asyncio
async def test_database_path_requires_tenant_context(context):
    response = await context.orchestrator.get("farmers")

    assert not response.success
    assert response.error_code == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_crud_through_context(seed, context):
    tenant = await context.initialize()
    assert tenant.id == seed["alpha"]
    api = context.orchestrator

    listed = await api.get("farmers", order_by="full_name")
    assert [f["full_name"] for f in listed.data] == ["Ravi Kumar", "Sita Devi"]
    assert listed.meta.tenant_id == seed["alpha"]

    created = await api.post("farmers", {"full_name": "Meena Patel", "tenant_id": seed["beta"]})
    assert created.success
    farmer = created.data[0]
    assert farmer["tenant_id"] == seed["alpha"]

    patched = await api.patch("farmers", farmer["id"], {"village": "Shivpur"})
    assert patched.data["village"] == "Shivpur"

    put = await api.put("farmers", farmer["id"], {"village": "Nandgaon", "land_acres": 2.5})
    assert put.data["land_acres"] == 2.5

    deleted = await api.delete("farmers", farmer["id"])
    assert deleted.data == 1
    await context.close()


@pytest.mark.asyncio
async def test_update_requires_id_and_existing_row(seed, context):
    await context.initialize()
    api = context.orchestrator

    missing_id = await api.patch("farmers", None, {"village": "X"})
    assert missing_id.error_code == "INVALID_REQUEST"

    not_found = await api.put("farmers", "no-such-id", {"village": "X"})
    assert not_found.error_code == "BACKEND_ERROR"

    no_delete_id = await api.delete("farmers", "")
    assert no_delete_id.error_code == "INVALID_REQUEST"
    await context.close()


@pytest.mark.asyncio
async def test_database_path_denies_foreign_tenant(seed, context):
    await context.initialize()

    response = await context.orchestrator.get("farmers", tenant_id=seed["beta"])

    assert not response.success
    assert response.error_code == "ACCESS_DENIED"
    assert response.meta.attempts == 1
    await context.close()


@pytest.mark.asyncio
async def test_session_change_reinitializes_context(seed, auth, context):
    await context.initialize()

    auth.sign_in_as("user-2")
    await auth.listeners[0](auth.user)
    assert context.tenant_id == seed["beta"]
    assert context.orchestrator.tenant_id == seed["beta"]

    auth.sign_in_as(None)
    await auth.listeners[0](None)
    assert context.tenant_id is None

    await context.close()
    assert auth.listeners == []


class ExpiringSession(FakeAuthProvider):
    """Session whose user can lapse and come back on refresh"""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.saved = None

    def expire(self):
        self.saved, self.user = self.user, None

    async def refresh_session(self) -> bool:
        self.refresh_calls += 1
        if self.refresh_succeeds and self.saved is not None:
            self.user = self.saved
        return self.refresh_succeeds


@pytest.fixture
def expiring(db, seed, redirects):
    auth = ExpiringSession()
    auth.sign_in_as("user-1")
    ctx = TenancyContext.from_session(
        db, auth, selection_store=MemorySelectionStore(), on_auth_redirect=redirects.append
    )
    return auth, ctx


@pytest.mark.asyncio
async def test_expired_session_on_database_path_refreshes_and_retries(seed, expiring, redirects):
    auth, ctx = expiring
    await ctx.initialize()
    auth.expire()

    response = await ctx.orchestrator.get("farmers", order_by="full_name")

    assert response.success
    assert [f["full_name"] for f in response.data] == ["Ravi Kumar", "Sita Devi"]
    assert response.meta.attempts == 2
    assert auth.refresh_calls == 1
    assert redirects == []
    await ctx.close()


@pytest.mark.asyncio
async def test_expired_session_on_database_path_redirects_when_refresh_fails(seed, expiring, redirects):
    auth, ctx = expiring
    await ctx.initialize()
    auth.refresh_succeeds = False
    auth.expire()

    response = await ctx.orchestrator.post("farmers", {"full_name": "Meena Patel"})

    assert not response.success
    assert response.error_code == "AUTHENTICATION_REQUIRED"
    assert response.redirect_to == "/auth"
    assert auth.refresh_calls == 1
    assert redirects == ["/auth"]
    await ctx.close()
