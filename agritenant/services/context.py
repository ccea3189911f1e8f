"""
Tenancy context

Explicit wiring of validator, resolver, cache, gateway and orchestrator for
one authenticated session. Shared state (cache, rate limiter, selection
store, event bus) is passed in so callers decide its lifetime; nothing here
is a module-level singleton.
"""

from typing import Callable, Optional

from sqlmodel import Session
import structlog

from agritenant.core.events import EventBus
from agritenant.core.session import AuthProvider, AuthUser
from agritenant.core.tenant_middleware import PortalKind, classify_portal
from agritenant.schemas.tenant import ResolvedTenant
from agritenant.services.data_store import DataStore, SQLModelDataStore
from agritenant.services.event_sink import SecurityEventSink, SQLModelSecurityEventSink
from agritenant.services.functions import FunctionInvoker
from agritenant.services.request_orchestrator import FixedWindowRateLimiter, RequestOrchestrator
from agritenant.services.scoped_gateway import TenantScopedGateway
from agritenant.services.security_validator import SecurityValidator
from agritenant.services.selection_store import TenantSelectionStore
from agritenant.services.tenant_cache import TenantContextCache
from agritenant.services.tenant_resolver import TenantResolver

logger = structlog.get_logger(__name__)


class TenancyContext:
    """Per-session bundle of tenancy components"""

    def __init__(
        self,
        auth: AuthProvider,
        store: DataStore,
        sink: SecurityEventSink,
        cache: Optional[TenantContextCache] = None,
        selection_store: Optional[TenantSelectionStore] = None,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        functions: Optional[FunctionInvoker] = None,
        event_bus: Optional[EventBus] = None,
        on_auth_redirect: Optional[Callable[[str], object]] = None,
    ):
        self.auth = auth
        self.store = store
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.validator = SecurityValidator(auth, store, sink, event_bus=self.event_bus)
        self.resolver = TenantResolver(
            store,
            self.validator,
            cache=cache,
            selection_store=selection_store,
            event_bus=self.event_bus,
        )
        self.orchestrator = RequestOrchestrator(
            auth,
            functions=functions,
            gateway_factory=self.gateway,
            rate_limiter=rate_limiter,
            on_auth_redirect=on_auth_redirect,
        )
        self.current_tenant: Optional[ResolvedTenant] = None
        self._unsubscribe = auth.on_session_change(self._on_session_change)

    @classmethod
    def from_session(cls, session: Session, auth: AuthProvider, **kwargs) -> "TenancyContext":
        """Context backed by a SQLModel session for both data and audit events"""
        return cls(auth, SQLModelDataStore(session), SQLModelSecurityEventSink(session), **kwargs)

    @property
    def cache(self) -> TenantContextCache:
        return self.resolver.cache

    @property
    def tenant_id(self) -> Optional[str]:
        return self.current_tenant.id if self.current_tenant else None

    def gateway(self, tenant_id: Optional[str] = None, user_id: Optional[str] = None) -> TenantScopedGateway:
        """Scoped gateway for tenant_id, or for the current tenant"""
        return TenantScopedGateway(tenant_id or self.tenant_id, self.store, self.validator, user_id=user_id)

    def _set_current(self, tenant: Optional[ResolvedTenant]):
        self.current_tenant = tenant
        self.orchestrator.tenant_id = tenant.id if tenant else None

    async def initialize(self, hostname: Optional[str] = None) -> Optional[ResolvedTenant]:
        """
        Establish the current tenant.

        A tenant host resolves by hostname; any other host falls back to the
        session user's selected or default tenant. Returns None when no user
        is signed in on a non-tenant host.
        """
        if hostname and classify_portal(hostname) == PortalKind.TENANT:
            tenant = await self.resolver.resolve_by_hostname(hostname)
        else:
            user = await self.auth.get_current_user()
            if user is None:
                self._set_current(None)
                return None
            tenant = await self.resolver.resolve_current(user.id)
        self._set_current(tenant)
        return tenant

    async def switch_tenant(self, tenant_id: str) -> ResolvedTenant:
        tenant = await self.resolver.switch_tenant(tenant_id)
        self._set_current(tenant)
        return tenant

    async def refresh(self) -> Optional[ResolvedTenant]:
        if self.current_tenant is None:
            return None
        tenant = await self.resolver.refresh(self.current_tenant.id)
        self._set_current(tenant)
        return tenant

    async def _on_session_change(self, user: Optional[AuthUser]):
        if user is None:
            logger.info("Session cleared, dropping tenant context")
            self._set_current(None)
            return
        try:
            await self.initialize()
        except Exception as e:
            logger.warning(f"Could not re-resolve tenant after session change: {e}")
            self._set_current(None)

    async def close(self):
        """Detach from the auth provider and wait for background refreshes"""
        self._unsubscribe()
        await self.resolver.drain()
