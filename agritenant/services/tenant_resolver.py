"""
Tenant resolver

Maps an explicit tenant id, a request hostname or the current session to a
fully populated tenant snapshot. The resolver is the source of truth; the
cache in front of it is only an optimization, and every returned snapshot has
passed the security validator first.
"""

import asyncio
from typing import Any, Dict, Iterable, Optional, Set

import structlog

from agritenant.core.errors import (
    AccessDeniedError,
    AuthenticationRequiredError,
    InvalidRequestError,
    TenantNotFoundError,
)
from agritenant.core.events import (
    EventBus,
    SecurityEventType,
    TenantCacheInvalidated,
    TenantSwitched,
)
from agritenant.core.roles import Role, is_system_role
from agritenant.core.tenant_middleware import PortalKind, classify_portal, normalize_host
from agritenant.models.tenant import FEATURE_FLAGS, TenantStatus
from agritenant.schemas.tenant import ResolvedTenant, TenantListing, TenantSummary
from agritenant.services.data_store import DataStore
from agritenant.services.security_validator import SecurityValidator
from agritenant.services.selection_store import MemorySelectionStore, TenantSelectionStore
from agritenant.services.tenant_cache import TenantContextCache

logger = structlog.get_logger(__name__)

BRANDING_FIELDS = ("app_name", "logo_url", "primary_color", "secondary_color", "accent_color")
MANAGER_ROLES = (Role.TENANT_OWNER, Role.TENANT_ADMIN)


class TenantResolver:
    """Resolves tenant snapshots, tenant lists and tenant switches"""

    def __init__(
        self,
        store: DataStore,
        validator: SecurityValidator,
        cache: Optional[TenantContextCache] = None,
        selection_store: Optional[TenantSelectionStore] = None,
        event_bus: Optional[EventBus] = None,
        platform_domain: Optional[str] = None,
        marketing_hosts: Optional[Iterable[str]] = None,
        background_refresh: bool = True,
    ):
        self.store = store
        self.validator = validator
        self.cache = cache if cache is not None else TenantContextCache()
        self.selection_store = selection_store if selection_store is not None else MemorySelectionStore()
        self.event_bus = event_bus
        self.platform_domain = platform_domain
        self.marketing_hosts = marketing_hosts
        self.background_refresh = background_refresh
        self._refresh_tasks: Set[asyncio.Task] = set()
        self._refreshing: Set[str] = set()

    # -- loading --------------------------------------------------------

    async def _load(self, tenant_id: str) -> Optional[ResolvedTenant]:
        """Base record plus features and branding as one snapshot"""
        tenants = await self.store.select("tenants", filters={"id": tenant_id})
        if not tenants:
            return None
        features = await self.store.select("tenant_features", filters={"tenant_id": tenant_id})
        branding = await self.store.select("tenant_branding", filters={"tenant_id": tenant_id})
        return ResolvedTenant.from_records(
            tenants[0],
            features[0] if features else None,
            branding[0] if branding else None,
        )

    async def fetch(self, tenant_id: str) -> ResolvedTenant:
        """Authoritative read that also refreshes the cache entry"""
        tenant = await self._load(tenant_id)
        if tenant is None:
            self.cache.invalidate(tenant_id)
            raise TenantNotFoundError(f"Tenant not found: {tenant_id}")
        self.cache.set(tenant_id, tenant)
        return tenant

    def _schedule_refresh(self, tenant_id: str):
        if not self.background_refresh or tenant_id in self._refreshing:
            return
        self._refreshing.add(tenant_id)
        task = asyncio.get_running_loop().create_task(self._refresh_in_background(tenant_id))
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _refresh_in_background(self, tenant_id: str):
        try:
            await self.fetch(tenant_id)
            logger.debug(f"Background refresh completed for tenant {tenant_id}")
        except Exception as e:
            logger.warning(f"Background refresh failed for tenant {tenant_id}: {e}")
        finally:
            self._refreshing.discard(tenant_id)

    async def drain(self):
        """Wait for outstanding background refreshes"""
        if self._refresh_tasks:
            await asyncio.gather(*list(self._refresh_tasks), return_exceptions=True)

    # -- resolution -----------------------------------------------------

    async def _resolve_user_id(self, user_id: Optional[str]) -> str:
        if user_id:
            return user_id
        user = await self.validator.auth.get_current_user()
        if user is None:
            raise AuthenticationRequiredError()
        return user.id

    async def resolve_by_id(self, tenant_id: str, user_id: Optional[str] = None) -> ResolvedTenant:
        """Validated snapshot for tenant_id, served from cache when fresh"""
        check = await self.validator.validate_tenant_access(tenant_id, user_id)
        if not check.is_valid:
            raise AccessDeniedError(check.error or "Access denied to tenant", tenant_id=tenant_id, user_id=user_id)

        cached = self.cache.get(tenant_id)
        if cached is not None:
            self._schedule_refresh(tenant_id)
            return cached

        tenant = await self.fetch(tenant_id)
        logger.info(f"Resolved tenant {tenant.slug} ({tenant_id})")
        return tenant

    async def lookup_tenant_id(self, hostname: str) -> Optional[str]:
        """Custom domain match first, then the first DNS label as subdomain"""
        host = normalize_host(hostname)
        rows = await self.store.select(
            "tenants", columns=["id"], filters={"custom_domain": host, "status": TenantStatus.ACTIVE}
        )
        if not rows:
            subdomain = host.split(".")[0]
            rows = await self.store.select(
                "tenants", columns=["id"], filters={"subdomain": subdomain, "status": TenantStatus.ACTIVE}
            )
        return rows[0]["id"] if rows else None

    async def resolve_by_hostname(
        self, hostname: str, user_id: Optional[str] = None
    ) -> Optional[ResolvedTenant]:
        """
        Snapshot of the tenant serving hostname.

        None when the host is a platform portal (marketing, admin, partner,
        manage) and no tenant applies.
        """
        portal = classify_portal(hostname, self.platform_domain, self.marketing_hosts)
        if portal != PortalKind.TENANT:
            logger.debug(f"No tenant for {portal.value} portal host {hostname}")
            return None

        tenant_id = await self.lookup_tenant_id(hostname)
        if tenant_id is None:
            logger.warning(f"Tenant not found for hostname: {hostname}")
            raise TenantNotFoundError(f"No tenant for host {normalize_host(hostname)}")
        return await self.resolve_by_id(tenant_id, user_id)

    async def list_available_tenants(self, user_id: Optional[str] = None) -> TenantListing:
        """Tenants the user may enter, ordered by name, plus the default selection"""
        user_id = await self._resolve_user_id(user_id)

        admin_role = await self.validator.get_admin_role(user_id)
        if is_system_role(admin_role):
            rows = await self.store.select("tenants", order_by="name")
            summaries = [self._summary(row, admin_role.value) for row in rows]
        else:
            memberships = await self.store.select(
                "user_tenants", filters={"user_id": user_id, "is_active": True}
            )
            roles = {m["tenant_id"]: m["role"] for m in memberships}
            rows = []
            if roles:
                rows = await self.store.select("tenants", filters={"id": list(roles)}, order_by="name")
            summaries = [self._summary(row, roles.get(row["id"])) for row in rows]

        default_tenant_id = None
        if summaries:
            ids = [s.id for s in summaries]
            persisted = self.selection_store.get(user_id)
            default_tenant_id = persisted if persisted in ids else ids[0]
            if default_tenant_id != persisted:
                self.selection_store.set(user_id, default_tenant_id)

        return TenantListing(tenants=summaries, default_tenant_id=default_tenant_id)

    @staticmethod
    def _summary(row: Dict[str, Any], role) -> TenantSummary:
        return TenantSummary(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            status=row["status"],
            subscription_plan=row["subscription_plan"],
            role=getattr(role, "value", role),
        )

    async def resolve_current(self, user_id: Optional[str] = None) -> ResolvedTenant:
        """Snapshot of the user's selected (or default) tenant"""
        user_id = await self._resolve_user_id(user_id)
        listing = await self.list_available_tenants(user_id)
        if listing.default_tenant_id is None:
            raise TenantNotFoundError("User has no accessible tenants")
        return await self.resolve_by_id(listing.default_tenant_id, user_id)

    async def switch_tenant(self, tenant_id: str, user_id: Optional[str] = None) -> ResolvedTenant:
        """Validate, persist the selection and emit the switch event"""
        user_id = await self._resolve_user_id(user_id)
        previous = self.selection_store.get(user_id)

        check = await self.validator.validate_tenant_access(tenant_id, user_id)
        if not check.is_valid:
            await self.validator.log_security_event(
                SecurityEventType.TENANT_SWITCH_DENIED,
                user_id=user_id,
                tenant_id=tenant_id,
                metadata={"previous_tenant_id": previous, "reason": check.error},
            )
            logger.warning(f"Tenant switch denied: user {user_id} -> tenant {tenant_id}")
            raise AccessDeniedError(check.error or "Access denied to tenant", tenant_id=tenant_id, user_id=user_id)

        if previous:
            self.cache.invalidate(previous)
        self.cache.invalidate(tenant_id)
        tenant = await self.fetch(tenant_id)

        self.selection_store.set(user_id, tenant_id)
        await self.validator.log_security_event(
            SecurityEventType.TENANT_SWITCH_SUCCESS,
            user_id=user_id,
            tenant_id=tenant_id,
            metadata={"previous_tenant_id": previous},
        )
        logger.info(f"Tenant switched: user {user_id} {previous} -> {tenant_id}")
        if self.event_bus is not None:
            await self.event_bus.publish(
                TenantSwitched(tenant_id=tenant_id, user_id=user_id, previous_tenant_id=previous)
            )
        return tenant

    async def refresh(self, tenant_id: str, user_id: Optional[str] = None) -> ResolvedTenant:
        """Drop the cached snapshot and resolve again"""
        await self.invalidate(tenant_id, reason="refresh")
        return await self.resolve_by_id(tenant_id, user_id)

    async def invalidate(self, tenant_id: str, reason: str = "manual"):
        if self.cache.invalidate(tenant_id):
            logger.debug(f"Invalidated cached tenant {tenant_id}: {reason}")
        if self.event_bus is not None:
            await self.event_bus.publish(TenantCacheInvalidated(tenant_id=tenant_id, reason=reason))

    # -- mutations ------------------------------------------------------

    async def _require_manager(self, tenant_id: str):
        """Platform admins, tenant owners and tenant admins may change configuration"""
        check = await self.validator.validate_tenant_access(tenant_id)
        if not check.is_valid:
            raise AccessDeniedError(check.error or "Access denied to tenant", tenant_id=tenant_id)

        if await self.validator.validate_user_role(Role.ADMIN):
            return
        for role in MANAGER_ROLES:
            if await self.validator.validate_user_role(role, tenant_id):
                return

        await self.validator.log_security_event(
            SecurityEventType.INSUFFICIENT_PERMISSIONS,
            tenant_id=tenant_id,
            metadata={"required_role": [r.value for r in MANAGER_ROLES]},
        )
        raise AccessDeniedError("Insufficient permissions", tenant_id=tenant_id, reason="insufficient_role")

    async def _upsert(self, collection: str, tenant_id: str, values: Dict[str, Any]):
        existing = await self.store.select(collection, columns=["id"], filters={"tenant_id": tenant_id})
        if existing:
            await self.store.update(collection, values, {"tenant_id": tenant_id})
        else:
            await self.store.insert(collection, [dict(values, tenant_id=tenant_id)])

    async def update_branding(self, tenant_id: str, values: Dict[str, Any]) -> ResolvedTenant:
        unknown = set(values) - set(BRANDING_FIELDS)
        if not values or unknown:
            raise InvalidRequestError(f"Invalid branding fields: {', '.join(sorted(unknown)) or 'none given'}")
        await self._require_manager(tenant_id)

        await self._upsert("tenant_branding", tenant_id, values)
        await self.invalidate(tenant_id, reason="branding_updated")
        logger.info(f"Branding updated for tenant {tenant_id}: {sorted(values)}")
        return await self.fetch(tenant_id)

    async def update_features(self, tenant_id: str, flags: Dict[str, bool]) -> ResolvedTenant:
        unknown = set(flags) - set(FEATURE_FLAGS)
        if not flags or unknown:
            raise InvalidRequestError(f"Unknown feature flags: {', '.join(sorted(unknown)) or 'none given'}")
        await self._require_manager(tenant_id)

        await self._upsert("tenant_features", tenant_id, {k: bool(v) for k, v in flags.items()})
        await self.invalidate(tenant_id, reason="features_updated")
        logger.info(f"Features updated for tenant {tenant_id}: {sorted(flags)}")
        return await self.fetch(tenant_id)
