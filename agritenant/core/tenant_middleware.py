"""
Tenant context middleware and portal classification
"""

from enum import Enum
from typing import Callable, Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from agritenant.core.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()


class PortalKind(str, Enum):
    """Portal a hostname belongs to"""
    MARKETING = "marketing"
    ADMIN = "admin"
    PARTNER = "partner"
    MANAGE = "manage"
    TENANT = "tenant"


def normalize_host(host: str) -> str:
    """Lowercase hostname without port"""
    host = (host or "").strip().lower()
    if host.startswith("["):
        # IPv6 literal
        return host.split("]")[0] + "]"
    return host.split(":")[0]


def classify_portal(
    hostname: str,
    platform_domain: Optional[str] = None,
    marketing_hosts: Optional[Iterable[str]] = None,
) -> PortalKind:
    """Map a hostname to its portal; anything unrecognised is a tenant host"""
    platform_domain = (platform_domain or settings.PLATFORM_DOMAIN).lower()
    marketing = {h.lower() for h in (marketing_hosts if marketing_hosts is not None else settings.MARKETING_HOSTS)}
    host = normalize_host(hostname)

    if not host or host in marketing:
        return PortalKind.MARKETING
    if host == f"admin.{platform_domain}":
        return PortalKind.ADMIN
    if host == f"partner.{platform_domain}":
        return PortalKind.PARTNER
    if host == f"manage.{platform_domain}":
        return PortalKind.MANAGE
    return PortalKind.TENANT


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Middleware to extract the tenant hint and portal for each request"""

    async def dispatch(self, request: Request, call_next: Callable):
        # Explicit tenant id header wins over the host
        tenant_id = request.headers.get(settings.TENANT_HEADER)
        hostname = normalize_host(request.headers.get("host", ""))
        portal = classify_portal(hostname)

        request.state.tenant_id = tenant_id
        request.state.hostname = hostname
        request.state.portal = portal

        logger.debug(f"Tenant context: tenant={tenant_id} host={hostname} portal={portal.value}")

        response = await call_next(request)
        return response
