"""
Tenant API endpoints
"""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from typing import Dict, Optional
import structlog

from agritenant.core.dependencies import get_tenancy_context
from agritenant.core.tenant_middleware import PortalKind, classify_portal, normalize_host
from agritenant.core.errors import TenantNotFoundError
from agritenant.schemas.tenant import LimitCheck, ResolvedTenant, TenantListing
from agritenant.services.context import TenancyContext

logger = structlog.get_logger(__name__)
router = APIRouter()


class FeatureStatus(BaseModel):
    tenant_id: str
    feature: str
    enabled: bool


class BrandingUpdate(BaseModel):
    """Branding fields to change; omitted fields are left as they are"""
    app_name: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    accent_color: Optional[str] = None


@router.get("/", response_model=TenantListing)
async def list_available_tenants(context: TenancyContext = Depends(get_tenancy_context)):
    """Tenants the caller may access, ordered by name, with the default selection"""
    return await context.resolver.list_available_tenants()


@router.get("/current", response_model=ResolvedTenant)
async def get_current_tenant(request: Request, context: TenancyContext = Depends(get_tenancy_context)):
    """Tenant for the X-Tenant-ID header, else the request host, else the caller's selection"""
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id:
        return await context.resolver.resolve_by_id(tenant_id)

    hostname = normalize_host(request.headers.get("host", ""))
    if classify_portal(hostname) == PortalKind.TENANT:
        tenant = await context.resolver.resolve_by_hostname(hostname)
        if tenant is None:
            raise TenantNotFoundError(f"No tenant for host {hostname}")
        return tenant

    return await context.resolver.resolve_current()


@router.post("/{tenant_id}/switch", response_model=ResolvedTenant)
async def switch_tenant(tenant_id: str, context: TenancyContext = Depends(get_tenancy_context)):
    """Switch the caller's active tenant"""
    tenant = await context.switch_tenant(tenant_id)
    logger.info(f"Tenant switched via API: {tenant_id}")
    return tenant


@router.get("/{tenant_id}/features/{feature}", response_model=FeatureStatus)
async def get_feature(tenant_id: str, feature: str, context: TenancyContext = Depends(get_tenancy_context)):
    tenant = await context.resolver.resolve_by_id(tenant_id)
    return FeatureStatus(tenant_id=tenant.id, feature=feature, enabled=tenant.is_feature_enabled(feature))


@router.get("/{tenant_id}/limits/{kind}", response_model=LimitCheck)
async def check_limit(
    tenant_id: str,
    kind: str,
    usage: Optional[float] = None,
    context: TenancyContext = Depends(get_tenancy_context),
):
    """Compare usage against a tenant limit (recorded usage when not given)"""
    tenant = await context.resolver.resolve_by_id(tenant_id)
    return tenant.check_limit(kind, usage)


@router.patch("/{tenant_id}/branding", response_model=ResolvedTenant)
async def update_branding(
    tenant_id: str,
    branding: BrandingUpdate,
    context: TenancyContext = Depends(get_tenancy_context),
):
    return await context.resolver.update_branding(tenant_id, branding.model_dump(exclude_unset=True))


@router.patch("/{tenant_id}/features", response_model=ResolvedTenant)
async def update_features(
    tenant_id: str,
    flags: Dict[str, bool],
    context: TenancyContext = Depends(get_tenancy_context),
):
    return await context.resolver.update_features(tenant_id, flags)
