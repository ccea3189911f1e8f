"""
Pydantic schemas for resolved tenant context
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Mapping, Optional

from agritenant.core.errors import InvalidRequestError
from agritenant.models.tenant import FEATURE_FLAGS, TenantStatus

DEFAULT_PRIMARY_COLOR = "#10B981"
DEFAULT_SECONDARY_COLOR = "#065F46"
DEFAULT_ACCENT_COLOR = "#F59E0B"
DEFAULT_APP_NAME = "KisanShakti AI"

# Used when the tenant record leaves a limit unset
DEFAULT_LIMITS = {
    "farmers": 1000,
    "dealers": 50,
    "products": 100,
    "storage_gb": 10,
    "api_calls_per_day": 10000,
}

LIMIT_ALIASES = {
    "storage": "storage_gb",
    "api_calls": "api_calls_per_day",
}


class TenantBrandingInfo(BaseModel):
    """Branding with fallbacks applied"""
    app_name: str = DEFAULT_APP_NAME
    logo_url: Optional[str] = None
    primary_color: str = DEFAULT_PRIMARY_COLOR
    secondary_color: str = DEFAULT_SECONDARY_COLOR
    accent_color: str = DEFAULT_ACCENT_COLOR


class TenantLimits(BaseModel):
    farmers: float = DEFAULT_LIMITS["farmers"]
    dealers: float = DEFAULT_LIMITS["dealers"]
    products: float = DEFAULT_LIMITS["products"]
    storage_gb: float = DEFAULT_LIMITS["storage_gb"]
    api_calls_per_day: float = DEFAULT_LIMITS["api_calls_per_day"]


class TenantSecurity(BaseModel):
    allowed_origins: List[str] = Field(default_factory=list)
    ip_allowlist: Optional[List[str]] = None
    session_timeout_minutes: int = 480
    rate_limit_per_minute: Optional[int] = None


class LimitCheck(BaseModel):
    """Result of checking usage against a tenant limit"""
    kind: str
    limit: float
    usage: float
    within_limit: bool
    percentage: int


class ResolvedTenant(BaseModel):
    """Tenant snapshot: base record, feature flags, limits and branding"""
    id: str
    name: str
    slug: str
    status: TenantStatus
    subscription_plan: str
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None
    features: Dict[str, bool] = Field(default_factory=dict)
    limits: TenantLimits = Field(default_factory=TenantLimits)
    usage: TenantLimits = Field(
        default_factory=lambda: TenantLimits(
            farmers=0, dealers=0, products=0, storage_gb=0, api_calls_per_day=0
        )
    )
    branding: TenantBrandingInfo = Field(default_factory=TenantBrandingInfo)
    security: TenantSecurity = Field(default_factory=TenantSecurity)

    @classmethod
    def from_records(
        cls,
        tenant: Mapping[str, Any],
        features: Optional[Mapping[str, Any]] = None,
        branding: Optional[Mapping[str, Any]] = None,
    ) -> "ResolvedTenant":
        """Build a snapshot, defaulting absent features to False and branding to the palette"""
        features = features or {}
        branding = branding or {}

        limits = {}
        for kind, default in DEFAULT_LIMITS.items():
            value = tenant.get(f"max_{kind}")
            limits[kind] = default if value is None else value

        return cls(
            id=tenant["id"],
            name=tenant["name"],
            slug=tenant["slug"],
            status=tenant.get("status") or TenantStatus.TRIAL,
            subscription_plan=tenant.get("subscription_plan") or "Kisan_Basic",
            subdomain=tenant.get("subdomain"),
            custom_domain=tenant.get("custom_domain"),
            features={flag: bool(features.get(flag, False)) for flag in FEATURE_FLAGS},
            limits=TenantLimits(**limits),
            usage=TenantLimits(
                farmers=tenant.get("current_farmers") or 0,
                dealers=tenant.get("current_dealers") or 0,
                products=tenant.get("current_products") or 0,
                storage_gb=tenant.get("current_storage_gb") or 0,
                api_calls_per_day=tenant.get("current_api_calls_today") or 0,
            ),
            branding=TenantBrandingInfo(
                app_name=branding.get("app_name") or tenant.get("name") or DEFAULT_APP_NAME,
                logo_url=branding.get("logo_url"),
                primary_color=branding.get("primary_color") or DEFAULT_PRIMARY_COLOR,
                secondary_color=branding.get("secondary_color") or DEFAULT_SECONDARY_COLOR,
                accent_color=branding.get("accent_color") or DEFAULT_ACCENT_COLOR,
            ),
            security=TenantSecurity(
                allowed_origins=tenant.get("allowed_origins") or [],
                ip_allowlist=tenant.get("ip_allowlist"),
                session_timeout_minutes=tenant.get("session_timeout_minutes") or 480,
                rate_limit_per_minute=tenant.get("rate_limit_per_minute"),
            ),
        )

    def is_feature_enabled(self, feature: str) -> bool:
        return self.features.get(feature) is True

    def check_limit(self, kind: str, current_usage: Optional[float] = None) -> LimitCheck:
        """Compare usage (recorded usage when not given) against the limit"""
        kind = LIMIT_ALIASES.get(kind, kind)
        if kind not in DEFAULT_LIMITS:
            raise InvalidRequestError(f"Unknown limit: {kind}")
        limit = getattr(self.limits, kind)
        usage = getattr(self.usage, kind) if current_usage is None else current_usage
        percentage = round(usage / limit * 100) if limit > 0 else 0
        return LimitCheck(
            kind=kind,
            limit=limit,
            usage=usage,
            within_limit=usage < limit,
            percentage=percentage,
        )


class TenantSummary(BaseModel):
    """Entry in the list of tenants available to a user"""
    id: str
    name: str
    slug: str
    status: TenantStatus
    subscription_plan: str
    role: Optional[str] = None


class TenantListing(BaseModel):
    tenants: List[TenantSummary] = Field(default_factory=list)
    default_tenant_id: Optional[str] = None
