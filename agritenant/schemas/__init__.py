"""
Schemas module
"""

from agritenant.schemas.tenant import (
    DEFAULT_LIMITS,
    LimitCheck,
    ResolvedTenant,
    TenantBrandingInfo,
    TenantLimits,
    TenantListing,
    TenantSecurity,
    TenantSummary,
)

__all__ = [
    "DEFAULT_LIMITS",
    "LimitCheck",
    "ResolvedTenant",
    "TenantBrandingInfo",
    "TenantLimits",
    "TenantListing",
    "TenantSecurity",
    "TenantSummary",
]
