"""
Tenant models - organization boundary, feature flags and branding
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, JSON
from datetime import datetime
from enum import Enum
from typing import List, Optional
import uuid

from agritenant.core.events import utcnow


class TenantStatus(str, Enum):
    """Tenant lifecycle status"""
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Tenant(SQLModel, table=True):
    """Tenant model for multi-tenant architecture"""

    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(index=True)
    slug: str = Field(unique=True, index=True, description="Unique tenant identifier")
    type: str = Field(default="agri_company", description="agri_company, dealer, ngo, cooperative, ...")
    status: TenantStatus = Field(default=TenantStatus.TRIAL, index=True)
    subscription_plan: str = Field(default="Kisan_Basic", description="Kisan_Basic, Shakti_Growth, AI_Enterprise, custom")

    # Routing
    subdomain: Optional[str] = Field(default=None, unique=True, index=True)
    custom_domain: Optional[str] = Field(default=None, unique=True, index=True)

    # Limits
    max_farmers: Optional[int] = None
    max_dealers: Optional[int] = None
    max_products: Optional[int] = None
    max_storage_gb: Optional[int] = None
    max_api_calls_per_day: Optional[int] = None

    # Current usage
    current_farmers: int = Field(default=0)
    current_dealers: int = Field(default=0)
    current_products: int = Field(default=0)
    current_storage_gb: float = Field(default=0.0)
    current_api_calls_today: int = Field(default=0)

    # Security settings
    allowed_origins: Optional[List[str]] = Field(default_factory=list, sa_column=Column(JSON))
    ip_allowlist: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    session_timeout_minutes: int = Field(default=480)
    rate_limit_per_minute: Optional[int] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class TenantFeatures(SQLModel, table=True):
    """Per-tenant feature flags"""

    __tablename__ = "tenant_features"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", unique=True, index=True)

    ai_chat: bool = False
    weather_forecast: bool = False
    marketplace: bool = False
    community_forum: bool = False
    satellite_imagery: bool = False
    soil_testing: bool = False
    drone_monitoring: bool = False
    iot_integration: bool = False
    ecommerce: bool = False
    payment_gateway: bool = False
    inventory_management: bool = False
    logistics_tracking: bool = False
    basic_analytics: bool = False
    advanced_analytics: bool = False
    predictive_analytics: bool = False
    custom_reports: bool = False
    api_access: bool = False
    webhook_support: bool = False
    third_party_integrations: bool = False
    white_label_mobile_app: bool = False

    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


FEATURE_FLAGS = tuple(
    name for name in TenantFeatures.model_fields
    if name not in ("id", "tenant_id", "updated_at")
)


class TenantBranding(SQLModel, table=True):
    """White-label branding for a tenant"""

    __tablename__ = "tenant_branding"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", unique=True, index=True)

    app_name: Optional[str] = None
    logo_url: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    accent_color: Optional[str] = None

    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
