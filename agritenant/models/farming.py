"""
Tenant-scoped domain collections and shared catalog collections
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import DateTime
from datetime import datetime
from decimal import Decimal
from typing import Optional
import uuid

from agritenant.core.events import utcnow


class Farmer(SQLModel, table=True):
    """Farmer registered under a tenant"""

    __tablename__ = "farmers"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True, description="Tenant ID for multi-tenant isolation")
    full_name: str
    phone: Optional[str] = Field(default=None, max_length=50)
    village: Optional[str] = None
    land_acres: Optional[float] = None
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class Dealer(SQLModel, table=True):
    """Dealer / distribution partner of a tenant"""

    __tablename__ = "dealers"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True, description="Tenant ID for multi-tenant isolation")
    business_name: str
    contact_email: Optional[str] = None
    region: Optional[str] = None
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Product(SQLModel, table=True):
    """Product sold through a tenant's marketplace"""

    __tablename__ = "products"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True, description="Tenant ID for multi-tenant isolation")
    name: str
    sku: Optional[str] = Field(default=None, index=True)
    unit_price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class BillingPlan(SQLModel, table=True):
    """Subscription plan catalog shared by every tenant"""

    __tablename__ = "billing_plans"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    code: str = Field(unique=True, index=True, description="Kisan_Basic, Shakti_Growth, AI_Enterprise, custom")
    name: str
    monthly_price: Decimal = Field(default=Decimal("0.00"), max_digits=10, decimal_places=2)
    max_farmers: Optional[int] = None
    is_active: bool = Field(default=True)
