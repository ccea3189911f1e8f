"""
User-tenant relationships and platform admin accounts
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, JSON, UniqueConstraint
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from agritenant.core.events import utcnow
from agritenant.core.roles import Role


class UserTenant(SQLModel, table=True):
    """Associates a user with a tenant and a tenant-scoped role"""

    __tablename__ = "user_tenants"
    __table_args__ = (UniqueConstraint("user_id", "tenant_id", name="uq_user_tenant"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    role: Role = Field(default=Role.TENANT_USER)
    is_active: bool = Field(default=True, index=True)
    metadata_: Optional[Dict[str, Any]] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON)
    )

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))


class AdminUser(SQLModel, table=True):
    """Platform-level admin account (super_admin, platform_admin, admin)"""

    __tablename__ = "admin_users"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(unique=True, index=True)
    role: Role = Field(default=Role.ADMIN)
    is_active: bool = Field(default=True, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
