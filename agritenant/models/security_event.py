"""
Security event model - append-only audit trail
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, DateTime, JSON
from datetime import datetime
from typing import Any, Dict, Optional
import uuid

from agritenant.core.events import utcnow


class SecurityEvent(SQLModel, table=True):
    """Immutable audit record of an access decision or data operation"""

    __tablename__ = "security_events"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    user_id: Optional[str] = Field(default=None, index=True)
    tenant_id: Optional[str] = Field(default=None, index=True)
    metadata_: Optional[Dict[str, Any]] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON)
    )
    ip_address: str = Field(default="unknown")
    user_agent: str = Field(default="agritenant")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
