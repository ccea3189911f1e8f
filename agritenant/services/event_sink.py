"""
Security event sink - append-only audit writes
"""

from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import func
from sqlmodel import Session, select

from agritenant.models.security_event import SecurityEvent



class SecurityEventSink(Protocol):
    async def write(
        self,
        event_type: str,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: str = "unknown",
        user_agent: str = "agritenant",
        created_at: Optional[datetime] = None,
    ) -> None:
        ...

    async def count_recent(self, user_id: str, event_type: str, since: datetime) -> int:
        ...


class SQLModelSecurityEventSink:
    """Writes security events to the security_events table"""

    def __init__(self, session: Session):
        self.session = session

    async def write(
        self,
        event_type: str,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: str = "unknown",
        user_agent: str = "agritenant",
        created_at: Optional[datetime] = None,
    ) -> None:
        event = SecurityEvent(
            event_type=event_type,
            user_id=user_id,
            tenant_id=tenant_id,
            metadata_=metadata or {},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if created_at is not None:
            event.created_at = created_at
        try:
            self.session.add(event)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    async def count_recent(self, user_id: str, event_type: str, since: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(SecurityEvent)
            .where(SecurityEvent.user_id == user_id)
            .where(SecurityEvent.event_type == event_type)
            .where(SecurityEvent.created_at >= since)
        )
        return self.session.exec(stmt).one()
