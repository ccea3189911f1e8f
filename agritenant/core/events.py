"""
Security event vocabulary and in-process domain events

Security events are the durable audit trail (written through a sink).
Domain events are published on the in-process EventBus so that UI layers
can react, for example by surfacing a suspicious-activity warning.
"""

from datetime import datetime, timezone
from enum import Enum
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union
import uuid
import structlog

logger = structlog.get_logger(__name__)


class SecurityEventType(str, Enum):
    """Known security event types"""
    TENANT_ACCESS_DENIED = "tenant_access_denied"
    TENANT_VALIDATION_ERROR = "tenant_validation_error"
    ROLE_VALIDATION_ERROR = "role_validation_error"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    TENANT_SWITCH_SUCCESS = "tenant_switch_success"
    TENANT_SWITCH_DENIED = "tenant_switch_denied"
    TENANT_MISMATCH = "tenant_mismatch"
    TENANT_DATA_ACCESS = "tenant_data_access"
    TENANT_DATA_ACCESS_FAILED = "tenant_data_access_failed"
    SUSPICIOUS_ACTIVITY_DETECTED = "suspicious_activity_detected"
    USER_BLOCKED = "user_blocked"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent:
    """Base class for domain events"""

    def __init__(self, event_id: uuid.UUID = None):
        self.event_id = event_id or uuid.uuid4()
        self.occurred_at = utcnow()

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary"""
        return {
            "event_id": str(self.event_id),
            "occurred_at": self.occurred_at.isoformat(),
            "event_type": self.__class__.__name__
        }


class TenantSwitched(DomainEvent):
    """Event fired when the active tenant selection changes"""

    def __init__(
        self,
        tenant_id: str,
        user_id: str,
        previous_tenant_id: Optional[str] = None,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.previous_tenant_id = previous_tenant_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "previous_tenant_id": self.previous_tenant_id
        })
        return data


class SuspiciousActivityDetected(DomainEvent):
    """Event fired when a user crosses the activity threshold"""

    def __init__(
        self,
        user_id: str,
        activity_type: str,
        count: int,
        window_seconds: float,
        blocked: bool = False,
        event_id: uuid.UUID = None
    ):
        super().__init__(event_id)
        self.user_id = user_id
        self.activity_type = activity_type
        self.count = count
        self.window_seconds = window_seconds
        self.blocked = blocked

    @property
    def warning(self) -> str:
        if self.blocked:
            return "Suspicious activity detected. Account temporarily restricted."
        return "Suspicious activity detected. Account may be temporarily restricted."

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "user_id": self.user_id,
            "activity_type": self.activity_type,
            "count": self.count,
            "window_seconds": self.window_seconds,
            "blocked": self.blocked,
            "warning": self.warning
        })
        return data


class TenantCacheInvalidated(DomainEvent):
    """Event fired when a tenant's cached snapshot is evicted"""

    def __init__(self, tenant_id: str, reason: str, event_id: uuid.UUID = None):
        super().__init__(event_id)
        self.tenant_id = tenant_id
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "tenant_id": self.tenant_id,
            "reason": self.reason
        })
        return data


EventHandler = Callable[[DomainEvent], Union[None, Awaitable[None]]]


class EventBus:
    """In-process bus; handlers are keyed by event class name"""

    def __init__(self):
        self._subscribers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_type: Union[str, Type[DomainEvent]], handler: EventHandler) -> Callable[[], None]:
        """Register handler for an event class (or its name); returns an unsubscribe function"""
        key = event_type if isinstance(event_type, str) else event_type.__name__
        self._subscribers.setdefault(key, []).append(handler)
        logger.debug(f"Subscribed handler to {key}")

        def unsubscribe():
            handlers = self._subscribers.get(key, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: DomainEvent) -> int:
        """Deliver event to its handlers; returns how many completed without error"""
        event_type = event.__class__.__name__
        handlers = list(self._subscribers.get(event_type, []))
        if not handlers:
            logger.debug(f"No subscribers for {event_type}")
            return 0

        logger.info(f"Publishing {event_type} {event.event_id} to {len(handlers)} handler(s)")
        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(f"Event handler for {event_type} failed: {e}", exc_info=True)
        return delivered
