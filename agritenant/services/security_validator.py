"""
Security validator

Decides whether a user may act on a tenant (optionally with a minimum role)
and records every denial as a security event. All public checks fail closed:
any internal error resolves to "not permitted", never to "permitted".
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel
import structlog

from agritenant.core.config import get_settings
from agritenant.core.events import (
    EventBus,
    SecurityEventType,
    SuspiciousActivityDetected,
    utcnow,
)
from agritenant.core.roles import Role, admin_rank, is_system_role, meets_admin_role, parse_role
from agritenant.core.session import AuthProvider, AuthUser
from agritenant.services.data_store import DataStore
from agritenant.services.event_sink import SecurityEventSink

logger = structlog.get_logger(__name__)


class TenantValidationResult(BaseModel):
    """Outcome of a tenant access check"""
    is_valid: bool
    tenant_id: Optional[str] = None
    error: Optional[str] = None


class ApiAccessResult(BaseModel):
    """Outcome of the composed authentication + tenant + role check"""
    is_valid: bool
    user: Optional[AuthUser] = None
    tenant_id: Optional[str] = None
    error: Optional[str] = None


class SecurityValidator:
    """Tenant access and role checks with an audit trail"""

    def __init__(
        self,
        auth: AuthProvider,
        store: DataStore,
        sink: SecurityEventSink,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
        suspicious_window_seconds: Optional[float] = None,
        suspicious_threshold: Optional[int] = None,
        block_suspicious: Optional[bool] = None,
        block_seconds: Optional[float] = None,
        user_agent: str = "agritenant",
    ):
        settings = get_settings()
        self.auth = auth
        self.store = store
        self.sink = sink
        self.event_bus = event_bus
        self.clock = clock
        self.suspicious_window_seconds = (
            settings.SUSPICIOUS_ACTIVITY_WINDOW_SECONDS
            if suspicious_window_seconds is None else suspicious_window_seconds
        )
        self.suspicious_threshold = (
            settings.SUSPICIOUS_ACTIVITY_THRESHOLD if suspicious_threshold is None else suspicious_threshold
        )
        self.block_suspicious = (
            settings.SUSPICIOUS_ACTIVITY_BLOCK if block_suspicious is None else block_suspicious
        )
        self.block_seconds = (
            settings.SUSPICIOUS_ACTIVITY_BLOCK_SECONDS if block_seconds is None else block_seconds
        )
        self.user_agent = user_agent
        # user_id -> blocked until
        self._blocked_until: Dict[str, datetime] = {}

    async def log_security_event(
        self,
        event_type: SecurityEventType,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        ip_address: str = "unknown",
    ):
        """Write an audit event; sink failures are logged and swallowed"""
        try:
            await self.sink.write(
                event_type=SecurityEventType(event_type).value,
                user_id=user_id,
                tenant_id=tenant_id,
                metadata=metadata or {},
                ip_address=ip_address,
                user_agent=self.user_agent,
                created_at=self.clock(),
            )
        except Exception as e:
            logger.error(f"Failed to log security event {event_type}: {e}")

    async def _resolve_user_id(self, user_id: Optional[str]) -> Optional[str]:
        if user_id:
            return user_id
        user = await self.auth.get_current_user()
        return user.id if user else None

    async def get_admin_role(self, user_id: str) -> Optional[Role]:
        """Global admin role of an active admin account, None otherwise"""
        rows = await self.store.select(
            "admin_users", columns=["role"], filters={"user_id": user_id, "is_active": True}
        )
        if not rows:
            return None
        return parse_role(rows[0]["role"])

    async def get_tenant_role(self, user_id: str, tenant_id: str) -> Optional[Role]:
        """Role of the user's active membership in the tenant, None if none"""
        rows = await self.store.select(
            "user_tenants",
            columns=["role"],
            filters={"user_id": user_id, "tenant_id": tenant_id, "is_active": True},
        )
        if not rows:
            return None
        return parse_role(rows[0]["role"])

    def is_blocked(self, user_id: str) -> bool:
        until = self._blocked_until.get(user_id)
        if until is None:
            return False
        if self.clock() >= until:
            del self._blocked_until[user_id]
            return False
        return True

    def unblock(self, user_id: str):
        self._blocked_until.pop(user_id, None)

    async def validate_tenant_access(
        self, tenant_id: str, user_id: Optional[str] = None
    ) -> TenantValidationResult:
        """Check that the user (or the current session user) may access tenant_id"""
        try:
            acting_user_id = await self._resolve_user_id(user_id)
            if not acting_user_id:
                await self.log_security_event(
                    SecurityEventType.TENANT_ACCESS_DENIED,
                    tenant_id=tenant_id,
                    metadata={"reason": "No authenticated user"},
                )
                logger.warning(f"Tenant access denied for {tenant_id}: no authenticated user")
                return TenantValidationResult(is_valid=False, error="Authentication required")

            if self.is_blocked(acting_user_id):
                await self.log_security_event(
                    SecurityEventType.TENANT_ACCESS_DENIED,
                    user_id=acting_user_id,
                    tenant_id=tenant_id,
                    metadata={"reason": "User temporarily blocked"},
                )
                logger.warning(f"Tenant access denied for blocked user {acting_user_id}")
                return TenantValidationResult(is_valid=False, error="Account temporarily restricted")

            admin_role = await self.get_admin_role(acting_user_id)
            if is_system_role(admin_role):
                return TenantValidationResult(is_valid=True, tenant_id=tenant_id)

            tenant_role = await self.get_tenant_role(acting_user_id, tenant_id)
            if tenant_role is None:
                await self.log_security_event(
                    SecurityEventType.TENANT_ACCESS_DENIED,
                    user_id=acting_user_id,
                    tenant_id=tenant_id,
                    metadata={"reason": "No tenant access"},
                )
                logger.warning(f"Tenant access denied: user {acting_user_id} -> tenant {tenant_id}")
                return TenantValidationResult(is_valid=False, error="Access denied to tenant")

            return TenantValidationResult(is_valid=True, tenant_id=tenant_id)

        except Exception as e:
            logger.error(f"Tenant access validation failed for {tenant_id}: {e}")
            await self.log_security_event(
                SecurityEventType.TENANT_VALIDATION_ERROR,
                user_id=user_id,
                tenant_id=tenant_id,
                metadata={"error": str(e)},
            )
            return TenantValidationResult(is_valid=False, error="Validation failed")

    async def validate_user_role(self, required_role, tenant_id: Optional[str] = None) -> bool:
        """
        Check the current user against required_role.

        Global admins are compared on the admin ladder. Anyone else (or an
        admin asked for a role outside the ladder) needs an exact match on
        their tenant role, which requires tenant_id.
        """
        user_id = None
        try:
            required = parse_role(required_role)
            if required is None:
                logger.warning(f"Unknown role requested: {required_role}")
                return False

            user = await self.auth.get_current_user()
            if user is None:
                return False
            user_id = user.id

            admin_role = await self.get_admin_role(user_id)
            if admin_role is not None and admin_rank(required) is not None:
                return meets_admin_role(admin_role, required)

            if tenant_id:
                tenant_role = await self.get_tenant_role(user_id, tenant_id)
                return tenant_role == required

            return False

        except Exception as e:
            logger.error(f"Role validation failed for {required_role}: {e}")
            await self.log_security_event(
                SecurityEventType.ROLE_VALIDATION_ERROR,
                user_id=user_id,
                tenant_id=tenant_id,
                metadata={"required_role": str(required_role), "error": str(e)},
            )
            return False

    async def validate_api_access(
        self, tenant_id: Optional[str] = None, required_role=None
    ) -> ApiAccessResult:
        """Authentication, then tenant access, then role; first failure wins"""
        try:
            user = await self.auth.get_current_user()
        except Exception as e:
            logger.error(f"Could not resolve current user: {e}")
            user = None
        if user is None:
            return ApiAccessResult(is_valid=False, error="Authentication required")

        if tenant_id:
            tenant_check = await self.validate_tenant_access(tenant_id, user.id)
            if not tenant_check.is_valid:
                return ApiAccessResult(is_valid=False, error=tenant_check.error)

        if required_role is not None:
            has_role = await self.validate_user_role(required_role, tenant_id)
            if not has_role:
                await self.log_security_event(
                    SecurityEventType.INSUFFICIENT_PERMISSIONS,
                    user_id=user.id,
                    tenant_id=tenant_id,
                    metadata={"required_role": str(getattr(required_role, "value", required_role))},
                )
                logger.warning(f"Insufficient permissions: user {user.id} lacks {required_role}")
                return ApiAccessResult(is_valid=False, error="Insufficient permissions")

        return ApiAccessResult(is_valid=True, user=user, tenant_id=tenant_id)

    async def detect_suspicious_activity(self, user_id: str, activity_type: str) -> bool:
        """
        Count recent events of activity_type for the user and flag the user
        when the count exceeds the threshold.

        Advisory unless blocking is enabled, in which case the user is denied
        tenant access until the block expires.
        """
        since = self.clock() - timedelta(seconds=self.suspicious_window_seconds)
        try:
            count = await self.sink.count_recent(user_id, activity_type, since)
        except Exception as e:
            logger.error(f"Failed to check suspicious activity for {user_id}: {e}")
            return False

        if count <= self.suspicious_threshold:
            return False

        blocked = False
        if self.block_suspicious:
            self._blocked_until[user_id] = self.clock() + timedelta(seconds=self.block_seconds)
            blocked = True

        await self.log_security_event(
            SecurityEventType.SUSPICIOUS_ACTIVITY_DETECTED,
            user_id=user_id,
            metadata={
                "activity": activity_type,
                "count": count,
                "window_seconds": self.suspicious_window_seconds,
                "blocked": blocked,
            },
        )
        if blocked:
            await self.log_security_event(
                SecurityEventType.USER_BLOCKED,
                user_id=user_id,
                metadata={"activity": activity_type, "block_seconds": self.block_seconds},
            )

        event = SuspiciousActivityDetected(
            user_id=user_id,
            activity_type=activity_type,
            count=count,
            window_seconds=self.suspicious_window_seconds,
            blocked=blocked,
        )
        logger.warning(f"{event.warning} user={user_id} activity={activity_type} count={count}")
        if self.event_bus is not None:
            await self.event_bus.publish(event)
        return True
