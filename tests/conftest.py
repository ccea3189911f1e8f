"""
Test configuration for pytest
"""

import pytest
import os
from datetime import datetime, timedelta, timezone
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, select
from typing import Callable, Dict, Generator, List, Optional

# Test environment variables
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret"
os.environ["TENANT_SELECTION_FILE"] = "/tmp/agritenant-test-selection.json"

from agritenant.core.roles import Role  # noqa: E402
from agritenant.core.session import AuthUser  # noqa: E402
from agritenant.models import (  # noqa: E402
    AdminUser,
    BillingPlan,
    Farmer,
    SecurityEvent,
    Tenant,
    TenantBranding,
    TenantFeatures,
    TenantStatus,
    UserTenant,
)
from agritenant.services.data_store import SQLModelDataStore  # noqa: E402
from agritenant.services.event_sink import SQLModelSecurityEventSink  # noqa: E402
from agritenant.services.security_validator import SecurityValidator  # noqa: E402


# Create test engine using in-memory SQLite for unit tests. StaticPool keeps a
# single connection so the TestClient thread sees the same database.
test_engine = create_engine(
    "sqlite:///:memory:",
    echo=False,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a clean database session for each test"""
    # Create all tables
    SQLModel.metadata.create_all(test_engine)

    # Create session
    with Session(test_engine) as session:
        yield session

    # Cleanup
    SQLModel.metadata.drop_all(test_engine)


class FakeAuthProvider:
    """Controllable session provider"""

    def __init__(self, user: Optional[AuthUser] = None, refresh_succeeds: bool = True):
        self.user = user
        self.refresh_succeeds = refresh_succeeds
        self.refresh_calls = 0
        self.listeners: List[Callable] = []

    def sign_in_as(self, user_id: Optional[str]):
        self.user = AuthUser(id=user_id) if user_id else None

    async def get_current_user(self) -> Optional[AuthUser]:
        return self.user

    async def refresh_session(self) -> bool:
        self.refresh_calls += 1
        return self.refresh_succeeds

    def on_session_change(self, callback):
        self.listeners.append(callback)
        return lambda: self.listeners.remove(callback)


class ManualClock:
    """Monotonic clock advanced by hand"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualDateTimeClock:
    """Wall clock advanced by hand"""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class RecordingSink:
    """In-memory security event sink"""

    def __init__(self):
        self.events: List[Dict] = []

    async def write(self, event_type, user_id=None, tenant_id=None, metadata=None,
                    ip_address="unknown", user_agent="agritenant", created_at=None):
        self.events.append({
            "event_type": event_type,
            "user_id": user_id,
            "tenant_id": tenant_id,
            "metadata": metadata or {},
            "created_at": created_at,
        })

    async def count_recent(self, user_id, event_type, since):
        return sum(
            1 for e in self.events
            if e["user_id"] == user_id and e["event_type"] == event_type and e["created_at"] >= since
        )

    def of_type(self, event_type: str) -> List[Dict]:
        return [e for e in self.events if e["event_type"] == event_type]


class FailingSink(RecordingSink):
    """Sink whose writes always fail"""

    async def write(self, *args, **kwargs):
        raise RuntimeError("audit store unavailable")


@pytest.fixture
def seed(db: Session) -> Dict[str, str]:
    """Three tenants, memberships, admins and a shared billing plan"""
    alpha = Tenant(
        name="Alpha Agro", slug="alpha", status=TenantStatus.ACTIVE,
        subdomain="alpha", custom_domain="alpha-farms.in",
        max_farmers=200, current_farmers=150,
    )
    beta = Tenant(name="Beta Growers", slug="beta", status=TenantStatus.ACTIVE, subdomain="beta")
    gamma = Tenant(name="Gamma Co-op", slug="gamma", status=TenantStatus.TRIAL, subdomain="gamma")
    db.add_all([alpha, beta, gamma])
    db.commit()

    db.add_all([
        TenantFeatures(tenant_id=alpha.id, ai_chat=True, marketplace=True),
        TenantBranding(tenant_id=alpha.id, app_name="Alpha Kisan", primary_color="#123456"),
        UserTenant(user_id="user-1", tenant_id=alpha.id, role=Role.TENANT_USER),
        UserTenant(user_id="user-1", tenant_id=gamma.id, role=Role.FARMER),
        UserTenant(user_id="owner-1", tenant_id=alpha.id, role=Role.TENANT_OWNER),
        UserTenant(user_id="user-2", tenant_id=beta.id, role=Role.TENANT_ADMIN),
        UserTenant(user_id="lapsed-1", tenant_id=beta.id, role=Role.TENANT_USER, is_active=False),
        AdminUser(user_id="super-1", role=Role.SUPER_ADMIN),
        AdminUser(user_id="admin-1", role=Role.ADMIN),
        AdminUser(user_id="retired-1", role=Role.SUPER_ADMIN, is_active=False),
        BillingPlan(code="Kisan_Basic", name="Kisan Basic"),
        Farmer(tenant_id=alpha.id, full_name="Ravi Kumar", village="Nandgaon"),
        Farmer(tenant_id=alpha.id, full_name="Sita Devi", village="Nandgaon"),
        Farmer(tenant_id=beta.id, full_name="Arjun Singh", village="Rampur"),
    ])
    db.commit()
    return {"alpha": alpha.id, "beta": beta.id, "gamma": gamma.id}


@pytest.fixture
def auth() -> FakeAuthProvider:
    return FakeAuthProvider()


@pytest.fixture
def store(db: Session) -> SQLModelDataStore:
    return SQLModelDataStore(db)


@pytest.fixture
def sink(db: Session) -> SQLModelSecurityEventSink:
    return SQLModelSecurityEventSink(db)


@pytest.fixture
def validator(auth, store, sink) -> SecurityValidator:
    return SecurityValidator(auth, store, sink)


def security_events(db: Session, event_type: Optional[str] = None) -> List[SecurityEvent]:
    """Security events recorded so far, optionally of one type"""
    stmt = select(SecurityEvent)
    if event_type is not None:
        stmt = stmt.where(SecurityEvent.event_type == event_type)
    return list(db.exec(stmt).all())
