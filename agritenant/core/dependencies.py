"""
Authentication and tenancy dependencies for FastAPI
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session
from typing import Optional
import structlog

from agritenant.core.auth import verify_token
from agritenant.core.config import get_settings
from agritenant.core.database import get_session
from agritenant.core.events import EventBus
from agritenant.core.session import TokenSessionProvider
from agritenant.services.context import TenancyContext
from agritenant.services.functions import HttpFunctionInvoker
from agritenant.services.request_orchestrator import FixedWindowRateLimiter
from agritenant.services.selection_store import FileSelectionStore
from agritenant.services.tenant_cache import TenantContextCache

logger = structlog.get_logger(__name__)
settings = get_settings()
security = HTTPBearer()


class SharedTenancyState:
    """Process-wide tenancy state shared by all requests of one app"""

    def __init__(self, selection_file: Optional[str] = None):
        self.cache = TenantContextCache()
        self.rate_limiter = FixedWindowRateLimiter()
        self.selection_store = FileSelectionStore(selection_file or settings.TENANT_SELECTION_FILE)
        self.event_bus = EventBus()


def get_shared_state(request: Request) -> SharedTenancyState:
    state = getattr(request.app.state, "tenancy", None)
    if state is None:
        state = SharedTenancyState()
        request.app.state.tenancy = state
    return state


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    """Get current user ID from JWT token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = verify_token(credentials.credentials)
    if user_id is None:
        raise credentials_exception

    logger.debug(f"User authenticated: {user_id}")
    return user_id


async def get_auth_provider(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    user_id: str = Depends(get_current_user_id),
) -> TokenSessionProvider:
    """Session provider bound to the request's bearer token"""
    return TokenSessionProvider(access_token=credentials.credentials)


async def get_tenancy_context(
    auth: TokenSessionProvider = Depends(get_auth_provider),
    session: Session = Depends(get_session),
    shared: SharedTenancyState = Depends(get_shared_state),
):
    """Tenancy context for one request"""
    context = TenancyContext.from_session(
        session,
        auth,
        cache=shared.cache,
        selection_store=shared.selection_store,
        rate_limiter=shared.rate_limiter,
        event_bus=shared.event_bus,
        functions=HttpFunctionInvoker(token_getter=lambda: auth.access_token),
    )
    try:
        yield context
    finally:
        await context.close()
