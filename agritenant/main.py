"""
AgriTenant - Main Application Entry Point
Tenant context and secure access layer for the multi-tenant agri platform
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import structlog

from agritenant.core.config import get_settings
from agritenant.core.dependencies import SharedTenancyState
from agritenant.core.errors import (
    AccessDeniedError,
    AuthenticationRequiredError,
    BackendError,
    InvalidRequestError,
    RateLimitExceededError,
    TenancyError,
    TenantNotFoundError,
    TransientBackendError,
)
from agritenant.core.tenant_middleware import TenantContextMiddleware
from agritenant.api import tenants

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger(__name__)
settings = get_settings()

ERROR_STATUS = [
    (AccessDeniedError, status.HTTP_403_FORBIDDEN),
    (AuthenticationRequiredError, status.HTTP_401_UNAUTHORIZED),
    (RateLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS),
    (TenantNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
    (TransientBackendError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (BackendError, status.HTTP_502_BAD_GATEWAY),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Initializing AgriTenant backend")
    # Tables are created by Alembic migrations, not auto-generated
    logger.info("Database managed by Alembic migrations")
    app.state.tenancy = SharedTenancyState()

    yield

    # Shutdown
    logger.info("Shutting down AgriTenant backend")


# Create FastAPI application
app = FastAPI(
    title="AgriTenant API",
    description="Tenant context resolution and tenant-scoped secure access",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure middleware stack
app.add_middleware(TenantContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


@app.exception_handler(TenancyError)
async def tenancy_error_handler(request: Request, exc: TenancyError):
    """Map tenancy errors to HTTP status codes"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    headers = {}
    if isinstance(exc, RateLimitExceededError) and exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, round(exc.retry_after)))
    if isinstance(exc, AuthenticationRequiredError):
        headers["WWW-Authenticate"] = "Bearer"

    body = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, AuthenticationRequiredError) and exc.redirect_to:
        body["redirect_to"] = exc.redirect_to
    return JSONResponse(status_code=status_code, content=body, headers=headers)


# Include routers
app.include_router(tenants.router, prefix=f"{settings.API_V1_PREFIX}/tenants", tags=["tenants"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "agritenant-api"}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "AgriTenant API",
        "version": "1.0.0",
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "agritenant.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level="info",
    )
