"""
Serverless function invocation over HTTP
"""

from typing import Any, Callable, Dict, Optional, Protocol

import httpx
import structlog

from agritenant.core.config import get_settings
from agritenant.core.errors import (
    TRANSIENT_STATUS_CODES,
    BackendAuthError,
    BackendError,
    TransientBackendError,
)

logger = structlog.get_logger(__name__)


class FunctionInvoker(Protocol):
    async def invoke(
        self,
        name: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        ...


class HttpFunctionInvoker:
    """POSTs a JSON body to <base_url>/<name> and returns the decoded response"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_getter: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.FUNCTIONS_BASE_URL).rstrip("/")
        self.token_getter = token_getter
        self.transport = transport
        self.default_timeout = settings.REQUEST_TIMEOUT_SECONDS

    async def invoke(
        self,
        name: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        token = self.token_getter() if self.token_getter else None
        if token:
            request_headers["Authorization"] = f"Bearer {token}"

        url = f"{self.base_url}/{name.lstrip('/')}"
        try:
            async with httpx.AsyncClient(
                timeout=timeout or self.default_timeout, transport=self.transport
            ) as client:
                response = await client.post(url, json=body or {}, headers=request_headers)
        except httpx.TimeoutException as e:
            raise TransientBackendError(f"Function {name} timed out") from e
        except httpx.TransportError as e:
            raise TransientBackendError(f"Network error calling function {name}: {e}") from e

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        detail = response.text[:500]
        logger.debug(f"Function {name} returned HTTP {response.status_code}")
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientBackendError(
                f"HTTP {response.status_code}: {detail}", status_code=response.status_code
            )
        if response.status_code == 401:
            raise BackendAuthError(f"HTTP 401: {detail}", status_code=401)
        raise BackendError(f"HTTP {response.status_code}: {detail}", status_code=response.status_code)
