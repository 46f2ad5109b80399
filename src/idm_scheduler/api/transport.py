"""Transport collaborator for dispatching one API call.

The scheduler treats the transport as a black box: it is handed an
endpoint, method and optional body and returns a structured
``ApiResponse``. Failures are returned, never raised, so that the
scheduler can classify them into the error taxonomy itself.

``HttpTransport`` is an httpx implementation suitable for token-based
access. Session cookies and anti-forgery tokens are not managed here.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx

from idm_scheduler.config import ApiConfig, get_settings
from idm_scheduler.logging import get_logger
from idm_scheduler.schemas import ApiResponse

from .exceptions import (
    AuthorizationLostError,
    ClientRequestError,
    SchedulerError,
    ThrottledError,
    TransientServerError,
)
from .rate_limit.schemas import parse_retry_after

logger = get_logger(__name__)

# Error code the API uses in a JSON body when the org quota is exceeded
RATE_LIMIT_ERROR_CODES = frozenset({"E0000047"})


@runtime_checkable
class Transport(Protocol):
    """Performs exactly one HTTP call."""

    async def send(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
    ) -> ApiResponse: ...


class HttpTransport:
    """httpx-backed transport.

    Usage:
        async with HttpTransport() as transport:
            response = await transport.send("/api/v1/users/me")
            if response.success:
                print(response.data["profile"]["login"])
    """

    def __init__(
        self,
        config: ApiConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Connection settings (uses settings if not provided)
            client: Optional pre-built httpx client (tests, custom auth)
        """
        self._config = config or get_settings().api
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the underlying httpx client."""
        if self._client is None:
            headers = {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Cache-Control": "no-cache, no-store",
            }
            if self._config.api_token:
                headers["Authorization"] = f"SSWS {self._config.api_token}"
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=headers,
                timeout=self._config.request_timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    async def send(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any | None = None,
    ) -> ApiResponse:
        """Perform one call and return a structured response."""
        method = method.upper()
        json_body = body if body is not None and method != "GET" else None

        try:
            response = await self.client.request(method, endpoint, json=json_body)
        except httpx.HTTPError as e:
            logger.warning("{} {} failed: {}", method, endpoint, e)
            return ApiResponse(success=False, status=None, error=str(e) or type(e).__name__)

        headers = {key.lower(): value for key, value in response.headers.items()}
        data = _parse_json(response)

        if not response.is_success:
            return ApiResponse(
                success=False,
                status=response.status_code,
                headers=headers,
                data=data,
                error=_error_message(data, response.status_code),
            )

        return ApiResponse(
            success=True,
            status=response.status_code,
            headers=headers,
            data=data,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> HttpTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()


def _parse_json(response: httpx.Response) -> Any:
    """Parse a JSON body, returning None for empty or non-JSON bodies."""
    if not response.content:
        return None
    if "application/json" not in response.headers.get("content-type", ""):
        return None
    try:
        return response.json()
    except ValueError:
        logger.warning("Failed to parse JSON response (status={})", response.status_code)
        return None


def _error_message(data: Any, status: int) -> str:
    """Extract the API's error summary, falling back to the status code."""
    if isinstance(data, dict):
        message = data.get("errorSummary") or data.get("message")
        if message:
            return str(message)
    return f"Request failed with status {status}"


def classify_failure(response: ApiResponse) -> SchedulerError:
    """Convert a failed response into the matching scheduler error.

    Args:
        response: A response with ``success=False``

    Returns:
        Exception instance to reject the caller's future with
    """
    status = response.status
    message = response.error or (
        f"Request failed with status {status}" if status else "Network error"
    )

    error_code = response.data.get("errorCode") if isinstance(response.data, dict) else None
    if status == 429 or error_code in RATE_LIMIT_ERROR_CODES:
        return ThrottledError(
            message,
            status=status,
            retry_after=parse_retry_after(response.headers),
        )
    if status == 403:
        return AuthorizationLostError(message, status=status)
    if status is not None and 400 <= status < 500:
        return ClientRequestError(message, status=status)
    return TransientServerError(message, status=status)
