"""HTTP client for the hosted backend (database, auth, storage, functions).

Handles the ``apikey`` / bearer headers every hosted endpoint expects,
lazy initialisation of the shared ``httpx.AsyncClient``, client-side
timeouts and bounded retries for idempotent reads.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

logger = structlog.get_logger(__name__)

_DEFAULT_TIMEOUT = 15.0
_MAX_RETRIES = 2


class BackendError(Exception):
    """Raised when a hosted backend request fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def error_message(payload: Any, fallback: str) -> str:
    """Pull a human-readable message out of a hosted error payload."""
    if isinstance(payload, dict):
        for field in ("error_description", "msg", "message", "error"):
            value = payload.get(field)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict):
                nested = value.get("message")
                if isinstance(nested, str) and nested:
                    return nested
    if isinstance(payload, str) and payload:
        return payload
    return fallback


class BackendClient:
    """Async HTTP client for the hosted backend-as-a-service."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        timeout: float = _DEFAULT_TIMEOUT,
        max_retries: int = _MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-initialise the shared ``httpx.AsyncClient``."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Shut down the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, access_token: str | None, extra: dict[str, str] | None) -> dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    # ------------------------------------------------------------------
    # Request helper with retry
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
        access_token: str | None = None,
        retry: bool = True,
    ) -> Any:
        """Execute a request and return the decoded JSON body (or ``None``).

        Only timeouts, transport errors and 5xx responses are retried, and
        only when *retry* is true; 4xx responses fail immediately.
        """
        client = await self._get_client()
        url = self.url(path)
        attempts = self._max_retries + 1 if retry else 1
        last_error = BackendError(f"Request to {url} failed after {attempts} attempts")

        for attempt in range(attempts):
            try:
                response = await client.request(
                    method,
                    url,
                    json=json_body,
                    params=params,
                    content=content,
                    headers=self._headers(access_token, headers),
                )
            except httpx.TimeoutException as exc:
                last_error = BackendError("The request timed out. Please try again.")
                logger.warning("backend_request_timeout", url=url, attempt=attempt + 1, error=str(exc))
                continue
            except httpx.RequestError as exc:
                last_error = BackendError(f"Could not reach the server: {exc}")
                logger.warning("backend_request_error", url=url, attempt=attempt + 1, error=str(exc))
                continue

            payload = _decode(response)
            if response.is_success:
                return payload

            message = error_message(payload, f"Request failed with status {response.status_code}")
            error = BackendError(message, status_code=response.status_code, payload=payload)
            if response.status_code < 500:
                raise error
            last_error = error
            logger.warning(
                "backend_request_http_error",
                url=url,
                status=response.status_code,
                attempt=attempt + 1,
            )

        raise last_error


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text
