"""
Authenticated HTTP client for the Lark Open Platform DocX API.

Every call goes through the same pipeline:

1. acquire a rate limiter token
2. obtain a valid access token (refreshing through the shared refresh task)
3. send the request
4. on HTTP 401, force one refresh and resend once
5. parse the envelope, raising ``ApiError`` on transport or application failure

The whole attempt is wrapped in ``RetryPolicy`` so 429 and 5xx responses are
retried with exponential backoff.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from auth.authenticator import PKCEAuthenticator
from auth.config import LarkConfig
from core.errors import ApiError, NetworkError
from core.rate_limiter import RateLimiter
from core.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

DOCUMENTS_PATH = "/docx/v1/documents"


def classify_error(error: BaseException, retry_network_errors: bool = True) -> int | None:
    """
    Map a failure to the HTTP status the retry policy should act on.

    Network failures are reported as 503 when they are to be retried like
    server errors; anything that is not HTTP-related maps to None (fatal).
    """
    if isinstance(error, ApiError):
        return error.http_status
    if isinstance(error, NetworkError) and retry_network_errors:
        return 503
    return None


class LarkApiClient:
    """
    Authenticated, rate-limited, retrying client for the Lark DocX API.

    Usage:
        async with LarkApiClient(config, authenticator) as client:
            envelope = await client.create_document("My Document")
    """

    def __init__(
        self,
        config: LarkConfig,
        authenticator: PKCEAuthenticator,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry_network_errors: bool = True,
    ) -> None:
        self.config = config
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter or RateLimiter(capacity=config.rate_limit_qps)
        self.retry_policy = retry_policy or RetryPolicy()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self.retry_network_errors = retry_network_errors
        self.api_base = config.endpoints.api

    async def __aenter__(self) -> "LarkApiClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    # ------------------------------------------------------------------
    # Generic request
    # ------------------------------------------------------------------

    async def request(self, method: str, path: str, body: Any | None = None) -> dict[str, Any]:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method.
            path: API path relative to the region base (e.g. ``/docx/v1/documents``).
            body: Optional JSON body.

        Returns:
            The decoded response envelope (``code``, ``msg``, ``data``).

        Raises:
            AuthError: No usable credentials and refresh was impossible.
            ApiError: Non-2xx status or non-zero application code.
            NetworkError: The request could not be sent.
        """
        url = f"{self.api_base}{path}"

        async def attempt() -> dict[str, Any]:
            await self.rate_limiter.acquire()
            token = await self.authenticator.get_valid_access_token()
            response = await self._send(method, url, token, body)

            if response.status_code == 401:
                # Token may have been revoked server-side even though it looked valid.
                logger.info(f"{method} {path} returned 401, forcing token refresh")
                await self.authenticator.force_refresh()
                token = await self.authenticator.get_valid_access_token()
                response = await self._send(method, url, token, body)

            return self._parse_response(response)

        return await self.retry_policy.execute(
            attempt,
            lambda error: classify_error(error, self.retry_network_errors),
        )

    async def _send(self, method: str, url: str, token: str, body: Any | None) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json; charset=utf-8",
        }
        logger.debug(f"{method} {url}")
        try:
            return await self.http_client.request(method, url, headers=headers, json=body)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _parse_response(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            payload = {}

        code = payload.get("code", 0)
        message = payload.get("msg") or response.reason_phrase or "unknown error"

        if not response.is_success:
            raise ApiError(message, http_status=response.status_code, code=code)
        if code != 0:
            raise ApiError(message, http_status=response.status_code, code=code)
        return payload

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def create_document(self, title: str, folder_token: str | None = None) -> dict[str, Any]:
        """Create a new DocX document, optionally inside a folder."""
        body: dict[str, Any] = {"title": title}
        if folder_token:
            body["folder_token"] = folder_token
        return await self.request("POST", DOCUMENTS_PATH, body)

    async def create_blocks(
        self,
        document_id: str,
        parent_block_id: str,
        blocks: list[dict[str, Any]],
        index: int | None = None,
    ) -> dict[str, Any]:
        """Append child blocks to ``parent_block_id`` (at ``index`` if given)."""
        body: dict[str, Any] = {"children": blocks}
        if index is not None:
            body["index"] = index
        path = f"{DOCUMENTS_PATH}/{quote(document_id, safe='')}/blocks/{quote(parent_block_id, safe='')}/children"
        return await self.request("POST", path, body)

    async def get_block(self, document_id: str, block_id: str) -> dict[str, Any]:
        """Retrieve a single block by id."""
        path = f"{DOCUMENTS_PATH}/{quote(document_id, safe='')}/blocks/{quote(block_id, safe='')}"
        return await self.request("GET", path)

    def document_url(self, document_id: str) -> str:
        """Browser URL of a document."""
        return f"{self.config.endpoints.web}/docx/{document_id}"
