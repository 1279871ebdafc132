"""
Lark OAuth 2.0 + PKCE authenticator.

Owns the auth session for one client instance: it runs the interactive
authorization, exchanges and refreshes tokens, and persists them through a
``TokenStore``.

Concurrent callers that need a fresh token share exactly one in-flight
refresh. The first caller creates the refresh task and stores it in
``_refresh_task``; every caller (the starter included) awaits that same
task, and the slot is cleared once it settles, whatever the outcome.
"""

import asyncio
import logging
from enum import Enum
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx

from auth.config import LarkConfig, get_endpoints
from auth.oauth_callback_server import WebAuthFlow
from auth.pkce import (
    build_authorization_url,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
    validate_state,
)
from auth.token_store import (
    TokenRecord,
    TokenStore,
    is_refresh_token_expired,
    is_token_expired,
)
from core.errors import (
    AuthCancelledError,
    MissingAuthorizationCodeError,
    NotAuthenticatedError,
    ServiceConfigurationError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION_IN_FLIGHT = "authorization_in_flight"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    REFRESH_IN_FLIGHT = "refresh_in_flight"
    LOGGED_OUT = "logged_out"


class PKCEAuthenticator:
    """
    Interactive PKCE authorization plus mutex-protected token refresh.

    Args:
        config: Lark configuration (app id, region, redirect URI).
        token_store: Two-tier token persistence.
        web_auth_flow: Primitive that opens the authorization page and returns the redirect.
        http_client: Shared async HTTP client for the token endpoint.
    """

    def __init__(
        self,
        config: LarkConfig,
        token_store: TokenStore,
        web_auth_flow: WebAuthFlow,
        http_client: httpx.AsyncClient,
    ) -> None:
        self.config = config
        self.token_store = token_store
        self.web_auth_flow = web_auth_flow
        self.http_client = http_client
        self._refresh_task: asyncio.Task | None = None
        self._state = AuthState.AUTHENTICATED if token_store.load() is not None else AuthState.UNAUTHENTICATED

    @property
    def state(self) -> AuthState:
        if self._refresh_task is not None:
            return AuthState.REFRESH_IN_FLIGHT
        if self._state == AuthState.AUTHENTICATED:
            record = self.token_store.load()
            if record is None:
                return AuthState.UNAUTHENTICATED
            if is_token_expired(record):
                return AuthState.EXPIRED
        return self._state

    # ------------------------------------------------------------------
    # Interactive authorization
    # ------------------------------------------------------------------

    async def authenticate(self) -> TokenRecord:
        """
        Run the full PKCE authorization flow and persist the resulting tokens.

        Raises:
            AuthCancelledError: The user closed the flow without a redirect.
            StateMismatchError: The returned state differs from the one sent.
            MissingAuthorizationCodeError: The redirect carried no code.
            TokenExchangeError: The token endpoint rejected the exchange.
        """
        app_id = self.config.require_app_id()
        code_verifier: str | None = generate_code_verifier()
        previous_state = self._state
        self._state = AuthState.AUTHORIZATION_IN_FLIGHT
        try:
            state = generate_state()
            auth_url = build_authorization_url(
                self.config.region,
                app_id,
                self.config.redirect_uri,
                generate_code_challenge(code_verifier),
                state,
            )
            logger.info(f"Starting Lark authorization ({self.config.region})")

            result = await self.web_auth_flow.launch(auth_url)
            if result.cancelled:
                raise AuthCancelledError()

            params = parse_qs(urlparse(result.redirect_url).query)
            received_state = params.get("state", [""])[0]
            if not validate_state(state, received_state):
                raise StateMismatchError()

            error = params.get("error", [""])[0]
            if error == "access_denied":
                raise AuthCancelledError("Authorization denied by user")
            if error:
                raise TokenExchangeError(f"Authorization failed: {error}")

            code = params.get("code", [""])[0]
            if not code:
                raise MissingAuthorizationCodeError()

            record = await self._exchange_code(app_id, code, code_verifier)
            self.token_store.save(record)
            self._state = AuthState.AUTHENTICATED
            logger.info("Lark authorization completed")
            return record
        except BaseException:
            if self._state == AuthState.AUTHORIZATION_IN_FLIGHT:
                self._state = previous_state
            raise
        finally:
            # The verifier must not outlive this call.
            code_verifier = None

    async def _exchange_code(self, app_id: str, code: str, code_verifier: str) -> TokenRecord:
        body = {
            "grant_type": "authorization_code",
            "code": code,
            "code_verifier": code_verifier,
            "app_id": app_id,
            "redirect_uri": self.config.redirect_uri,
        }
        try:
            data = await self._post_token_endpoint(body)
        except _TokenEndpointError as e:
            raise TokenExchangeError(f"Token exchange failed: {e.message}", e.http_status, e.code) from e
        return TokenRecord.from_token_response(data)

    # ------------------------------------------------------------------
    # Token access and refresh
    # ------------------------------------------------------------------

    def is_authenticated(self) -> bool:
        """True if a stored access token is currently usable."""
        record = self.token_store.load()
        return record is not None and not is_token_expired(record)

    async def get_valid_access_token(self) -> str:
        """
        Return a usable access token, refreshing it first when expired.

        Raises:
            NotAuthenticatedError: No tokens are stored.
            TokenRefreshError: The refresh failed.
        """
        record = self.token_store.load()
        if record is None:
            raise NotAuthenticatedError()
        if not is_token_expired(record):
            return record.access_token

        await self._shared_refresh()

        refreshed = self.token_store.load()
        if refreshed is None:
            raise TokenRefreshError("no tokens stored after refresh")
        return refreshed.access_token

    async def force_refresh(self) -> None:
        """Refresh unconditionally, e.g. after a server-side 401."""
        await self._shared_refresh()

    async def _shared_refresh(self) -> None:
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._run_refresh())
        # Shielded so that one cancelled waiter does not cancel the refresh for everyone.
        await asyncio.shield(self._refresh_task)

    async def _run_refresh(self) -> None:
        try:
            await self._do_refresh()
        finally:
            self._refresh_task = None

    async def _do_refresh(self) -> None:
        record = self.token_store.load()
        if record is None:
            raise NotAuthenticatedError("No tokens available for refresh")
        if is_refresh_token_expired(record):
            self._state = AuthState.UNAUTHENTICATED
            raise TokenRefreshError("refresh token expired")

        try:
            app_id = self.config.require_app_id()
        except ServiceConfigurationError as e:
            raise TokenRefreshError(str(e)) from e

        logger.info("Refreshing Lark access token")
        body = {
            "grant_type": "refresh_token",
            "refresh_token": record.refresh_token,
            "app_id": app_id,
        }
        try:
            data = await self._post_token_endpoint(body)
        except _TokenEndpointError as e:
            raise TokenRefreshError(e.message, e.http_status, e.code) from e

        self.token_store.save(TokenRecord.from_token_response(data))
        self._state = AuthState.AUTHENTICATED
        logger.info("Lark access token refreshed")

    async def logout(self) -> None:
        """Remove all stored tokens; the session then starts over unauthenticated."""
        self._state = AuthState.LOGGED_OUT
        self.token_store.clear()
        logger.info("Logged out of Lark; stored tokens removed")
        self._state = AuthState.UNAUTHENTICATED

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    async def _post_token_endpoint(self, body: dict[str, Any]) -> dict[str, Any]:
        endpoint = get_endpoints(self.config.region).token
        try:
            response = await self.http_client.post(endpoint, json=body)
        except httpx.TransportError as e:
            raise _TokenEndpointError(f"network error: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if not response.is_success:
            raise _TokenEndpointError(
                payload.get("msg") or response.reason_phrase,
                response.status_code,
                payload.get("code", 0),
            )
        if payload.get("code", 0) != 0:
            raise _TokenEndpointError(payload.get("msg", "unknown error"), response.status_code, payload["code"])

        data = payload.get("data")
        if not data or "access_token" not in data:
            raise _TokenEndpointError("response contained no token data", response.status_code, 0)
        return data


class _TokenEndpointError(Exception):
    def __init__(self, message: str, http_status: int | None = None, code: int | None = None):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.code = code
