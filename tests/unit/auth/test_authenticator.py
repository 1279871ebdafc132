"""
Unit tests for the PKCE authenticator.

Tests cover:
- Interactive authorization success and every failure kind
- Shared, single-flight token refresh
- Refresh failures and logout
"""

import asyncio
import json
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import pytest

from auth.authenticator import AuthState, PKCEAuthenticator
from auth.oauth_callback_server import WebAuthResult
from auth.pkce import generate_code_challenge
from core.errors import (
    AuthCancelledError,
    AuthError,
    MissingAuthorizationCodeError,
    NotAuthenticatedError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshError,
)

EXPIRED = 1  # epoch millis far in the past


def token_payload(access_token="new-access", refresh_token="new-refresh"):
    return {
        "code": 0,
        "msg": "success",
        "data": {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_in": 7200,
            "refresh_expires_in": 2592000,
        },
    }


class FakeWebAuthFlow:
    """Answers the authorization page with a redirect built from the request."""

    def __init__(self, params=None, cancel=False, echo_state=True):
        self.params = params if params is not None else {"code": "auth-code"}
        self.cancel = cancel
        self.echo_state = echo_state
        self.auth_urls = []

    async def launch(self, auth_url):
        self.auth_urls.append(auth_url)
        if self.cancel:
            return WebAuthResult()
        query = dict(self.params)
        if self.echo_state:
            query.setdefault("state", parse_qs(urlparse(auth_url).query)["state"][0])
        return WebAuthResult(redirect_url=f"http://localhost:9876/oauth2callback?{urlencode(query)}")


class TokenEndpoint:
    """httpx MockTransport handler recording token endpoint calls."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []

    async def __call__(self, request):
        self.requests.append(json.loads(request.content))
        # Yield so concurrent callers can pile up behind the in-flight refresh.
        await asyncio.sleep(0)
        if self.responses:
            status, body = self.responses.pop(0)
        else:
            status, body = 200, token_payload()
        return httpx.Response(status, json=body)


def make_authenticator(lark_config, store, flow=None, endpoint=None):
    endpoint = endpoint or TokenEndpoint()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return PKCEAuthenticator(lark_config, store, flow or FakeWebAuthFlow(), http_client), endpoint


class TestAuthenticate:
    """Tests for the interactive authorization flow."""

    @pytest.mark.asyncio
    async def test_successful_flow_persists_tokens(self, lark_config, memory_token_store):
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        record = await auth.authenticate()

        assert record.access_token == "new-access"
        assert memory_token_store.load().refresh_token == "new-refresh"
        assert auth.state == AuthState.AUTHENTICATED
        assert auth.is_authenticated() is True
        body = endpoint.requests[0]
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "auth-code"
        assert body["app_id"] == "cli_test_app"

    @pytest.mark.asyncio
    async def test_exchange_sends_verifier_matching_challenge(self, lark_config, memory_token_store):
        flow = FakeWebAuthFlow()
        auth, endpoint = make_authenticator(lark_config, memory_token_store, flow=flow)

        await auth.authenticate()

        challenge = parse_qs(urlparse(flow.auth_urls[0]).query)["code_challenge"][0]
        assert generate_code_challenge(endpoint.requests[0]["code_verifier"]) == challenge

    @pytest.mark.asyncio
    async def test_each_flow_uses_fresh_verifier(self, lark_config, memory_token_store):
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        await auth.authenticate()
        await auth.authenticate()

        assert endpoint.requests[0]["code_verifier"] != endpoint.requests[1]["code_verifier"]

    @pytest.mark.asyncio
    async def test_cancelled_flow(self, lark_config, memory_token_store):
        auth, endpoint = make_authenticator(lark_config, memory_token_store, flow=FakeWebAuthFlow(cancel=True))

        with pytest.raises(AuthCancelledError):
            await auth.authenticate()

        assert endpoint.requests == []
        assert auth.state == AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_access_denied_is_cancellation(self, lark_config, memory_token_store):
        flow = FakeWebAuthFlow(params={"error": "access_denied"})
        auth, _ = make_authenticator(lark_config, memory_token_store, flow=flow)

        with pytest.raises(AuthCancelledError):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_other_redirect_error_is_exchange_failure(self, lark_config, memory_token_store):
        flow = FakeWebAuthFlow(params={"error": "server_error"})
        auth, _ = make_authenticator(lark_config, memory_token_store, flow=flow)

        with pytest.raises(TokenExchangeError, match="server_error"):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_state_mismatch(self, lark_config, memory_token_store):
        flow = FakeWebAuthFlow(params={"code": "auth-code", "state": "forged"})
        auth, endpoint = make_authenticator(lark_config, memory_token_store, flow=flow)

        with pytest.raises(StateMismatchError):
            await auth.authenticate()

        assert endpoint.requests == []
        assert memory_token_store.load() is None

    @pytest.mark.asyncio
    async def test_missing_state_is_mismatch(self, lark_config, memory_token_store):
        flow = FakeWebAuthFlow(params={"code": "auth-code"}, echo_state=False)
        auth, _ = make_authenticator(lark_config, memory_token_store, flow=flow)

        with pytest.raises(StateMismatchError):
            await auth.authenticate()

    @pytest.mark.asyncio
    async def test_missing_code(self, lark_config, memory_token_store):
        auth, endpoint = make_authenticator(lark_config, memory_token_store, flow=FakeWebAuthFlow(params={}))

        with pytest.raises(MissingAuthorizationCodeError):
            await auth.authenticate()

        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_exchange_rejected_by_platform(self, lark_config, memory_token_store):
        endpoint = TokenEndpoint(responses=[(200, {"code": 20003, "msg": "invalid code"})])
        auth, _ = make_authenticator(lark_config, memory_token_store, endpoint=endpoint)

        with pytest.raises(TokenExchangeError) as exc_info:
            await auth.authenticate()

        assert exc_info.value.code == 20003
        assert memory_token_store.load() is None

    @pytest.mark.asyncio
    async def test_exchange_http_failure(self, lark_config, memory_token_store):
        endpoint = TokenEndpoint(responses=[(400, {"code": 20001, "msg": "bad request"})])
        auth, _ = make_authenticator(lark_config, memory_token_store, endpoint=endpoint)

        with pytest.raises(TokenExchangeError) as exc_info:
            await auth.authenticate()

        assert exc_info.value.http_status == 400

    @pytest.mark.asyncio
    async def test_failure_kinds_are_auth_errors(self, lark_config, memory_token_store):
        auth, _ = make_authenticator(lark_config, memory_token_store, flow=FakeWebAuthFlow(cancel=True))

        with pytest.raises(AuthError):
            await auth.authenticate()


class TestTokenRefresh:
    """Tests for token access and the shared refresh."""

    @pytest.mark.asyncio
    async def test_not_authenticated(self, lark_config, memory_token_store):
        auth, _ = make_authenticator(lark_config, memory_token_store)

        with pytest.raises(NotAuthenticatedError):
            await auth.get_valid_access_token()

    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(access_token="still-good"))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        assert await auth.get_valid_access_token() == "still-good"
        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        assert await auth.get_valid_access_token() == "new-access"
        assert endpoint.requests[0]["grant_type"] == "refresh_token"
        assert endpoint.requests[0]["refresh_token"] == "refresh-1"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        tokens = await asyncio.gather(*(auth.get_valid_access_token() for _ in range(10)))

        assert len(endpoint.requests) == 1
        assert tokens == ["new-access"] * 10

    @pytest.mark.asyncio
    async def test_refresh_slot_cleared_after_success(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        await auth.force_refresh()
        await auth.force_refresh()

        assert len(endpoint.requests) == 2
        assert auth.state == AuthState.AUTHENTICATED

    @pytest.mark.asyncio
    async def test_all_waiters_see_refresh_failure(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        endpoint = TokenEndpoint(responses=[(200, {"code": 20026, "msg": "refresh token revoked"})])
        auth, _ = make_authenticator(lark_config, memory_token_store, endpoint=endpoint)

        results = await asyncio.gather(*(auth.get_valid_access_token() for _ in range(3)), return_exceptions=True)

        assert len(endpoint.requests) == 1
        assert all(isinstance(r, TokenRefreshError) for r in results)

    @pytest.mark.asyncio
    async def test_refresh_retried_after_failure(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        endpoint = TokenEndpoint(responses=[(500, {"code": 1, "msg": "boom"})])
        auth, _ = make_authenticator(lark_config, memory_token_store, endpoint=endpoint)

        with pytest.raises(TokenRefreshError):
            await auth.get_valid_access_token()
        assert await auth.get_valid_access_token() == "new-access"

    @pytest.mark.asyncio
    async def test_expired_refresh_token_fails_without_network(
        self, lark_config, memory_token_store, make_token_record
    ):
        memory_token_store.save(make_token_record(expires_at=EXPIRED, refresh_expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        with pytest.raises(TokenRefreshError, match="refresh token expired"):
            await auth.get_valid_access_token()

        assert endpoint.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_refresh(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)

        first = asyncio.ensure_future(auth.get_valid_access_token())
        second = asyncio.ensure_future(auth.get_valid_access_token())
        await asyncio.sleep(0)
        first.cancel()

        assert await second == "new-access"
        assert len(endpoint.requests) == 1

    @pytest.mark.asyncio
    async def test_logout_clears_tokens(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record())
        auth, _ = make_authenticator(lark_config, memory_token_store)

        await auth.logout()

        assert memory_token_store.load() is None
        assert auth.state == AuthState.UNAUTHENTICATED
        with pytest.raises(NotAuthenticatedError):
            await auth.get_valid_access_token()

    @pytest.mark.asyncio
    async def test_can_sign_in_again_after_logout(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record())
        auth, _ = make_authenticator(lark_config, memory_token_store)

        await auth.logout()
        await auth.authenticate()

        assert auth.state == AuthState.AUTHENTICATED
        assert memory_token_store.load().access_token == "new-access"


class TestAuthState:
    """Tests for the reported session state."""

    def test_stored_valid_token_is_authenticated(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record())
        auth, _ = make_authenticator(lark_config, memory_token_store)
        assert auth.state == AuthState.AUTHENTICATED

    def test_stored_expired_token_is_expired(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, _ = make_authenticator(lark_config, memory_token_store)
        assert auth.state == AuthState.EXPIRED

    def test_tokens_removed_elsewhere_is_unauthenticated(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record())
        auth, _ = make_authenticator(lark_config, memory_token_store)

        memory_token_store.clear()

        assert auth.state == AuthState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_refresh_without_app_id_is_refresh_error(self, lark_config, memory_token_store, make_token_record):
        memory_token_store.save(make_token_record(expires_at=EXPIRED))
        auth, endpoint = make_authenticator(lark_config, memory_token_store)
        lark_config.app_id = ""

        with pytest.raises(TokenRefreshError, match="LARK_APP_ID") as exc_info:
            await auth.get_valid_access_token()

        assert isinstance(exc_info.value, AuthError)
        assert endpoint.requests == []
