"""
PKCE helpers for the Lark OAuth 2.0 flow.

Pure functions: verifier/challenge/state generation, authorization URL
building and constant-time state validation. No network or storage access,
so everything here is unit-testable in isolation.
"""

import base64
import hashlib
import hmac
import secrets
from urllib.parse import urlencode

from auth.config import get_endpoints

CODE_VERIFIER_BYTES = 128
STATE_BYTES = 32
CODE_CHALLENGE_METHOD = "S256"


def base64url_encode(data: bytes) -> str:
    """Base64URL-encode bytes without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Generate a high-entropy, single-use PKCE code verifier."""
    return base64url_encode(secrets.token_bytes(CODE_VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    return base64url_encode(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    """Generate an unpredictable anti-forgery state value."""
    return base64url_encode(secrets.token_bytes(STATE_BYTES))


def build_authorization_url(
    region: str,
    app_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
) -> str:
    """Build the Lark authorization URL carrying the PKCE challenge and state."""
    params = {
        "app_id": app_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    return f"{get_endpoints(region).auth}?{urlencode(params)}"


def validate_state(expected: str, received: str | None) -> bool:
    """Compare the returned state against the original in constant time."""
    if not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))
