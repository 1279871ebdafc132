"""
Custom error types for Lark document synchronization.

Provides a structured error hierarchy so callers can tell authentication
problems, API rejections and transport failures apart.
"""


# =============================================================================
# Base Exception Hierarchy
# =============================================================================


class LarkSyncError(Exception):
    """Base exception for all lark-md-sync errors."""

    pass


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(LarkSyncError):
    """Raised when authentication fails. Terminal: requires re-authentication."""

    pass


class NotAuthenticatedError(AuthError):
    """Raised when no stored tokens are available."""

    def __init__(self, message: str = "Not authenticated. Please authenticate first using start_lark_auth."):
        super().__init__(message)


class AuthCancelledError(AuthError):
    """Raised when the user closes the authorization flow without a redirect."""

    def __init__(self, message: str = "Authentication cancelled by user"):
        super().__init__(message)


class StateMismatchError(AuthError):
    """Raised when the returned OAuth state does not match the one we sent."""

    def __init__(self, message: str = "State mismatch: possible CSRF attack"):
        super().__init__(message)


class MissingAuthorizationCodeError(AuthError):
    """Raised when the redirect URL carries no authorization code."""

    def __init__(self, message: str = "No authorization code in redirect URL"):
        super().__init__(message)


class TokenExchangeError(AuthError):
    """Raised when exchanging the authorization code for tokens fails."""

    def __init__(self, message: str, http_status: int | None = None, code: int | None = None):
        super().__init__(message)
        self.http_status = http_status
        self.code = code


class TokenRefreshError(AuthError):
    """Raised when token refresh fails."""

    def __init__(self, reason: str, http_status: int | None = None, code: int | None = None):
        super().__init__(f"Failed to refresh Lark access token: {reason}. Please re-authenticate using start_lark_auth.")
        self.reason = reason
        self.http_status = http_status
        self.code = code


# =============================================================================
# Configuration Errors
# =============================================================================


class ServiceConfigurationError(LarkSyncError):
    """Raised when the service is misconfigured."""

    pass


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(LarkSyncError):
    """Raised when input validation fails."""

    pass


# =============================================================================
# API Errors
# =============================================================================


class ApiError(LarkSyncError):
    """
    Raised for a non-2xx HTTP response or a 2xx response with a non-zero
    application code.

    Attributes:
        http_status: HTTP status of the response.
        code: Lark application-level code from the response envelope (0 if absent).
    """

    def __init__(self, message: str, http_status: int, code: int = 0):
        super().__init__(message)
        self.http_status = http_status
        self.code = code

    @property
    def is_application_error(self) -> bool:
        """True when the transport succeeded but the platform rejected the call."""
        return 200 <= self.http_status < 300 and self.code != 0

    def __str__(self) -> str:
        return f"{self.args[0]} (http_status={self.http_status}, code={self.code})"


class NetworkError(LarkSyncError):
    """Raised when the HTTP request could not be completed at all."""

    pass


class SyncError(LarkSyncError):
    """Raised when a response during document persistence is missing required data."""

    pass


def format_error(operation: str, error: Exception) -> str:
    """Format an error for display to the user."""
    return f"{operation} failed: {error}"
