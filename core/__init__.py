"""Core utilities for lark-md-sync."""

from core.errors import (
    ApiError,
    AuthCancelledError,
    AuthError,
    LarkSyncError,
    MissingAuthorizationCodeError,
    NetworkError,
    NotAuthenticatedError,
    ServiceConfigurationError,
    StateMismatchError,
    SyncError,
    TokenExchangeError,
    TokenRefreshError,
    ValidationError,
    format_error,
)
from core.rate_limiter import RateLimiter
from core.retry import RetryPolicy
from core.utils import ToolError, handle_lark_errors, validate_non_empty

__all__ = [
    "ApiError",
    "AuthCancelledError",
    "AuthError",
    "format_error",
    "handle_lark_errors",
    "LarkSyncError",
    "MissingAuthorizationCodeError",
    "NetworkError",
    "NotAuthenticatedError",
    "RateLimiter",
    "RetryPolicy",
    "ServiceConfigurationError",
    "StateMismatchError",
    "SyncError",
    "TokenExchangeError",
    "TokenRefreshError",
    "ToolError",
    "validate_non_empty",
    "ValidationError",
]
