"""
Lark OAuth and client configuration.

Provides a single source of truth for region endpoints, OAuth client settings
and the tunables of the synchronization engine. Values come from environment
variables with sensible defaults.
"""

import os
from dataclasses import dataclass

from core.errors import ServiceConfigurationError

# =============================================================================
# Region endpoints
# =============================================================================

REGION_FEISHU = "feishu"
REGION_LARKSUITE = "larksuite"
SUPPORTED_REGIONS = (REGION_FEISHU, REGION_LARKSUITE)


@dataclass(frozen=True)
class LarkEndpoints:
    """Base URLs for one Lark deployment."""

    auth: str
    token: str
    api: str
    web: str


ENDPOINTS: dict[str, LarkEndpoints] = {
    REGION_FEISHU: LarkEndpoints(
        auth="https://open.feishu.cn/open-apis/authen/v1/authorize",
        token="https://open.feishu.cn/open-apis/authen/v1/oidc/access_token",
        api="https://open.feishu.cn/open-apis",
        web="https://www.feishu.cn",
    ),
    REGION_LARKSUITE: LarkEndpoints(
        auth="https://open.larksuite.com/open-apis/authen/v1/authorize",
        token="https://open.larksuite.com/open-apis/authen/v1/oidc/access_token",
        api="https://open.larksuite.com/open-apis",
        web="https://www.larksuite.com",
    ),
}

# Application metadata
LARK_MD_SYNC_CREDENTIALS_DIR = "~/.config/lark-md-sync"
DEFAULT_REDIRECT_URI = "http://localhost:9876/oauth2callback"


def get_endpoints(region: str) -> LarkEndpoints:
    """Return the endpoints for a region, raising on unknown regions."""
    try:
        return ENDPOINTS[region]
    except KeyError:
        raise ServiceConfigurationError(
            f"Unsupported Lark region '{region}'. Expected one of: {', '.join(SUPPORTED_REGIONS)}"
        ) from None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ServiceConfigurationError(f"{name} must be an integer, got '{raw}'") from None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ServiceConfigurationError(f"{name} must be a number, got '{raw}'") from None


class LarkConfig:
    """
    Centralized configuration management.

    Reads everything once from the environment on construction. Use
    ``reload_lark_config()`` after changing the environment in tests.
    """

    def __init__(self):
        # OAuth client configuration
        self.app_id = os.getenv("LARK_APP_ID") or None
        self.region = os.getenv("LARK_REGION", REGION_LARKSUITE).strip().lower()
        if self.region not in SUPPORTED_REGIONS:
            raise ServiceConfigurationError(
                f"LARK_REGION must be one of {', '.join(SUPPORTED_REGIONS)}, got '{self.region}'"
            )
        self.redirect_uri = os.getenv("LARK_REDIRECT_URI", DEFAULT_REDIRECT_URI)
        self.auth_timeout = _float_env("LARK_AUTH_TIMEOUT", 300.0)

        # Token persistence
        self.credentials_dir = os.path.expanduser(os.getenv("LARK_CREDENTIALS_DIR", LARK_MD_SYNC_CREDENTIALS_DIR))

        # Synchronization engine tunables
        self.rate_limit_qps = _int_env("LARK_RATE_LIMIT_QPS", 5)
        self.batch_size = _int_env("LARK_BATCH_SIZE", 50)
        self.table_cell_concurrency = _int_env("LARK_TABLE_CELL_CONCURRENCY", 5)
        self.table_width = _int_env("LARK_TABLE_WIDTH", 720)

    @property
    def endpoints(self) -> LarkEndpoints:
        return get_endpoints(self.region)

    def is_configured(self) -> bool:
        """True if an app id is available."""
        return bool(self.app_id)

    def require_app_id(self) -> str:
        """Return the app id or raise a configuration error."""
        if not self.app_id:
            raise ServiceConfigurationError(
                "Lark OAuth is not configured. Set the LARK_APP_ID environment variable."
            )
        return self.app_id

    def get_environment_summary(self) -> dict:
        """
        Get a summary of the current configuration.

        Returns:
            Dictionary with configuration summary (excluding secrets)
        """
        return {
            "region": self.region,
            "app_configured": self.is_configured(),
            "redirect_uri": self.redirect_uri,
            "credentials_dir": self.credentials_dir,
            "rate_limit_qps": self.rate_limit_qps,
            "batch_size": self.batch_size,
            "table_cell_concurrency": self.table_cell_concurrency,
            "table_width": self.table_width,
        }


_lark_config: LarkConfig | None = None


def get_lark_config() -> LarkConfig:
    """Get the global configuration instance."""
    global _lark_config
    if _lark_config is None:
        _lark_config = LarkConfig()
    return _lark_config


def reload_lark_config() -> LarkConfig:
    """Re-read configuration from the environment."""
    global _lark_config
    _lark_config = LarkConfig()
    return _lark_config


def get_credentials_directory() -> str:
    """Expanded path to the token storage directory."""
    return get_lark_config().credentials_dir
