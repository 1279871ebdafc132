# Make the auth directory a Python package
# Public API exports from canonical locations

from auth.authenticator import AuthState, PKCEAuthenticator
from auth.config import (
    DEFAULT_REDIRECT_URI,
    LARK_MD_SYNC_CREDENTIALS_DIR,
    REGION_FEISHU,
    REGION_LARKSUITE,
    LarkConfig,
    get_credentials_directory,
    get_endpoints,
    get_lark_config,
    reload_lark_config,
)
from auth.token_store import TokenRecord, TokenStore, is_token_expired

__all__ = [
    "AuthState",
    "PKCEAuthenticator",
    "LarkConfig",
    "get_credentials_directory",
    "get_endpoints",
    "get_lark_config",
    "reload_lark_config",
    "is_token_expired",
    "TokenRecord",
    "TokenStore",
    "DEFAULT_REDIRECT_URI",
    "LARK_MD_SYNC_CREDENTIALS_DIR",
    "REGION_FEISHU",
    "REGION_LARKSUITE",
]
