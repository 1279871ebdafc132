"""
Token persistence for Lark OAuth tokens.

Tokens live in two tiers under a single well-known key:

- a volatile in-memory tier, lost when the process exits
- a durable tier backed by a JSON file in the credentials directory

Reads prefer the volatile tier and fall back to the durable one,
re-hydrating the volatile tier on a hit. Writes and removals touch both.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any

from auth.config import get_credentials_directory

logger = logging.getLogger(__name__)

TOKEN_STORAGE_KEY = "lark_tokens"

# Tokens are treated as expired this long before their real deadline.
EXPIRY_MARGIN_MS = 60_000


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class TokenRecord:
    """
    Locally persisted token pair with pre-computed absolute expiry times.

    Attributes:
        access_token: Bearer token for API calls.
        refresh_token: Token used to obtain a new access token.
        expires_at: Epoch millis when the access token expires.
        refresh_expires_at: Epoch millis when the refresh token expires.
    """

    access_token: str
    refresh_token: str
    expires_at: int
    refresh_expires_at: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenRecord":
        """Create from dictionary (loaded from JSON)."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=int(data["expires_at"]),
            refresh_expires_at=int(data["refresh_expires_at"]),
        )

    @classmethod
    def from_token_response(cls, data: dict[str, Any], issued_at_ms: int | None = None) -> "TokenRecord":
        """Build a record from the ``data`` object of a token endpoint response."""
        issued = now_ms() if issued_at_ms is None else issued_at_ms
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=issued + int(data["expires_in"]) * 1000,
            refresh_expires_at=issued + int(data.get("refresh_expires_in", 0)) * 1000,
        )


def is_token_expired(record: TokenRecord, current_ms: int | None = None) -> bool:
    """True once we are within the safety margin of the access token deadline."""
    current = now_ms() if current_ms is None else current_ms
    return current >= record.expires_at - EXPIRY_MARGIN_MS


def is_refresh_token_expired(record: TokenRecord, current_ms: int | None = None) -> bool:
    """True once the refresh token itself can no longer be used."""
    if record.refresh_expires_at <= 0:
        return False
    current = now_ms() if current_ms is None else current_ms
    return current >= record.refresh_expires_at


class StorageTier(ABC):
    """One key-value storage tier."""

    @abstractmethod
    def get(self, key: str) -> dict[str, Any] | None:
        pass

    @abstractmethod
    def set(self, key: str, value: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class MemoryTier(StorageTier):
    """Volatile tier, cleared when the process exits."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(key)
        return dict(value) if value is not None else None

    def set(self, key: str, value: dict[str, Any]) -> None:
        self._data[key] = dict(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class LocalDirectoryTier(StorageTier):
    """Durable tier that keeps one JSON file per key in a directory."""

    def __init__(self, base_dir: str | None = None):
        self.base_dir: str = base_dir or get_credentials_directory()
        logger.info(f"LocalDirectoryTier initialized with base_dir: {self.base_dir}")

    def _get_path(self, key: str) -> str:
        if not os.path.exists(self.base_dir):
            os.makedirs(self.base_dir, exist_ok=True)
            logger.info(f"Created credentials directory: {self.base_dir}")
        return os.path.join(self.base_dir, f"{key}.json")

    def get(self, key: str) -> dict[str, Any] | None:
        path = self._get_path(key)
        if not os.path.exists(path):
            logger.debug(f"No token file found at {path}")
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading tokens from {path}: {e}")
            return None

    def set(self, key: str, value: dict[str, Any]) -> None:
        path = self._get_path(key)
        # Written owner-only; the file holds a refresh token.
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(value, f, indent=2)
        logger.debug(f"Stored tokens to {path}")

    def remove(self, key: str) -> None:
        path = self._get_path(key)
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Deleted tokens from {path}")


class TokenStore:
    """
    Two-tier token store addressed by a single well-known key.

    Args:
        volatile: Fast tier consulted first. Defaults to an in-memory tier.
        durable: Persistent tier. Defaults to a JSON file in the credentials dir.
        key: Storage key for the token record.
    """

    def __init__(
        self,
        volatile: StorageTier | None = None,
        durable: StorageTier | None = None,
        key: str = TOKEN_STORAGE_KEY,
    ) -> None:
        self.volatile = volatile if volatile is not None else MemoryTier()
        self.durable = durable if durable is not None else LocalDirectoryTier()
        self.key = key

    def load(self) -> TokenRecord | None:
        """Load the token record, preferring the volatile tier."""
        data = self.volatile.get(self.key)
        if data is None:
            data = self.durable.get(self.key)
            if data is None:
                return None
            self.volatile.set(self.key, data)
            logger.debug("Re-hydrated volatile token tier from durable storage")
        try:
            return TokenRecord.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed token record: {e}")
            return None

    def save(self, record: TokenRecord) -> None:
        """Persist the token record to both tiers."""
        payload = record.to_dict()
        self.volatile.set(self.key, payload)
        self.durable.set(self.key, payload)

    def clear(self) -> None:
        """Remove the token record from both tiers."""
        self.volatile.remove(self.key)
        self.durable.remove(self.key)
