"""Shared pytest fixtures for lark-md-sync tests."""

import tempfile

import pytest

from auth.config import LarkConfig
from auth.token_store import MemoryTier, TokenRecord, TokenStore


class FakeClock:
    """Manually advanced monotonic clock whose ``sleep`` moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def env_override(monkeypatch):
    """Helper to override environment variables."""

    def _override(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, value)

    return _override


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def lark_config(monkeypatch, temp_dir):
    """A LarkConfig for the larksuite region with a test app id."""
    monkeypatch.setenv("LARK_APP_ID", "cli_test_app")
    monkeypatch.setenv("LARK_REGION", "larksuite")
    monkeypatch.setenv("LARK_CREDENTIALS_DIR", temp_dir)
    monkeypatch.delenv("LARK_REDIRECT_URI", raising=False)
    return LarkConfig()


@pytest.fixture
def memory_token_store():
    """TokenStore with both tiers in memory."""
    return TokenStore(volatile=MemoryTier(), durable=MemoryTier())


@pytest.fixture
def make_token_record():
    """Factory for TokenRecords; defaults are valid far into the future."""

    def _make(
        access_token: str = "access-1",
        refresh_token: str = "refresh-1",
        expires_at: int = 10**13,
        refresh_expires_at: int = 10**13,
    ) -> TokenRecord:
        return TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    return _make
