"""
Lark Docs Writing Tools

This module provides MCP tools for authenticating against Lark and creating
DocX documents from markdown.
"""

import asyncio
import logging

import httpx
from pydantic import Field

from auth.authenticator import PKCEAuthenticator
from auth.config import LarkConfig, get_endpoints, get_lark_config
from auth.oauth_callback_server import LoopbackWebAuthFlow
from auth.token_store import LocalDirectoryTier, TokenStore, is_token_expired
from core.rate_limiter import RateLimiter
from core.server import server
from core.utils import handle_lark_errors, validate_non_empty
from larkdocs.client import DEFAULT_TIMEOUT, LarkApiClient
from larkdocs.converter import BlockConverter
from larkdocs.document_service import DocumentCreationProgress, DocumentSyncService

logger = logging.getLogger(__name__)


class LarkSession:
    """
    Wires one authenticator and one API client together from configuration.

    The authenticator and client share a single ``httpx.AsyncClient`` and the
    authenticator's refresh mutex, so every tool call in the process sees the
    same token state.
    """

    def __init__(self, config: LarkConfig, http_client: httpx.AsyncClient | None = None):
        self.config = config
        self.http_client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self._owns_http_client = http_client is None
        self.token_store = TokenStore(durable=LocalDirectoryTier(config.credentials_dir))
        self.auth_flow = LoopbackWebAuthFlow(config.redirect_uri, timeout=config.auth_timeout)
        self.authenticator = PKCEAuthenticator(config, self.token_store, self.auth_flow, self.http_client)
        self.pending_auth: asyncio.Task | None = None
        self.client = LarkApiClient(
            config,
            self.authenticator,
            rate_limiter=RateLimiter(capacity=config.rate_limit_qps),
            http_client=self.http_client,
        )
        self.converter = BlockConverter(table_width=config.table_width)

    def create_sync_service(self) -> DocumentSyncService:
        return DocumentSyncService(
            self.client,
            batch_size=self.config.batch_size,
            cell_concurrency=self.config.table_cell_concurrency,
            on_progress=_log_progress,
        )

    async def aclose(self) -> None:
        """Cancel a pending authorization and close the HTTP client this session created."""
        if self.pending_auth is not None and not self.pending_auth.done():
            self.pending_auth.cancel()
        if self._owns_http_client:
            await self.http_client.aclose()


def _log_progress(progress: DocumentCreationProgress) -> None:
    logger.info(f"[create_lark_doc] {progress.phase} {progress.current}/{progress.total}: {progress.message}")


_session: LarkSession | None = None
_closing_sessions: set[asyncio.Task] = set()


def get_lark_session() -> LarkSession:
    """Get the process-wide Lark session, creating it on first use."""
    global _session
    if _session is None:
        _session = LarkSession(get_lark_config())
    return _session


def set_lark_session(session: LarkSession | None) -> None:
    """Replace the process-wide Lark session, closing the one it replaces."""
    global _session
    previous, _session = _session, session
    if previous is None or previous is session:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(previous.aclose())
        return
    task = loop.create_task(previous.aclose())
    _closing_sessions.add(task)
    task.add_done_callback(_closing_sessions.discard)


def _log_auth_outcome(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"[start_lark_auth] Background authorization failed: {error}")
    else:
        logger.info("[start_lark_auth] Background authorization completed")


@server.tool()
@handle_lark_errors("start_lark_auth")
async def start_lark_auth() -> str:
    """
    Starts the Lark OAuth authorization flow in the user's browser.

    The user signs in and approves access; the redirect is caught on the
    local loopback server and the resulting tokens are stored. When no
    browser can be opened (e.g. on a remote host), the authorization URL is
    returned instead and the redirect is awaited in the background.

    Returns:
        str: Confirmation message, the URL to open, or a cancellation notice.
    """
    session = get_lark_session()
    logger.info(f"[start_lark_auth] Invoked. Region: '{session.config.region}'")
    if session.pending_auth is not None and not session.pending_auth.done():
        # Frees the loopback port before a new flow binds it.
        session.pending_auth.cancel()
        await asyncio.gather(session.pending_auth, return_exceptions=True)

    loop = asyncio.get_running_loop()
    manual_url: asyncio.Future[str] = loop.create_future()
    session.auth_flow.on_url = lambda url: manual_url.done() or manual_url.set_result(url)
    auth_task = asyncio.ensure_future(session.authenticator.authenticate())
    try:
        await asyncio.wait({auth_task, manual_url}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        auth_task.cancel()
        raise
    finally:
        session.auth_flow.on_url = None

    if auth_task.done():
        auth_task.result()
        return f"Successfully authenticated with Lark ({session.config.region}). You can now create documents."

    session.pending_auth = auth_task
    auth_task.add_done_callback(_log_auth_outcome)
    return (
        "Could not open a browser. Open this URL to authorize Lark access:\n"
        f"{manual_url.result()}\n"
        f"Waiting up to {session.config.auth_timeout:.0f}s for the redirect; "
        "use lark_auth_status to check the result."
    )


@server.tool()
@handle_lark_errors("lark_auth_status")
async def lark_auth_status() -> str:
    """
    Reports whether usable Lark credentials are stored.

    Returns:
        str: Human-readable authentication status.
    """
    session = get_lark_session()
    record = session.token_store.load()
    if record is None and session.pending_auth is not None and not session.pending_auth.done():
        return "Lark authorization is in progress; complete it in the browser."
    if record is None:
        return "Not authenticated with Lark. Use start_lark_auth to sign in."
    if is_token_expired(record):
        return "Lark access token has expired; it will be refreshed on the next request."
    return f"Authenticated with Lark ({session.config.region})."


@server.tool()
@handle_lark_errors("create_lark_doc")
async def create_lark_doc(
    title: str = Field(..., description="Title of the new document."),
    markdown: str = Field(..., description="Markdown content to convert into the document body."),
    folder_token: str | None = Field(None, description="Optional folder token to create the document in."),
) -> str:
    """
    Creates a new Lark document from markdown.

    Supports headings, paragraphs, bold/italic/strikethrough/inline code,
    links, bullet, numbered and task lists, blockquotes, fenced code blocks,
    horizontal rules and tables.

    Returns:
        str: Confirmation message with document ID and link.
    """
    title = validate_non_empty(title, "title")
    session = get_lark_session()
    logger.info(f"[create_lark_doc] Invoked. Title='{title}', {len(markdown)} chars of markdown")

    conversion = session.converter.convert_markdown(markdown)
    service = session.create_sync_service()
    result = await service.persist(title, conversion.blocks, conversion.table_structures, folder_token)

    msg = f"Created Lark document '{title}' (ID: {result.document_id}). Link: {result.document_url}"
    logger.info(f"Successfully created Lark document '{title}' (ID: {result.document_id})")
    return msg


@server.tool()
@handle_lark_errors("lark_logout")
async def lark_logout() -> str:
    """
    Removes the stored Lark credentials.

    Returns:
        str: Confirmation message.
    """
    session = get_lark_session()
    await session.authenticator.logout()
    host = get_endpoints(session.config.region).web
    return f"Logged out of Lark ({host}). Stored tokens were removed."
