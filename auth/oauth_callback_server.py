"""
Interactive web authorization via a loopback redirect server.

Opens the Lark authorization page in the user's browser and starts a minimal
HTTP server on the host/port of the configured redirect URI to catch the
redirect. The full redirect URL is handed back to the caller's event loop;
closing the browser without completing the flow ends in a timeout, which is
reported as cancellation.
"""

import asyncio
import logging
import socket
import threading
import time
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse

from core.errors import ServiceConfigurationError

logger = logging.getLogger(__name__)

SUCCESS_PAGE = """<!DOCTYPE html>
<html><head><title>Lark authorization</title></head>
<body style="font-family: sans-serif; text-align: center; margin-top: 4em;">
<h2>Authorization received</h2>
<p>You can close this window and return to your application.</p>
</body></html>"""


@dataclass
class WebAuthResult:
    """Outcome of an interactive authorization: a redirect URL, or nothing."""

    redirect_url: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.redirect_url is None


class WebAuthFlow(Protocol):
    """Platform primitive that runs an interactive authorization page."""

    async def launch(self, auth_url: str) -> WebAuthResult: ...


class MinimalOAuthServer:
    """
    Minimal HTTP server for OAuth redirects.
    Only runs while an authorization is in flight.
    """

    def __init__(self, host: str, port: int, path: str, on_redirect: Callable[[str], None]):
        self.host = host
        self.port = port
        self.path = path
        self.on_redirect = on_redirect
        self.app = FastAPI()
        self.server = None
        self.server_thread = None
        self.is_running = False

        self._setup_callback_route()

    def _setup_callback_route(self):
        server_instance = self

        @self.app.get(self.path)
        async def oauth_callback(request: Request):
            logger.info("OAuth redirect received on loopback server")
            server_instance.on_redirect(str(request.url))
            return HTMLResponse(SUCCESS_PAGE)

    def start(self) -> tuple[bool, str]:
        """
        Start the server in a background thread.

        Returns:
            Tuple of (success: bool, error_message: str)
        """
        if self.is_running:
            return True, ""

        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                s.bind((self.host, self.port))
        except OSError:
            error_msg = f"Port {self.port} is already in use on {self.host}. Cannot start OAuth redirect server."
            logger.error(error_msg)
            return False, error_msg

        def run_server():
            try:
                config = uvicorn.Config(
                    self.app,
                    host=self.host,
                    port=self.port,
                    log_level="warning",
                    access_log=False,
                )
                self.server = uvicorn.Server(config)
                asyncio.run(self.server.serve())
            except Exception as e:
                logger.error(f"OAuth redirect server error: {e}", exc_info=True)
                self.is_running = False

        self.server_thread = threading.Thread(target=run_server, daemon=True)
        self.server_thread.start()

        max_wait = 3.0
        start_time = time.time()
        while time.time() - start_time < max_wait:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                if s.connect_ex((self.host, self.port)) == 0:
                    self.is_running = True
                    logger.info(f"OAuth redirect server started on {self.host}:{self.port}")
                    return True, ""
            time.sleep(0.1)

        error_msg = f"OAuth redirect server on {self.host}:{self.port} did not respond within {max_wait}s"
        logger.error(error_msg)
        return False, error_msg

    def stop(self):
        """Stop the server and wait for its thread."""
        if self.server is not None:
            self.server.should_exit = True
        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=3.0)
        if self.is_running:
            logger.info("OAuth redirect server stopped")
        self.is_running = False


class LoopbackWebAuthFlow:
    """
    ``WebAuthFlow`` that opens the system browser and waits for the redirect
    on a loopback server bound to the redirect URI.

    Args:
        redirect_uri: Redirect URI registered for the Lark app (must be http on a local host).
        timeout: Seconds to wait before treating the flow as cancelled.
        open_browser: Callable that opens a URL, returning False when no browser is available.
        on_url: Called with the authorization URL when no browser could be opened,
            so the caller can show it to the user.
    """

    def __init__(
        self,
        redirect_uri: str,
        timeout: float = 300.0,
        open_browser: Callable[[str], bool] = webbrowser.open,
        on_url: Callable[[str], None] | None = None,
    ):
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or not parsed.hostname or not parsed.port:
            raise ServiceConfigurationError(
                f"Redirect URI '{redirect_uri}' must be an http URL with an explicit host and port"
            )
        self.host = parsed.hostname
        self.port = parsed.port
        self.path = parsed.path or "/oauth2callback"
        self.timeout = timeout
        self._open_browser = open_browser
        self.on_url = on_url

    async def launch(self, auth_url: str) -> WebAuthResult:
        loop = asyncio.get_running_loop()
        redirect: asyncio.Future[str] = loop.create_future()

        def deliver(url: str) -> None:
            if not redirect.done():
                redirect.set_result(url)

        server = MinimalOAuthServer(
            self.host,
            self.port,
            self.path,
            on_redirect=lambda url: loop.call_soon_threadsafe(deliver, url),
        )
        success, error_msg = await asyncio.to_thread(server.start)
        if not success:
            raise ServiceConfigurationError(error_msg)

        try:
            if not self._open_browser(auth_url):
                logger.warning(f"Could not open a browser; open this URL to authorize: {auth_url}")
                if self.on_url is not None:
                    self.on_url(auth_url)
            logger.info(f"Waiting up to {self.timeout:.0f}s for Lark authorization")
            try:
                url = await asyncio.wait_for(redirect, self.timeout)
            except asyncio.TimeoutError:
                logger.info("Authorization window timed out without a redirect")
                return WebAuthResult()
            return WebAuthResult(redirect_url=url)
        finally:
            await asyncio.to_thread(server.stop)
