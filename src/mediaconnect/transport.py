"""
HTTP transport shared by the prober, the per-server API clients and the
cloud directory client.

Every request is bounded by a timeout. Network failures surface as
ServerUnreachableError so callers only deal with the MediaConnect error
taxonomy.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from mediaconnect.exceptions import (
    AuthenticationInvalidError,
    HttpStatusError,
    MalformedResponseError,
    ServerUnreachableError,
)

logger = logging.getLogger(__name__)


@dataclass
class HttpRequest:
    """A single HTTP request."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    form: dict[str, str] | None = None
    timeout: float | None = None  # Seconds; transport default when None


class HttpTransport:
    """aiohttp-backed request sender."""

    def __init__(self, timeout: float = 20.0):
        """
        Initialize the transport.

        Args:
            timeout: Default total timeout per request in seconds
        """
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None
        self._session_loop: asyncio.AbstractEventLoop | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """
        Get or create the aiohttp session for the running event loop.

        A session is bound to the loop it was created on; a call from a
        different loop closes the old session and creates a new one.
        """
        loop = asyncio.get_running_loop()

        if (
            self._session is not None
            and not self._session.closed
            and self._session_loop is not loop
        ):
            logger.debug("Event loop changed, recreating HTTP session")
            try:
                await self._session.close()
            except RuntimeError as e:
                logger.debug(f"Closing stale session failed: {e}")
            self._session = None

        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                force_close=False,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                connector=connector,
            )
            self._session_loop = loop
            logger.debug("New aiohttp session created")

        return self._session

    async def send(self, request: HttpRequest) -> str:
        """
        Send a request and return the response body.

        Raises:
            ServerUnreachableError: connection failure or timeout
            AuthenticationInvalidError: HTTP 401/403
            HttpStatusError: any other HTTP error status
            MalformedResponseError: body is not valid text
        """
        session = await self._get_session()

        kwargs: dict[str, Any] = {"headers": request.headers}
        if request.json_body is not None:
            kwargs["json"] = request.json_body
        if request.form is not None:
            kwargs["data"] = request.form
        if request.timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=request.timeout)

        logger.debug(f"{request.method} {request.url}")

        try:
            async with session.request(request.method, request.url, **kwargs) as resp:
                if resp.status in (401, 403):
                    raise AuthenticationInvalidError(
                        f"Request to {request.url} was rejected (HTTP {resp.status})"
                    )
                if resp.status >= 400:
                    raise HttpStatusError(resp.status, request.url)
                try:
                    return await resp.text()
                except UnicodeDecodeError as e:
                    raise MalformedResponseError(
                        f"Undecodable response body from {request.url}: {e}"
                    ) from e

        except asyncio.TimeoutError as e:
            raise ServerUnreachableError(
                f"Timed out waiting for {request.url}", address=request.url
            ) from e

        except aiohttp.ClientError as e:
            raise ServerUnreachableError(
                f"{type(e).__name__} for {request.url}: {e}", address=request.url
            ) from e

    async def send_json(self, request: HttpRequest) -> Any:
        """Send a request and decode the JSON response body."""
        body = await self.send(request)
        if not body:
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Invalid JSON from {request.url}: {e}"
            ) from e

    async def ws_connect(
        self, url: str, headers: dict[str, str] | None = None
    ) -> aiohttp.ClientWebSocketResponse:
        """Open a WebSocket on the shared session."""
        session = await self._get_session()
        try:
            return await session.ws_connect(url, headers=headers or {})
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ServerUnreachableError(
                f"WebSocket connection to {url} failed: {e}", address=url
            ) from e

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_loop = None
