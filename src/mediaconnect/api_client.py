"""
API client for a single media server.

Handles:
- Authenticated requests with the server's access token
- Local user sign-in and token validation (system info and user profile)
- Redeeming cloud exchange tokens for local credentials
- The server's WebSocket event channel
"""

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import aiohttp

from mediaconnect.models import (
    LocalAuthenticationResult,
    LocalUser,
    SystemInfo,
    TokenExchangeResult,
)
from mediaconnect.transport import HttpRequest, HttpTransport

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Any], None]


@dataclass(frozen=True)
class ClientIdentity:
    """Application and device identification sent with every request."""

    app_name: str
    app_version: str
    device_name: str
    device_id: str

    def authorization_header(self, user_id: str | None = None) -> str:
        """Build the MediaBrowser authorization header value."""
        header = (
            f'MediaBrowser Client="{self.app_name}", Device="{self.device_name}", '
            f'DeviceId="{self.device_id}", Version="{self.app_version}"'
        )
        if user_id:
            header += f', UserId="{user_id}"'
        return header


class ServerApiClient:
    """
    HTTP client bound to one server address.
    """

    def __init__(
        self,
        transport: HttpTransport,
        server_address: str,
        identity: ClientIdentity,
        server_id: str = "",
    ):
        """
        Initialize the API client.

        Args:
            transport: Shared HTTP transport
            server_address: Base address (scheme, host, port)
            identity: Application/device identification
            server_id: Id of the server this client talks to
        """
        self.transport = transport
        self.server_address = server_address.rstrip("/")
        self.identity = identity
        self.server_id = server_id

        self.access_token: str | None = None
        self.user_id: str | None = None
        self.event_channel: ServerEventChannel | None = None

        logger.debug(f"API client initialized: {self.server_address}")

    @property
    def base_url(self) -> str:
        return f"{self.server_address}/mediabrowser"

    @property
    def ws_url(self) -> str:
        if self.server_address.startswith("https://"):
            return "wss://" + self.server_address[len("https://") :]
        if self.server_address.startswith("http://"):
            return "ws://" + self.server_address[len("http://") :]
        return self.server_address

    def set_authentication_info(self, access_token: str, user_id: str | None) -> None:
        self.access_token = access_token
        self.user_id = user_id

    def clear_authentication_info(self) -> None:
        self.access_token = None
        self.user_id = None

    def _get_headers(self, token: str | None = None) -> dict[str, str]:
        """Request headers with client identification and access token."""
        headers = {
            "Accept": "application/json",
            "X-Emby-Authorization": self.identity.authorization_header(self.user_id),
        }
        token = token or self.access_token
        if token:
            headers["X-MediaBrowser-Token"] = token
        return headers

    async def get_system_info(self) -> SystemInfo:
        """Get full system info (requires a valid access token)."""
        data = await self.transport.send_json(
            HttpRequest(
                url=f"{self.base_url}/system/info?format=json",
                headers=self._get_headers(),
            )
        )
        return SystemInfo.from_dict(data)

    async def get_user(self, user_id: str) -> LocalUser:
        """Get a user profile."""
        data = await self.transport.send_json(
            HttpRequest(
                url=f"{self.base_url}/users/{user_id}?format=json",
                headers=self._get_headers(),
            )
        )
        return LocalUser.from_dict(data)

    async def authenticate_by_name(
        self, username: str, password: str
    ) -> LocalAuthenticationResult:
        """
        Sign in a local user and keep the returned credentials on this client.

        Raises:
            AuthenticationInvalidError: the server rejected the username/password
        """
        data = await self.transport.send_json(
            HttpRequest(
                url=f"{self.base_url}/Users/AuthenticateByName?format=json",
                method="POST",
                headers=self._get_headers(),
                json_body={"Username": username, "Pw": password},
            )
        )
        result = LocalAuthenticationResult.from_dict(data)
        self.set_authentication_info(result.access_token, result.user.id)
        return result

    async def exchange_token(
        self, exchange_token: str, connect_user_id: str
    ) -> TokenExchangeResult:
        """Redeem a cloud exchange token for a local access token."""
        query = urlencode({"format": "json", "ConnectUserId": connect_user_id})
        data = await self.transport.send_json(
            HttpRequest(
                url=f"{self.base_url}/Connect/Exchange?{query}",
                headers=self._get_headers(token=exchange_token),
            )
        )
        return TokenExchangeResult.from_dict(data)

    async def logout(self) -> None:
        """End the server session and forget the credentials."""
        try:
            if self.access_token:
                await self.transport.send(
                    HttpRequest(
                        url=f"{self.base_url}/Sessions/Logout",
                        method="POST",
                        headers=self._get_headers(),
                    )
                )
        finally:
            await self.close_event_channel()
            self.clear_authentication_info()

    async def open_event_channel(
        self, on_message: EventCallback | None = None
    ) -> "ServerEventChannel":
        """Open the event channel unless one is already connected."""
        if self.event_channel and self.event_channel.is_connected:
            return self.event_channel

        channel = ServerEventChannel(self, on_message=on_message)
        await channel.connect()
        self.event_channel = channel
        return channel

    async def close_event_channel(self) -> None:
        if self.event_channel:
            await self.event_channel.close()
            self.event_channel = None

    async def close(self) -> None:
        await self.close_event_channel()


class ServerEventChannel:
    """
    WebSocket client for server notifications.

    Messages are JSON objects with "MessageType" and "Data" keys and are
    passed to on_message as (message_type, data).
    """

    def __init__(
        self,
        api_client: ServerApiClient,
        on_message: EventCallback | None = None,
    ):
        self.api_client = api_client
        self.on_message = on_message

        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._receive_task: asyncio.Task | None = None

    @property
    def url(self) -> str:
        query = urlencode(
            {
                "api_key": self.api_client.access_token or "",
                "deviceId": self.api_client.identity.device_id,
            }
        )
        return f"{self.api_client.ws_url}/embywebsocket?{query}"

    async def connect(self) -> None:
        """Connect and start receiving messages in the background."""
        self._ws = await self.api_client.transport.ws_connect(self.url)
        logger.info(f"Event channel connected: {self.api_client.server_address}")
        self._receive_task = asyncio.create_task(self.receive_messages())

    async def receive_messages(self) -> None:
        """Receive and dispatch messages until the socket closes."""
        if not self._ws:
            return

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        logger.debug("Event channel: ignoring non-JSON message")
                        continue
                    if not isinstance(data, dict):
                        continue
                    message_type = data.get("MessageType", "")
                    if message_type == "ForceKeepAlive":
                        await self._ws.send_json({"MessageType": "KeepAlive"})
                    elif self.on_message:
                        try:
                            self.on_message(message_type, data.get("Data"))
                        except Exception as e:
                            logger.error(
                                f"Event channel handler failed for {message_type}: {e}"
                            )

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"Event channel error: {self._ws.exception()}")
                    break

        except aiohttp.ClientError as e:
            logger.warning(f"Event channel receive error: {e}")

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._ws and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._receive_task and not self._receive_task.done():
            self._receive_task.cancel()
        self._receive_task = None

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed
