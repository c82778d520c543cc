"""Shared fakes for the external collaborators of the connection broker."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import aiohttp
import pytest

from mediaconnect.aggregator import ServerListAggregator
from mediaconnect.api_client import ClientIdentity
from mediaconnect.cloud_session import CloudSession
from mediaconnect.credentials import CredentialStore
from mediaconnect.exceptions import ServerUnreachableError
from mediaconnect.models import (
    CloudAccount,
    CloudAuthenticationResult,
    DirectoryServer,
    PinCreationResult,
    PinExchangeResult,
    PinStatusResult,
    PublicServerInfo,
    ServerDiscoveryInfo,
)
from mediaconnect.negotiator import ConnectionNegotiator
from mediaconnect.transport import HttpRequest
from mediaconnect.wake import WakeDispatcher


def at(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


class FakeNetwork:
    def __init__(self, lan: bool = True, failing_macs: set[str] | None = None):
        self.lan = lan
        self.failing_macs = failing_macs or set()
        self.lan_checks = 0
        self.wake_calls: list[tuple[str, int]] = []

    def is_local_network_available(self) -> bool:
        self.lan_checks += 1
        return self.lan

    async def send_wake_on_lan(self, mac_address: str, port: int) -> None:
        self.wake_calls.append((mac_address, port))
        if mac_address in self.failing_macs:
            raise OSError(f"send to {mac_address} failed")


class FakeProber:
    """Answers probes from a table of address -> server id (None = unreachable)."""

    def __init__(self, servers: dict[str, str | None] | None = None):
        self.servers = servers or {}
        self.probed: list[str] = []

    async def probe(self, address: str) -> PublicServerInfo:
        self.probed.append(address)
        server_id = self.servers.get(address)
        if server_id is None:
            raise ServerUnreachableError(f"unreachable: {address}", address=address)
        return PublicServerInfo(id=server_id, server_name=f"Server {server_id}")


class FakeMessage:
    def __init__(self, data: str) -> None:
        self.type = aiohttp.WSMsgType.TEXT
        self.data = data


class FakeWebSocket:
    """Replays a fixed list of text messages, then ends."""

    def __init__(self, messages: list[str] | None = None) -> None:
        self.messages = [FakeMessage(m) for m in messages or []]
        self.sent: list[dict] = []
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self.messages:
            yield message

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """
    Routes requests by URL substring to a JSON payload or an exception.

    WebSocket connects fail unless websockets=True.
    """

    def __init__(self, routes: dict[str, Any] | None = None, websockets: bool = False):
        self.routes = routes or {}
        self.websockets = websockets
        self.requests: list[HttpRequest] = []
        self.ws_urls: list[str] = []
        self.closed = False

    def _answer(self, request: HttpRequest) -> Any:
        self.requests.append(request)
        for fragment, answer in self.routes.items():
            if fragment in request.url:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        raise ServerUnreachableError(f"no route for {request.url}", address=request.url)

    async def send_json(self, request: HttpRequest) -> Any:
        return self._answer(request)

    async def send(self, request: HttpRequest) -> str:
        self._answer(request)
        return ""

    async def ws_connect(self, url: str, headers: dict[str, str] | None = None):
        self.ws_urls.append(url)
        if not self.websockets:
            raise ServerUnreachableError("websocket refused", address=url)
        return FakeWebSocket()

    async def close(self) -> None:
        self.closed = True


class FakeLocator:
    def __init__(
        self,
        servers: list[ServerDiscoveryInfo] | None = None,
        error: Exception | None = None,
    ):
        self.servers = servers or []
        self.error = error
        self.calls = 0

    async def find_servers(self, timeout_ms: int) -> list[ServerDiscoveryInfo]:
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.servers)


class FakeCloudClient:
    def __init__(
        self,
        servers: list[DirectoryServer] | None = None,
        servers_error: Exception | None = None,
        account: CloudAccount | None = None,
    ):
        self.servers = servers or []
        self.servers_error = servers_error
        self.account = account or CloudAccount(id="cloud-user", name="Cloud User")
        self.user_error: Exception | None = None
        self.auth_error: Exception | None = None
        self.calls: list[str] = []

    async def authenticate(self, username: str, password: str) -> CloudAuthenticationResult:
        self.calls.append("authenticate")
        if self.auth_error:
            raise self.auth_error
        return CloudAuthenticationResult(access_token="cloud-token", user=self.account)

    async def get_user(self, user_id: str, access_token: str) -> CloudAccount:
        self.calls.append("get_user")
        if self.user_error:
            raise self.user_error
        return CloudAccount(id=user_id, name=self.account.name)

    async def get_servers(self, user_id: str, access_token: str) -> list[DirectoryServer]:
        self.calls.append("get_servers")
        if self.servers_error:
            raise self.servers_error
        return list(self.servers)

    async def create_pin(self, device_id: str) -> PinCreationResult:
        self.calls.append("create_pin")
        return PinCreationResult(device_id=device_id, pin="1234")

    async def get_pin_status(self, pin: PinCreationResult) -> PinStatusResult:
        self.calls.append("get_pin_status")
        return PinStatusResult(pin=pin.pin, is_confirmed=True)

    async def exchange_pin(self, pin: PinCreationResult) -> PinExchangeResult:
        self.calls.append("exchange_pin")
        return PinExchangeResult(user_id="pin-user", access_token="pin-token")


class Broker:
    """A negotiator wired to fakes, with the fakes exposed for assertions."""

    def __init__(
        self,
        lan: bool = True,
        probes: dict[str, str | None] | None = None,
        routes: dict[str, Any] | None = None,
        locator: FakeLocator | None = None,
        cloud: FakeCloudClient | None = None,
        wake_settle_seconds: float = 10.0,
        event_channel_enabled: bool = False,
        websockets: bool = False,
    ):
        self.store = CredentialStore()
        self.network = FakeNetwork(lan=lan)
        self.prober = FakeProber(probes)
        self.transport = FakeTransport(routes, websockets=websockets)
        self.locator = locator or FakeLocator()
        self.cloud = cloud or FakeCloudClient()
        self.cloud_session = CloudSession(self.cloud, self.store)
        self.aggregator = ServerListAggregator(
            self.store, self.network, self.locator, self.cloud_session
        )
        self.negotiator = ConnectionNegotiator(
            store=self.store,
            aggregator=self.aggregator,
            prober=self.prober,
            wake_dispatcher=WakeDispatcher(self.network, self.store),
            cloud_session=self.cloud_session,
            network=self.network,
            transport=self.transport,
            identity=ClientIdentity("MediaConnect", "1.0", "test-device", "device-1"),
            wake_settle_seconds=wake_settle_seconds,
            event_channel_enabled=event_channel_enabled,
        )


@pytest.fixture
def make_broker():
    return Broker


