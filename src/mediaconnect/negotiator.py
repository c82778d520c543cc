"""
Connection negotiation.

Decides which known server to connect to, over which address (local,
remote or manual) and with what authentication state. Every path ends in a
ConnectionOutcome; network and validation failures are recovered here.
"""

import asyncio
import copy
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from mediaconnect.addresses import is_localhost, normalize_address
from mediaconnect.aggregator import ServerListAggregator
from mediaconnect.api_client import ClientIdentity, ServerApiClient
from mediaconnect.cloud import CloudDirectoryClient
from mediaconnect.cloud_session import CloudSession
from mediaconnect.config import ClientConfig
from mediaconnect.credentials import CredentialStore
from mediaconnect.discovery import ServerLocator
from mediaconnect.exceptions import MediaConnectError, ServerUnreachableError
from mediaconnect.models import (
    CloudAccount,
    ConnectionMode,
    ConnectionOutcome,
    ConnectionState,
    PinCreationResult,
    PinExchangeResult,
    PinStatusResult,
    PublicServerInfo,
    ServerRecord,
    UserLinkType,
)
from mediaconnect.network import NetworkConnection
from mediaconnect.prober import ConnectionProber
from mediaconnect.transport import HttpTransport
from mediaconnect.wake import ResumeSignal, WakeDispatcher

logger = logging.getLogger(__name__)

# Time a woken server gets before the local address is tried again
WAKE_SETTLE_SECONDS = 10.0


class ConnectionNegotiator:
    """
    Connection broker for media servers.

    Manages:
    - Server discovery and the persisted server list
    - Local/remote/manual address selection with wake-on-LAN retry
    - Access token validation and cloud token exchange
    - One API client per connected server
    """

    def __init__(
        self,
        store: CredentialStore,
        aggregator: ServerListAggregator,
        prober: ConnectionProber,
        wake_dispatcher: WakeDispatcher,
        cloud_session: CloudSession,
        network: NetworkConnection,
        transport: HttpTransport,
        identity: ClientIdentity,
        wake_settle_seconds: float = WAKE_SETTLE_SECONDS,
        event_channel_enabled: bool = True,
        on_event: Callable[[str, Any], None] | None = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.prober = prober
        self.wake_dispatcher = wake_dispatcher
        self.cloud_session = cloud_session
        self.network = network
        self.transport = transport
        self.identity = identity
        self.wake_settle_seconds = wake_settle_seconds
        self.event_channel_enabled = event_channel_enabled
        self.on_event = on_event

        self._api_clients: dict[str, ServerApiClient] = {}
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: ClientConfig) -> "ConnectionNegotiator":
        """Build a negotiator and its collaborators from client configuration."""
        transport = HttpTransport(timeout=config.http_timeout)
        store = CredentialStore(config.credentials_path)
        network = NetworkConnection(assume_lan=config.assume_lan)
        cloud_session = CloudSession(
            CloudDirectoryClient(
                transport,
                app_name=config.app_name,
                app_version=config.app_version,
                base_url=config.cloud_base_url,
            ),
            store,
        )
        aggregator = ServerListAggregator(
            store,
            network,
            ServerLocator(port=config.discovery_port),
            cloud_session,
            discovery_timeout_ms=config.discovery_timeout_ms,
        )
        identity = ClientIdentity(
            app_name=config.app_name,
            app_version=config.app_version,
            device_name=config.device_name,
            device_id=config.device_id,
        )
        return cls(
            store=store,
            aggregator=aggregator,
            prober=ConnectionProber(transport),
            wake_dispatcher=WakeDispatcher(network, store),
            cloud_session=cloud_session,
            network=network,
            transport=transport,
            identity=identity,
            wake_settle_seconds=config.wake_settle_seconds,
            event_channel_enabled=config.event_channel_enabled,
        )

    @property
    def cloud_account(self) -> CloudAccount | None:
        return self.cloud_session.cloud_account

    def get_api_client(self, server_id: str) -> ServerApiClient | None:
        """API client of a server connected earlier, if any."""
        return self._api_clients.get(server_id.lower())

    def attach_resume_signal(self, signal: ResumeSignal) -> None:
        """Wake all stored servers whenever the host resumes from sleep."""
        self.wake_dispatcher.attach(signal)

    async def close(self) -> None:
        """Detach from the resume signal and release network resources."""
        self.wake_dispatcher.detach()
        for client in self._api_clients.values():
            await client.close()
        self._api_clients.clear()
        await self.transport.close()

    # =========================================================================
    # Outcomes
    # =========================================================================

    def _unavailable(self) -> ConnectionOutcome:
        logger.debug("No server available")
        return ConnectionOutcome(
            state=ConnectionState.UNAVAILABLE, cloud_account=self.cloud_account
        )

    def _selection(self, servers: list[ServerRecord]) -> ConnectionOutcome:
        if not servers and self.cloud_account is None:
            state = ConnectionState.CLOUD_SIGN_IN
        else:
            state = ConnectionState.SERVER_SELECTION
        return ConnectionOutcome(
            state=state, servers=list(servers), cloud_account=self.cloud_account
        )

    # =========================================================================
    # Negotiation
    # =========================================================================

    async def connect(self) -> ConnectionOutcome:
        """Discover servers and negotiate a connection."""
        logger.debug("Entering initial connection workflow")
        servers = await self.aggregator.get_available_servers()
        return await self.negotiate(servers)

    async def negotiate(self, servers: list[ServerRecord]) -> ConnectionOutcome:
        """
        Negotiate a ranked list of candidates.

        Only the most recently used server is ever tried automatically; with
        several candidates it must also have a saved access token. Anything
        short of SIGNED_IN hands the full list back for selection.
        """
        servers = sorted(servers, key=lambda s: s.date_last_accessed, reverse=True)

        if not servers:
            return self._selection(servers)

        if len(servers) == 1:
            outcome = await self.connect_to_server(servers[0])
            if outcome.state is ConnectionState.UNAVAILABLE:
                if outcome.cloud_account is None:
                    outcome.state = ConnectionState.CLOUD_SIGN_IN
                else:
                    outcome.state = ConnectionState.SERVER_SELECTION
            return outcome

        first = servers[0]
        if not first.access_token:
            return self._selection(servers)

        outcome = await self.connect_to_server(first)
        if outcome.state is ConnectionState.SIGNED_IN:
            return outcome
        return self._selection(servers)

    async def connect_to_server(self, server: ServerRecord) -> ConnectionOutcome:
        """Negotiate a single known server."""
        return await self._connect(copy.deepcopy(server), True, True)

    async def connect_to_address(self, address: str) -> ConnectionOutcome:
        """
        Negotiate a server entered by address.

        Raises:
            ValueError: if address is empty
        """
        normalized = normalize_address(address)
        logger.debug(f"Attempting to connect to server at {address}")

        try:
            info = await self.prober.probe(normalized)
        except ServerUnreachableError as e:
            logger.info(f"No server at {normalized}: {e}")
            return self._unavailable()

        server = ServerRecord(
            manual_address=normalized,
            last_connection_mode=ConnectionMode.MANUAL,
        )
        server.import_info(info)
        return await self._connect(server, True, True)

    async def _connect(
        self,
        server: ServerRecord,
        enable_wake_on_lan: bool,
        enable_local_retry: bool,
    ) -> ConnectionOutcome:
        local_address = server.local_address
        localhost = is_localhost(local_address)

        if local_address and (localhost or self.network.is_local_network_available()):
            retry_local = enable_local_retry and not localhost

            if enable_wake_on_lan and not localhost:
                self._wake_in_background(server)
            wake_time = time.monotonic()

            try:
                info = await self.prober.probe(local_address)
            except ServerUnreachableError as e:
                logger.debug(f"Local address failed for {server.name}: {e}")
                if retry_local:
                    delay = self.wake_settle_seconds - (time.monotonic() - wake_time)
                    if delay > 0:
                        logger.debug(f"Waiting {delay:.1f}s for {server.name} to wake")
                        await asyncio.sleep(delay)
                    return await self._connect(server, False, False)
            else:
                return await self._connect_to_found_server(
                    server, info, ConnectionMode.LOCAL
                )

        return await self._try_remote_addresses(server)

    async def _try_remote_addresses(self, server: ServerRecord) -> ConnectionOutcome:
        tried: set[str] = set()
        for mode in (ConnectionMode.REMOTE, ConnectionMode.MANUAL):
            address = server.get_address(mode)
            if not address or address in tried:
                continue
            tried.add(address)
            try:
                info = await self.prober.probe(address)
            except ServerUnreachableError as e:
                logger.debug(f"{mode.value} address failed for {server.name}: {e}")
                continue
            return await self._connect_to_found_server(server, info, mode)

        return self._unavailable()

    def _wake_in_background(self, server: ServerRecord) -> None:
        task = asyncio.create_task(self.wake_dispatcher.wake_server(server))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Post-connection validation
    # =========================================================================

    def _make_api_client(self, server: ServerRecord, mode: ConnectionMode) -> ServerApiClient:
        return ServerApiClient(
            self.transport,
            server.get_address(mode) or "",
            self.identity,
            server_id=server.id,
        )

    async def _connect_to_found_server(
        self,
        server: ServerRecord,
        info: PublicServerInfo,
        mode: ConnectionMode,
    ) -> ConnectionOutcome:
        credentials = self.store.load()

        if (
            server.exchange_token
            and credentials.connect_access_token
            and not server.access_token
        ):
            await self.cloud_session.ensure_cloud_identity()
            await self._add_authentication_info_from_cloud(
                server, mode, credentials.connect_user_id or ""
            )

        token_rejected = False
        if server.access_token:
            token_rejected = not await self._validate_authentication(server, mode)

        server.import_info(info)
        server.date_last_accessed = datetime.now(timezone.utc)
        server.last_connection_mode = mode

        with self.store.update() as stored_credentials:
            stored = stored_credentials.add_or_update_server(server)
            if token_rejected:
                stored.clear_local_credentials()

        api_client = self._get_or_add_api_client(server, mode)
        if server.access_token:
            state = ConnectionState.SIGNED_IN
        else:
            state = ConnectionState.SERVER_SIGN_IN

        logger.info(f"Connected to {server.name} ({mode.value}): {state.value}")

        if state is ConnectionState.SIGNED_IN:
            await self._ensure_event_channel(api_client)

        return ConnectionOutcome(
            state=state,
            servers=[server],
            api_client=api_client,
            cloud_account=self.cloud_account,
        )

    async def _add_authentication_info_from_cloud(
        self,
        server: ServerRecord,
        mode: ConnectionMode,
        connect_user_id: str,
    ) -> None:
        logger.debug("Adding authentication info from cloud")
        client = self._make_api_client(server, mode)
        try:
            result = await client.exchange_token(server.exchange_token, connect_user_id)
        except MediaConnectError as e:
            logger.warning(f"Cloud token exchange with {server.name} failed: {e}")
            return

        server.user_id = result.local_user_id or None
        server.access_token = result.access_token

    async def _validate_authentication(
        self, server: ServerRecord, mode: ConnectionMode
    ) -> bool:
        """
        Check the stored token against the server.

        Clears the record's access token and user id when it is rejected.
        """
        client = self._make_api_client(server, mode)
        client.set_authentication_info(server.access_token, server.user_id)

        try:
            server.import_info(await client.get_system_info())
            if server.user_id:
                user = await client.get_user(server.user_id)
                logger.debug(f"Validated local user {user.name}")
        except MediaConnectError as e:
            logger.info(f"Saved credentials for {server.name} are not valid: {e}")
            server.clear_local_credentials()
            return False
        return True

    def _get_or_add_api_client(
        self, server: ServerRecord, mode: ConnectionMode
    ) -> ServerApiClient:
        key = server.id.lower()
        client = self._api_clients.get(key)
        address = (server.get_address(mode) or "").rstrip("/")

        if client is None:
            client = self._make_api_client(server, mode)
            self._api_clients[key] = client
        elif client.server_address != address:
            client.server_address = address

        if server.access_token:
            client.set_authentication_info(server.access_token, server.user_id)
        else:
            client.clear_authentication_info()
        return client

    async def _ensure_event_channel(self, api_client: ServerApiClient) -> None:
        if not self.event_channel_enabled:
            return
        try:
            await api_client.open_event_channel(self.on_event)
        except MediaConnectError as e:
            logger.warning(f"Event channel unavailable: {e}")

    # =========================================================================
    # Sessions
    # =========================================================================

    async def sign_in_to_server(
        self,
        server_id: str,
        username: str,
        password: str,
        save_credentials: bool = True,
    ) -> ConnectionOutcome:
        """
        Sign in a local user on a server connected earlier.

        Completes a SERVER_SIGN_IN outcome: refreshes the server's system
        info, stores the new access token and user id (or clears them when
        save_credentials is False) and opens the event channel.

        Raises:
            ValueError: no API client exists for server_id
            AuthenticationInvalidError: the server rejected the credentials
        """
        client = self.get_api_client(server_id)
        if client is None:
            raise ValueError(f"Not connected to server {server_id}")

        result = await client.authenticate_by_name(username, password)
        logger.debug("Updating credentials after local authentication")
        info = await client.get_system_info()

        server = self.store.load().find_server(server_id) or ServerRecord(id=server_id)
        server.import_info(info)
        server.date_last_accessed = datetime.now(timezone.utc)
        if save_credentials:
            server.access_token = result.access_token
            server.user_id = result.user.id
        else:
            server.clear_local_credentials()

        with self.store.update() as credentials:
            stored = credentials.add_or_update_server(server)
            if not save_credentials:
                stored.clear_local_credentials()

        await self._ensure_event_channel(client)
        logger.info(f"Signed in to {server.name} as {result.user.name}")

        return ConnectionOutcome(
            state=ConnectionState.SIGNED_IN,
            servers=[server],
            api_client=client,
            cloud_account=self.cloud_account,
        )

    async def logout(self) -> None:
        """
        Log out of every server.

        Live sessions are ended first (failures ignored); then access token,
        exchange token and user id are removed from every stored server that
        is not linked as a guest.
        """
        logger.debug("Logging out of all servers")

        clients = list(self._api_clients.values())
        results = await asyncio.gather(
            *(client.logout() for client in clients), return_exceptions=True
        )
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.debug(f"Logout from {client.server_address} failed: {result}")

        logger.debug("Updating saved credentials for all servers")
        with self.store.update() as credentials:
            for server in credentials.servers:
                if server.user_link_type is UserLinkType.GUEST:
                    continue
                server.access_token = None
                server.exchange_token = None
                server.user_id = None

    async def get_available_servers(self) -> list[ServerRecord]:
        return await self.aggregator.get_available_servers()

    async def wake_all_servers(self) -> None:
        await self.wake_dispatcher.wake_all_servers()

    async def login_to_cloud(self, username: str, password: str) -> CloudAccount:
        return await self.cloud_session.login(username, password)

    async def create_pin(self, device_id: str | None = None) -> PinCreationResult:
        return await self.cloud_session.create_pin(device_id or self.identity.device_id)

    async def get_pin_status(self, pin: PinCreationResult) -> PinStatusResult:
        return await self.cloud_session.get_pin_status(pin)

    async def exchange_pin(self, pin: PinCreationResult) -> PinExchangeResult:
        return await self.cloud_session.exchange_pin(pin)
