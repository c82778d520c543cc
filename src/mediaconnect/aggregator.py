"""
Server list aggregation.

Merges servers found on the LAN and servers listed by the cloud directory
into the credential store and returns the merged list.
"""

import asyncio
import logging

from mediaconnect.cloud_session import CloudSession
from mediaconnect.credentials import CredentialStore
from mediaconnect.discovery import DiscoverySource, to_server_record
from mediaconnect.models import (
    CredentialSet,
    DirectoryServer,
    ServerRecord,
    UserLinkType,
)
from mediaconnect.network import NetworkConnection

logger = logging.getLogger(__name__)


def directory_server_to_record(server: DirectoryServer) -> ServerRecord:
    """Convert a cloud directory entry into a server record."""
    if server.user_type.lower() == "guest":
        link_type = UserLinkType.GUEST
    else:
        link_type = UserLinkType.LINKED_USER

    return ServerRecord(
        id=server.system_id,
        name=server.name,
        local_address=server.local_address or None,
        remote_address=server.url or None,
        exchange_token=server.access_key or None,
        user_link_type=link_type,
    )


def reconcile_cloud_servers(
    credentials: CredentialSet, directory_servers: list[ServerRecord]
) -> None:
    """
    Drop stored cloud-linked servers missing from the directory listing.

    Only records with an exchange token are candidates; servers added
    locally are always kept.
    """
    listed = {server.id.lower() for server in directory_servers}
    kept = []
    for server in credentials.servers:
        if not server.exchange_token or server.id.lower() in listed:
            kept.append(server)
            continue
        logger.debug(
            f"Dropping server {server.name} - {server.id} because it's no longer "
            "in the user's cloud profile."
        )
    credentials.servers = kept


class ServerListAggregator:
    """Builds the current list of known servers."""

    def __init__(
        self,
        store: CredentialStore,
        network: NetworkConnection,
        locator: DiscoverySource,
        cloud_session: CloudSession,
        discovery_timeout_ms: int = 1500,
    ):
        self.store = store
        self.network = network
        self.locator = locator
        self.cloud_session = cloud_session
        self.discovery_timeout_ms = discovery_timeout_ms

    async def ensure_cloud_identity(self) -> None:
        await self.cloud_session.ensure_cloud_identity()

    async def _find_lan_servers(self) -> list[ServerRecord]:
        if not self.network.is_local_network_available():
            return []

        logger.debug("Scanning network for local servers")
        try:
            found = await self.locator.find_servers(self.discovery_timeout_ms)
        except Exception as e:
            logger.warning(f"LAN discovery failed: {e}")
            return []
        return [to_server_record(info) for info in found]

    async def _get_directory_servers(self) -> list[ServerRecord] | None:
        """Directory records, or None when no cloud session is stored."""
        if not self.cloud_session.has_access_token():
            return None

        logger.debug("Getting server list from cloud directory")
        try:
            await self.ensure_cloud_identity()
            servers = await self.cloud_session.get_servers()
        except Exception as e:
            logger.warning(f"Cloud directory listing failed: {e}")
            return []
        return [directory_server_to_record(server) for server in servers]

    async def get_available_servers(self) -> list[ServerRecord]:
        """
        Discover, merge and persist servers.

        LAN discovery and the directory listing run concurrently; a failure
        of either counts as an empty result. The merge happens once both
        have finished.

        Returns:
            Independent copy of the stored server list
        """
        lan_servers, directory_servers = await asyncio.gather(
            self._find_lan_servers(),
            self._get_directory_servers(),
        )

        if not lan_servers and directory_servers is None:
            return self.store.load().servers

        with self.store.update() as credentials:
            for server in lan_servers:
                credentials.add_or_update_server(server)

            if directory_servers is not None:
                for server in directory_servers:
                    credentials.add_or_update_server(server)
                reconcile_cloud_servers(credentials, directory_servers)

            merged = credentials.copy().servers

        return merged
