"""
LAN server discovery.

Servers answer a UDP broadcast of "who is EmbyServer?" with a JSON reply:

    {"Address": "http://192.168.1.20:8096", "Id": "...", "Name": "...",
     "EndpointAddress": "192.168.1.20:8096"}

Replies are collected until the timeout expires and deduplicated by id.
"""

import asyncio
import json
import logging
from typing import Protocol

from mediaconnect.addresses import manual_address_from_endpoint
from mediaconnect.exceptions import MalformedResponseError
from mediaconnect.models import ServerDiscoveryInfo, ServerRecord

logger = logging.getLogger(__name__)

DISCOVERY_PORT = 7359
DISCOVERY_MESSAGE = b"who is EmbyServer?"
DEFAULT_TIMEOUT_MS = 1500


class DiscoverySource(Protocol):
    """Anything that can list servers on the local network."""

    async def find_servers(self, timeout_ms: int) -> list[ServerDiscoveryInfo]: ...


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    def __init__(self):
        self.replies: dict[str, ServerDiscoveryInfo] = {}

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        try:
            info = ServerDiscoveryInfo.from_dict(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, MalformedResponseError) as e:
            logger.debug(f"Ignoring discovery datagram from {addr[0]}: {e}")
            return
        self.replies.setdefault(info.id.lower(), info)

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"Discovery socket error: {exc}")


class ServerLocator:
    """Finds servers with a UDP broadcast."""

    def __init__(
        self,
        port: int = DISCOVERY_PORT,
        broadcast_address: str = "255.255.255.255",
    ):
        self.port = port
        self.broadcast_address = broadcast_address

    async def find_servers(
        self, timeout_ms: int = DEFAULT_TIMEOUT_MS
    ) -> list[ServerDiscoveryInfo]:
        """
        Broadcast a discovery request and collect replies.

        Args:
            timeout_ms: How long to listen for replies

        Returns:
            One entry per responding server (possibly empty)
        """
        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                _DiscoveryProtocol,
                local_addr=("0.0.0.0", 0),
                allow_broadcast=True,
            )
        except OSError as e:
            logger.warning(f"Could not open discovery socket: {e}")
            return []

        try:
            transport.sendto(DISCOVERY_MESSAGE, (self.broadcast_address, self.port))
            await asyncio.sleep(timeout_ms / 1000)
        except OSError as e:
            logger.warning(f"Discovery broadcast failed: {e}")
        finally:
            transport.close()

        servers = list(protocol.replies.values())
        logger.debug(f"Discovery found {len(servers)} server(s)")
        return servers


def to_server_record(info: ServerDiscoveryInfo) -> ServerRecord:
    """Convert a discovery reply into a server record."""
    return ServerRecord(
        id=info.id,
        name=info.name,
        local_address=info.address,
        manual_address=manual_address_from_endpoint(
            info.address, info.endpoint_address
        ),
    )
