"""Reachability probe for a single server address."""

import logging

from mediaconnect.exceptions import MediaConnectError, ServerUnreachableError
from mediaconnect.models import PublicServerInfo
from mediaconnect.transport import HttpRequest, HttpTransport

logger = logging.getLogger(__name__)

PUBLIC_INFO_PATH = "/mediabrowser/system/info/public?format=json"


class ConnectionProber:
    """Checks whether a server answers at an address."""

    def __init__(self, transport: HttpTransport, timeout: float | None = None):
        """
        Args:
            transport: Shared HTTP transport
            timeout: Per-probe timeout in seconds (transport default when None)
        """
        self.transport = transport
        self.timeout = timeout

    async def probe(self, address: str) -> PublicServerInfo:
        """
        Fetch the public system info at address.

        Raises:
            ServerUnreachableError: the address did not answer with valid
                server info
        """
        url = address.rstrip("/") + PUBLIC_INFO_PATH
        logger.debug(f"Probing {url}")

        try:
            data = await self.transport.send_json(
                HttpRequest(url=url, timeout=self.timeout)
            )
            info = PublicServerInfo.from_dict(data)
        except ServerUnreachableError:
            raise
        except MediaConnectError as e:
            raise ServerUnreachableError(
                f"No usable server info at {address}: {e}", address=address
            ) from e

        logger.debug(f"Found server {info.server_name} ({info.id}) at {address}")
        return info
