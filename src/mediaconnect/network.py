"""
Host network helpers: LAN reachability and wake-on-LAN magic packets.
"""

import asyncio
import ipaddress
import logging
import re
import socket

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = "255.255.255.255"

MAC_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]?){5}[0-9A-Fa-f]{2}$")


def build_magic_packet(mac_address: str) -> bytes:
    """
    Build a wake-on-LAN magic packet: 6 x 0xFF followed by the MAC 16 times.

    Raises:
        ValueError: if mac_address is not a 6-byte MAC address
    """
    if not MAC_PATTERN.match(mac_address.strip()):
        raise ValueError(f"Invalid MAC address: {mac_address!r}")
    mac_bytes = bytes.fromhex(re.sub(r"[:-]", "", mac_address.strip()))
    return b"\xff" * 6 + mac_bytes * 16


def _get_local_ip() -> str | None:
    """Return the IPv4 address used for outbound traffic, if any."""
    # connect() on a UDP socket only selects a route, nothing is sent
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("192.0.2.1", 9))
        return s.getsockname()[0]
    except OSError:
        return None
    finally:
        s.close()


class NetworkConnection:
    """Network status and wake-on-LAN transport of the host."""

    def __init__(
        self,
        assume_lan: bool | None = None,
        broadcast_address: str = BROADCAST_ADDRESS,
    ):
        """
        Args:
            assume_lan: Force the LAN availability answer (None = detect)
            broadcast_address: Destination for magic packets
        """
        self.assume_lan = assume_lan
        self.broadcast_address = broadcast_address

    def is_local_network_available(self) -> bool:
        """True when the host has a non-loopback IPv4 route."""
        if self.assume_lan is not None:
            return self.assume_lan

        local_ip = _get_local_ip()
        if not local_ip:
            return False
        address = ipaddress.ip_address(local_ip)
        return not (address.is_loopback or address.is_unspecified)

    async def send_wake_on_lan(self, mac_address: str, port: int) -> None:
        """Broadcast a magic packet for mac_address to port (best-effort)."""
        packet = build_magic_packet(mac_address)
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol,
            remote_addr=(self.broadcast_address, port),
            allow_broadcast=True,
        )
        try:
            transport.sendto(packet)
            logger.debug(f"Sent wake-on-LAN packet to {mac_address} port {port}")
        finally:
            transport.close()
