"""Helpers for server addresses."""


def normalize_address(address: str | None) -> str:
    """
    Prefix an address with http:// when it has no scheme.

    Raises:
        ValueError: if address is empty
    """
    if not address or not address.strip():
        raise ValueError("address must not be empty")

    address = address.strip()
    if "http" not in address.lower():
        address = "http://" + address
    return address


def is_localhost(address: str | None) -> bool:
    """True for loopback addresses (localhost or 127.x)."""
    if not address:
        return False
    lowered = address.lower()
    return "localhost" in lowered or "/127." in lowered


def manual_address_from_endpoint(address: str, endpoint_address: str) -> str | None:
    """
    Build a manual address from the host a discovery reply came from.

    The host of endpoint_address is combined with the port of the advertised
    address when that port is numeric.
    """
    if not address or not endpoint_address:
        return None

    manual = endpoint_address.split(":")[0]

    parts = address.split(":")
    if len(parts) > 1:
        port = parts[-1].rstrip("/")
        if port.isdigit():
            manual += ":" + port

    return normalize_address(manual)
