"""
Shared data models for the MediaConnect client.

Defines the connection enums, the persisted server/credential records and
the small response objects parsed from server and cloud JSON payloads.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from mediaconnect.exceptions import MalformedResponseError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Port used for wake targets learned from a server's MAC address
DEFAULT_WAKE_PORT = 9


class ConnectionMode(Enum):
    """Network path used to reach a server."""

    LOCAL = "local"
    REMOTE = "remote"
    MANUAL = "manual"


class ConnectionState(Enum):
    """Result state of a connection negotiation."""

    UNAVAILABLE = "unavailable"
    SERVER_SELECTION = "server_selection"
    SERVER_SIGN_IN = "server_sign_in"
    SIGNED_IN = "signed_in"
    CLOUD_SIGN_IN = "cloud_sign_in"


class UserLinkType(Enum):
    """How the cloud account is linked to a server."""

    LINKED_USER = "linked_user"
    GUEST = "guest"


def _require_mapping(data: Any, kind: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object for {kind}")
    return data


def _parse_datetime(value: Any) -> datetime:
    if not value:
        return EPOCH
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_enum(enum_cls: type[Enum], value: Any) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


@dataclass
class WakeOnLanTarget:
    """A MAC address/port pair used to wake a sleeping server."""

    mac_address: str
    port: int = DEFAULT_WAKE_PORT

    def to_dict(self) -> dict[str, Any]:
        return {"mac_address": self.mac_address, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WakeOnLanTarget":
        return cls(
            mac_address=data.get("mac_address", ""),
            port=int(data.get("port", DEFAULT_WAKE_PORT)),
        )


@dataclass
class PublicServerInfo:
    """Identity information a server publishes without authentication."""

    id: str
    server_name: str = ""
    version: str = ""
    local_address: str = ""
    wan_address: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "PublicServerInfo":
        """Create from the server's system info JSON."""
        data = _require_mapping(data, "system info")
        if not data.get("Id"):
            raise MalformedResponseError("System info has no server id")
        return cls(
            id=str(data["Id"]),
            server_name=data.get("ServerName") or "",
            version=data.get("Version") or "",
            local_address=data.get("LocalAddress") or "",
            wan_address=data.get("WanAddress") or "",
        )


@dataclass
class SystemInfo(PublicServerInfo):
    """Full system information, only available with a valid access token."""

    mac_address: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "SystemInfo":
        public = PublicServerInfo.from_dict(data)
        return cls(
            id=public.id,
            server_name=public.server_name,
            version=public.version,
            local_address=public.local_address,
            wan_address=public.wan_address,
            mac_address=data.get("MacAddress") or "",
        )


@dataclass
class ServerRecord:
    """A known server and the credentials stored for it."""

    id: str = ""
    name: str = ""
    local_address: str | None = None
    remote_address: str | None = None
    manual_address: str | None = None
    last_connection_mode: ConnectionMode | None = None
    access_token: str | None = None
    user_id: str | None = None
    exchange_token: str | None = None
    user_link_type: UserLinkType | None = None
    date_last_accessed: datetime = EPOCH
    wake_on_lan_targets: list[WakeOnLanTarget] = field(default_factory=list)

    @property
    def is_authenticated(self) -> bool:
        """True when a local access token is stored."""
        return bool(self.access_token)

    @property
    def needs_token_exchange(self) -> bool:
        """True when only a cloud exchange token is available."""
        return bool(self.exchange_token) and not self.access_token

    def get_address(self, mode: ConnectionMode) -> str | None:
        """Get the address used for a connection mode."""
        if mode is ConnectionMode.LOCAL:
            return self.local_address
        if mode is ConnectionMode.REMOTE:
            return self.remote_address
        return self.manual_address

    def add_wake_target(self, target: WakeOnLanTarget) -> None:
        """Add a wake target unless one with the same MAC is already known."""
        mac = target.mac_address.lower()
        if any(t.mac_address.lower() == mac for t in self.wake_on_lan_targets):
            return
        self.wake_on_lan_targets.append(target)

    def import_info(self, info: PublicServerInfo) -> None:
        """Refresh identity and addresses from server-reported info."""
        self.name = info.server_name or self.name
        self.id = info.id
        if info.local_address:
            self.local_address = info.local_address
        if info.wan_address:
            self.remote_address = info.wan_address
        if isinstance(info, SystemInfo) and info.mac_address:
            self.add_wake_target(WakeOnLanTarget(info.mac_address))

    def clear_local_credentials(self) -> None:
        """Forget the local access token and user id."""
        self.access_token = None
        self.user_id = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "local_address": self.local_address,
            "remote_address": self.remote_address,
            "manual_address": self.manual_address,
            "last_connection_mode": (
                self.last_connection_mode.value if self.last_connection_mode else None
            ),
            "access_token": self.access_token,
            "user_id": self.user_id,
            "exchange_token": self.exchange_token,
            "user_link_type": (
                self.user_link_type.value if self.user_link_type else None
            ),
            "date_last_accessed": self.date_last_accessed.isoformat(),
            "wake_on_lan_targets": [t.to_dict() for t in self.wake_on_lan_targets],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerRecord":
        return cls(
            id=data.get("id") or "",
            name=data.get("name") or "",
            local_address=data.get("local_address"),
            remote_address=data.get("remote_address"),
            manual_address=data.get("manual_address"),
            last_connection_mode=_parse_enum(
                ConnectionMode, data.get("last_connection_mode")
            ),
            access_token=data.get("access_token"),
            user_id=data.get("user_id"),
            exchange_token=data.get("exchange_token"),
            user_link_type=_parse_enum(UserLinkType, data.get("user_link_type")),
            date_last_accessed=_parse_datetime(data.get("date_last_accessed")),
            wake_on_lan_targets=[
                WakeOnLanTarget.from_dict(t)
                for t in data.get("wake_on_lan_targets") or []
            ],
        )


@dataclass
class CredentialSet:
    """Persisted root: every known server plus the cloud session tokens."""

    servers: list[ServerRecord] = field(default_factory=list)
    connect_user_id: str | None = None
    connect_access_token: str | None = None

    def find_server(self, server_id: str) -> ServerRecord | None:
        """Find a stored server by id (case-insensitive)."""
        wanted = (server_id or "").lower()
        for server in self.servers:
            if server.id.lower() == wanted:
                return server
        return None

    def add_or_update_server(self, server: ServerRecord) -> ServerRecord:
        """
        Insert a server or merge it into the stored record with the same id.

        Only non-empty incoming values overwrite stored ones, so a partial
        record (e.g. from LAN discovery) never erases stored credentials.

        Returns:
            The stored record
        """
        if not server.id:
            raise ValueError("Server record has no id")

        existing = self.find_server(server.id)
        if existing is None:
            stored = copy.deepcopy(server)
            self.servers.append(stored)
            return stored

        existing.date_last_accessed = max(
            existing.date_last_accessed, server.date_last_accessed
        )
        if server.user_link_type is not None:
            existing.user_link_type = server.user_link_type
        if server.access_token:
            existing.access_token = server.access_token
            existing.user_id = server.user_id
        if server.exchange_token:
            existing.exchange_token = server.exchange_token
        if server.remote_address:
            existing.remote_address = server.remote_address
        if server.local_address:
            existing.local_address = server.local_address
        if server.manual_address:
            existing.manual_address = server.manual_address
        if server.name:
            existing.name = server.name
        if server.wake_on_lan_targets:
            existing.wake_on_lan_targets = copy.deepcopy(server.wake_on_lan_targets)
        if server.last_connection_mode is not None:
            existing.last_connection_mode = server.last_connection_mode
        return existing

    def copy(self) -> "CredentialSet":
        """Independent deep copy."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connect_user_id": self.connect_user_id,
            "connect_access_token": self.connect_access_token,
            "servers": [s.to_dict() for s in self.servers],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CredentialSet":
        return cls(
            servers=[ServerRecord.from_dict(s) for s in data.get("servers") or []],
            connect_user_id=data.get("connect_user_id"),
            connect_access_token=data.get("connect_access_token"),
        )


@dataclass
class CloudAccount:
    """Signed-in cloud directory identity."""

    id: str
    name: str = ""
    display_name: str = ""
    email: str = ""
    image_url: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "CloudAccount":
        data = _require_mapping(data, "cloud user")
        if not data.get("Id"):
            raise MalformedResponseError("Cloud user has no id")
        return cls(
            id=str(data["Id"]),
            name=data.get("Name") or "",
            display_name=data.get("DisplayName") or "",
            email=data.get("Email") or "",
            image_url=data.get("ImageUrl") or "",
        )


@dataclass
class ServerDiscoveryInfo:
    """A server that answered the LAN discovery broadcast."""

    id: str
    address: str
    name: str = ""
    endpoint_address: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ServerDiscoveryInfo":
        data = _require_mapping(data, "discovery reply")
        if not data.get("Id") or not data.get("Address"):
            raise MalformedResponseError("Discovery reply is missing Id or Address")
        return cls(
            id=str(data["Id"]),
            address=data["Address"],
            name=data.get("Name") or "",
            endpoint_address=data.get("EndpointAddress") or "",
        )


@dataclass
class DirectoryServer:
    """A server linked to the cloud account."""

    system_id: str
    url: str = ""
    local_address: str = ""
    name: str = ""
    access_key: str = ""
    user_type: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "DirectoryServer":
        data = _require_mapping(data, "directory server")
        if not data.get("SystemId"):
            raise MalformedResponseError("Directory server has no SystemId")
        return cls(
            system_id=str(data["SystemId"]),
            url=data.get("Url") or "",
            local_address=data.get("LocalAddress") or "",
            name=data.get("Name") or "",
            access_key=data.get("AccessKey") or "",
            user_type=data.get("UserType") or "",
        )


@dataclass
class LocalUser:
    """A user profile on a media server."""

    id: str
    name: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "LocalUser":
        data = _require_mapping(data, "user")
        if not data.get("Id"):
            raise MalformedResponseError("User has no id")
        return cls(id=str(data["Id"]), name=data.get("Name") or "")


@dataclass
class LocalAuthenticationResult:
    """Result of signing in to a server with a username and password."""

    access_token: str
    user: LocalUser

    @classmethod
    def from_dict(cls, data: Any) -> "LocalAuthenticationResult":
        data = _require_mapping(data, "server authentication")
        if not data.get("AccessToken"):
            raise MalformedResponseError("Server sign-in returned no access token")
        return cls(
            access_token=data["AccessToken"],
            user=LocalUser.from_dict(data.get("User")),
        )


@dataclass
class TokenExchangeResult:
    """Local credentials obtained by redeeming a cloud exchange token."""

    local_user_id: str
    access_token: str

    @classmethod
    def from_dict(cls, data: Any) -> "TokenExchangeResult":
        data = _require_mapping(data, "token exchange")
        if not data.get("AccessToken"):
            raise MalformedResponseError("Token exchange returned no access token")
        return cls(
            local_user_id=str(data.get("LocalUserId") or ""),
            access_token=data["AccessToken"],
        )


@dataclass
class CloudAuthenticationResult:
    """Result of a cloud username/password sign-in."""

    access_token: str
    user: CloudAccount

    @classmethod
    def from_dict(cls, data: Any) -> "CloudAuthenticationResult":
        data = _require_mapping(data, "cloud authentication")
        if not data.get("AccessToken"):
            raise MalformedResponseError("Cloud sign-in returned no access token")
        return cls(
            access_token=data["AccessToken"],
            user=CloudAccount.from_dict(data.get("User")),
        )


@dataclass
class PinCreationResult:
    """A device-linking pin issued by the cloud service."""

    device_id: str
    pin: str
    id: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "PinCreationResult":
        data = _require_mapping(data, "pin")
        if not data.get("Pin"):
            raise MalformedResponseError("Pin creation returned no pin")
        return cls(
            device_id=data.get("DeviceId") or "",
            pin=data["Pin"],
            id=data.get("Id") or "",
        )


@dataclass
class PinStatusResult:
    """Confirmation state of a device-linking pin."""

    pin: str
    is_confirmed: bool = False
    is_expired: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "PinStatusResult":
        data = _require_mapping(data, "pin status")
        return cls(
            pin=data.get("Pin") or "",
            is_confirmed=bool(data.get("IsConfirmed", False)),
            is_expired=bool(data.get("IsExpired", False)),
        )


@dataclass
class PinExchangeResult:
    """Cloud credentials obtained from a confirmed pin."""

    user_id: str
    access_token: str

    @classmethod
    def from_dict(cls, data: Any) -> "PinExchangeResult":
        data = _require_mapping(data, "pin exchange")
        if not data.get("UserId") or not data.get("AccessToken"):
            raise MalformedResponseError("Pin exchange is missing UserId or AccessToken")
        return cls(user_id=str(data["UserId"]), access_token=data["AccessToken"])


@dataclass
class ConnectionOutcome:
    """Transient result of one negotiation request."""

    state: ConnectionState
    servers: list[ServerRecord] = field(default_factory=list)
    api_client: Any = None
    cloud_account: CloudAccount | None = None

    @property
    def server(self) -> ServerRecord | None:
        """The single resolved server, when there is exactly one."""
        return self.servers[0] if len(self.servers) == 1 else None
