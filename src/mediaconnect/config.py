"""
Client configuration management for MediaConnect.

Handles loading and saving client configuration from:
- Platform-specific config directories
- Command line arguments

Thread/process safety:
- Uses file locking (fcntl on Linux, skipped on Windows)
- Uses atomic writes (write to temp file, then rename)
"""

import logging
import os
import platform
import uuid
from pathlib import Path
from typing import Any

import yaml

# File locking support (Linux/Unix only)
fcntl = None  # type: ignore[assignment]
try:
    import fcntl as _fcntl

    fcntl = _fcntl
except ImportError:
    pass

logger = logging.getLogger(__name__)

APP_DIR_NAME = "MediaConnect"
CONFIG_FILENAME = "mediaconnect.yaml"
CREDENTIALS_FILENAME = "credentials.yaml"


def get_config_dir() -> Path:
    """
    Get platform-specific configuration directory.

    Returns:
        Path to user config directory:
        - Linux: ~/.config/MediaConnect/
        - Windows: ~/Documents/MediaConnect/
        - macOS: ~/Library/Application Support/MediaConnect/
    """
    system = platform.system()

    if system == "Windows":
        config_dir = Path.home() / "Documents" / APP_DIR_NAME
    elif system == "Darwin":
        config_dir = Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    else:
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            config_dir = Path(xdg_config) / APP_DIR_NAME
        else:
            config_dir = Path.home() / ".config" / APP_DIR_NAME

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_default_config() -> dict[str, Any]:
    """Get default client configuration."""
    return {
        "app": {
            "name": "MediaConnect",
            "version": None,  # Package version when unset
        },
        "device": {
            "id": "",  # Generated on first load
            "name": platform.node() or "MediaConnect device",
        },
        "http": {
            "timeout": 20,
        },
        "discovery": {
            "port": 7359,
            "timeout_ms": 1500,
        },
        "connection": {
            "wake_settle_seconds": 10,
            "enable_event_channel": True,
        },
        "cloud": {
            "base_url": "https://connect.emby.media/service",
        },
        "network": {
            "assume_lan": None,  # None = detect, True/False = force
        },
        "credentials": {
            "path": "",  # Defaults to credentials.yaml next to the config file
        },
    }


def read_yaml_locked(path: Path) -> dict[str, Any]:
    """Read a YAML mapping under a shared lock. Missing files read as empty."""
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        if fcntl is not None:
            fcntl.flock(f.fileno(), fcntl.LOCK_SH)
        try:
            data = yaml.safe_load(f) or {}
        finally:
            if fcntl is not None:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a mapping")
    return data


def write_yaml_atomic(path: Path, data: dict[str, Any]) -> None:
    """
    Write a YAML mapping with an exclusive lock and atomic rename.

    The temp file is removed if anything fails before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            if fcntl is not None:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            finally:
                if fcntl is not None:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        os.replace(tmp_path, path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


class ClientConfig:
    """Client configuration manager."""

    def __init__(self, config_path: Path | None = None):
        """
        Initialize client configuration.

        Args:
            config_path: Optional path to config file
        """
        if config_path:
            self.config_path = config_path
        else:
            self.config_path = get_config_dir() / CONFIG_FILENAME

        self.config = get_default_config()
        self._load()

        if not self.get("device", "id"):
            self.set("device", "id", value=uuid.uuid4().hex)
            self.save()

    def _load(self) -> None:
        """Load configuration from file with shared lock for thread/process safety."""
        try:
            self._deep_merge(self.config, read_yaml_locked(self.config_path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config {self.config_path}: {e}")

    def _deep_merge(self, base: dict, override: dict) -> None:
        """Deep merge override into base dict."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def save(self) -> bool:
        """Save configuration to file with exclusive lock and atomic write."""
        try:
            write_yaml_atomic(self.config_path, self.config)
            return True
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error saving config: {e}")
            return False

    def get(self, *keys: str, default: Any = None) -> Any:
        """Get a configuration value by path."""
        value = self.config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, *keys: str, value: Any) -> None:
        """Set a configuration value by path."""
        d = self.config
        for key in keys[:-1]:
            if key not in d:
                d[key] = {}
            d = d[key]
        d[keys[-1]] = value

    @property
    def app_name(self) -> str:
        return self.get("app", "name", default="MediaConnect")

    @property
    def app_version(self) -> str:
        from mediaconnect.version import __version__

        return self.get("app", "version", default=__version__)

    @property
    def device_id(self) -> str:
        return self.get("device", "id", default="")

    @property
    def device_name(self) -> str:
        return self.get("device", "name", default="MediaConnect device")

    @property
    def http_timeout(self) -> float:
        """Default request timeout in seconds."""
        return float(self.get("http", "timeout", default=20))

    @property
    def discovery_timeout_ms(self) -> int:
        return int(self.get("discovery", "timeout_ms", default=1500))

    @property
    def discovery_port(self) -> int:
        return int(self.get("discovery", "port", default=7359))

    @property
    def wake_settle_seconds(self) -> float:
        """How long a woken server gets before the local address is retried."""
        return float(self.get("connection", "wake_settle_seconds", default=10))

    @property
    def event_channel_enabled(self) -> bool:
        return bool(self.get("connection", "enable_event_channel", default=True))

    @property
    def cloud_base_url(self) -> str:
        return self.get(
            "cloud", "base_url", default="https://connect.emby.media/service"
        ).rstrip("/")

    @property
    def assume_lan(self) -> bool | None:
        return self.get("network", "assume_lan")

    @property
    def credentials_path(self) -> Path:
        """Location of the credential store file."""
        configured = self.get("credentials", "path", default="")
        if configured:
            return Path(configured).expanduser()
        return self.config_path.parent / CREDENTIALS_FILENAME
