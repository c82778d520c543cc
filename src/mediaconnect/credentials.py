"""
Credential store for known servers and the cloud session tokens.

The store owns the single CredentialSet of a device profile. Callers get
independent copies from load(), and change the stored set only through
update(), which holds the store lock for the whole read-modify-write cycle
and re-reads the file inside the lock.

The YAML file uses the same shared/exclusive locking and atomic-rename
writes as the client configuration.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import yaml

from mediaconnect.config import read_yaml_locked, write_yaml_atomic
from mediaconnect.models import CredentialSet

logger = logging.getLogger(__name__)


class CredentialStore:
    """Persists the CredentialSet; in-memory only when no path is given."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.Lock()
        self._cache = CredentialSet()

    def _read(self) -> CredentialSet:
        if self.path is None or not self.path.exists():
            return self._cache.copy()
        try:
            return CredentialSet.from_dict(read_yaml_locked(self.path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Could not read credentials from {self.path}: {e}")
            return self._cache.copy()

    def _write(self, credentials: CredentialSet) -> None:
        self._cache = credentials.copy()
        if self.path is None:
            return
        try:
            write_yaml_atomic(self.path, credentials.to_dict())
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Could not save credentials to {self.path}: {e}")

    def load(self) -> CredentialSet:
        """Return an independent copy of the stored credentials."""
        with self._lock:
            return self._read()

    def save(self, credentials: CredentialSet) -> None:
        """Replace the stored credentials."""
        with self._lock:
            self._write(credentials)

    @contextmanager
    def update(self) -> Iterator[CredentialSet]:
        """
        Exclusive read-modify-write of the stored credentials.

        Usage:
            with store.update() as credentials:
                credentials.add_or_update_server(server)

        Nothing is written if the block raises.
        """
        with self._lock:
            credentials = self._read()
            yield credentials
            self._write(credentials)
