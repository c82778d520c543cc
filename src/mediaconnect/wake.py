"""
Wake-on-LAN dispatch for stored servers.

WakeDispatcher sends one magic packet per configured wake target and can be
attached to a ResumeSignal so every stored server is woken when the host
comes back from sleep.
"""

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Callable

from mediaconnect.credentials import CredentialStore
from mediaconnect.models import ServerRecord
from mediaconnect.network import NetworkConnection

logger = logging.getLogger(__name__)


class ResumeSignal:
    """Resume-from-sleep notifications raised by the host environment."""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[], None]] = []

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback.

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        """Signal that the host resumed. Safe to call from any thread."""
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class WakeDispatcher:
    """Sends wake-on-LAN packets to stored servers."""

    def __init__(self, network: NetworkConnection, store: CredentialStore):
        self.network = network
        self.store = store
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._pending: set[concurrent.futures.Future] = set()

    async def wake_server(self, server: ServerRecord) -> None:
        """
        Wake one server through all of its wake targets.

        Completes once every send has finished. A failed send is logged and
        does not affect the others.
        """
        logger.debug(f"Waking server: {server.name}, Id: {server.id}")

        targets = list(server.wake_on_lan_targets)
        if not targets:
            logger.debug(f"Server {server.name} has no saved wake on lan profiles")
            return

        results = await asyncio.gather(
            *(self.network.send_wake_on_lan(t.mac_address, t.port) for t in targets),
            return_exceptions=True,
        )
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Wake-on-LAN to {target.mac_address}:{target.port} failed: {result}"
                )

    async def wake_all_servers(self) -> None:
        """Wake every stored server."""
        logger.debug("Waking all servers")
        servers = self.store.load().servers
        await asyncio.gather(*(self.wake_server(server) for server in servers))

    def attach(
        self,
        signal: ResumeSignal,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Wake all servers whenever signal fires.

        Args:
            signal: Host resume-from-sleep signal
            loop: Loop that runs the wake batch (defaults to the running loop)
        """
        self.detach()
        self._loop = loop or asyncio.get_running_loop()
        self._unsubscribe = signal.subscribe(self._on_resume)

    def detach(self) -> None:
        """Remove the resume subscription, if any."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._loop = None

    def _on_resume(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug("Resume signal received without an event loop")
            return
        logger.info("Host resumed from sleep, waking stored servers")
        future = asyncio.run_coroutine_threadsafe(self.wake_all_servers(), loop)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
