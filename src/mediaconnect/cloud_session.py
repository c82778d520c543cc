"""
Cloud account session.

Keeps the signed-in cloud identity in sync with the tokens stored in the
credential store.
"""

import logging

from mediaconnect.cloud import CloudDirectoryClient
from mediaconnect.credentials import CredentialStore
from mediaconnect.exceptions import CloudAuthError, MediaConnectError
from mediaconnect.models import (
    CloudAccount,
    DirectoryServer,
    PinCreationResult,
    PinExchangeResult,
    PinStatusResult,
)

logger = logging.getLogger(__name__)


class CloudSession:
    """Cached cloud identity plus sign-in and device-linking operations."""

    def __init__(self, client: CloudDirectoryClient, store: CredentialStore):
        self.client = client
        self.store = store
        self._account: CloudAccount | None = None

    @property
    def cloud_account(self) -> CloudAccount | None:
        """The resolved cloud identity, if any."""
        return self._account

    def has_access_token(self) -> bool:
        return bool(self.store.load().connect_access_token)

    async def ensure_cloud_identity(self) -> None:
        """
        Make the cached identity match the stored cloud user id.

        Does nothing when the cache already matches or when the stored user id
        or token is missing. A failed lookup leaves the cache empty.
        """
        credentials = self.store.load()
        user_id = credentials.connect_user_id
        access_token = credentials.connect_access_token

        if self._account and user_id and self._account.id.lower() == user_id.lower():
            return

        if not user_id or not access_token:
            return

        self._account = None
        try:
            self._account = await self.client.get_user(user_id, access_token)
            logger.debug(f"Resolved cloud user {self._account.name}")
        except MediaConnectError as e:
            logger.warning(f"Could not resolve cloud user {user_id}: {e}")

    async def login(self, username: str, password: str) -> CloudAccount:
        """
        Sign in to the cloud service and store the session tokens.

        Raises:
            CloudAuthError: the sign-in failed for any reason
        """
        try:
            result = await self.client.authenticate(username, password)
        except CloudAuthError:
            raise
        except MediaConnectError as e:
            raise CloudAuthError(f"Cloud sign-in failed: {e}") from e

        with self.store.update() as credentials:
            credentials.connect_access_token = result.access_token
            credentials.connect_user_id = result.user.id

        self._account = result.user
        logger.info(f"Signed in to cloud as {result.user.name}")
        return result.user

    async def get_servers(self) -> list[DirectoryServer]:
        """List the servers linked to the stored cloud user (empty when signed out)."""
        credentials = self.store.load()
        if not credentials.connect_access_token:
            return []
        return await self.client.get_servers(
            credentials.connect_user_id or "", credentials.connect_access_token
        )

    async def create_pin(self, device_id: str) -> PinCreationResult:
        return await self.client.create_pin(device_id)

    async def get_pin_status(self, pin: PinCreationResult) -> PinStatusResult:
        return await self.client.get_pin_status(pin)

    async def exchange_pin(self, pin: PinCreationResult) -> PinExchangeResult:
        """Redeem a confirmed pin and store the resulting cloud session."""
        result = await self.client.exchange_pin(pin)

        with self.store.update() as credentials:
            credentials.connect_access_token = result.access_token
            credentials.connect_user_id = result.user_id

        logger.info("Device linked to cloud account")
        return result

    def sign_out(self) -> None:
        """Forget the cloud session."""
        with self.store.update() as credentials:
            credentials.connect_access_token = None
            credentials.connect_user_id = None
        self._account = None
