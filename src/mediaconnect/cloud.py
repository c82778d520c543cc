"""
Cloud directory client.

Talks to the account service that lists the servers linked to a cloud user
and handles sign-in and pin-based device linking.
"""

import hashlib
import logging
from typing import Any
from urllib.parse import urlencode

from mediaconnect.exceptions import (
    AuthenticationInvalidError,
    CloudAuthError,
    MalformedResponseError,
)
from mediaconnect.models import (
    CloudAccount,
    CloudAuthenticationResult,
    DirectoryServer,
    PinCreationResult,
    PinExchangeResult,
    PinStatusResult,
)
from mediaconnect.transport import HttpRequest, HttpTransport

logger = logging.getLogger(__name__)

DEFAULT_CLOUD_URL = "https://connect.emby.media/service"


class CloudDirectoryClient:
    """HTTP client for the cloud directory service."""

    def __init__(
        self,
        transport: HttpTransport,
        app_name: str,
        app_version: str,
        base_url: str = DEFAULT_CLOUD_URL,
    ):
        self.transport = transport
        self.app_name = app_name
        self.app_version = app_version
        self.base_url = base_url.rstrip("/")

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {
            "X-Application": f"{self.app_name}/{self.app_version}",
            "Accept": "application/json",
        }
        if access_token:
            headers["X-Connect-UserToken"] = access_token
        return headers

    async def _send(
        self,
        path: str,
        method: str = "GET",
        query: dict[str, str] | None = None,
        form: dict[str, str] | None = None,
        access_token: str | None = None,
    ) -> Any:
        url = f"{self.base_url}/{path}"
        if query:
            url += "?" + urlencode(query)
        request = HttpRequest(
            url=url,
            method=method,
            headers=self._headers(access_token),
            form=form,
        )
        try:
            return await self.transport.send_json(request)
        except AuthenticationInvalidError as e:
            raise CloudAuthError(str(e)) from e

    async def authenticate(
        self, username: str, password: str
    ) -> CloudAuthenticationResult:
        """
        Sign in with a username (or email) and password.

        The password is sent as its MD5 hex digest.
        """
        password_hash = hashlib.md5(password.encode("utf-8")).hexdigest()
        data = await self._send(
            "user/authenticate",
            method="POST",
            form={"nameOrEmail": username, "password": password_hash},
        )
        return CloudAuthenticationResult.from_dict(data)

    async def get_user(self, user_id: str, access_token: str) -> CloudAccount:
        """Fetch a cloud user by id."""
        data = await self._send(
            "user", query={"id": user_id}, access_token=access_token
        )
        return CloudAccount.from_dict(data)

    async def get_servers(
        self, user_id: str, access_token: str
    ) -> list[DirectoryServer]:
        """List the servers linked to a cloud user."""
        data = await self._send(
            "servers", query={"userId": user_id}, access_token=access_token
        )
        if data is None:
            return []
        if not isinstance(data, list):
            raise MalformedResponseError("Expected a list of directory servers")
        return [DirectoryServer.from_dict(item) for item in data]

    async def create_pin(self, device_id: str) -> PinCreationResult:
        """Request a new device-linking pin."""
        data = await self._send("pin", method="POST", form={"deviceId": device_id})
        return PinCreationResult.from_dict(data)

    async def get_pin_status(self, pin: PinCreationResult) -> PinStatusResult:
        """Check whether a pin has been confirmed by the user."""
        data = await self._send(
            "pin", query={"deviceId": pin.device_id, "pin": pin.pin}
        )
        return PinStatusResult.from_dict(data)

    async def exchange_pin(self, pin: PinCreationResult) -> PinExchangeResult:
        """Redeem a confirmed pin for cloud credentials."""
        data = await self._send(
            "pin/authenticate",
            method="POST",
            form={"deviceId": pin.device_id, "pin": pin.pin},
        )
        return PinExchangeResult.from_dict(data)
