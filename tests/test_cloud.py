"""Tests for the cloud directory client and the cloud session."""

from __future__ import annotations

import asyncio
import hashlib

import pytest

from conftest import FakeCloudClient, FakeTransport
from mediaconnect.cloud import CloudDirectoryClient
from mediaconnect.cloud_session import CloudSession
from mediaconnect.credentials import CredentialStore
from mediaconnect.exceptions import (
    AuthenticationInvalidError,
    CloudAuthError,
    MalformedResponseError,
    ServerUnreachableError,
)
from mediaconnect.models import DirectoryServer, PinCreationResult

BASE = "https://cloud.example.com/service"


def _client(routes) -> tuple[CloudDirectoryClient, FakeTransport]:
    transport = FakeTransport(routes)
    return CloudDirectoryClient(transport, "MediaConnect", "1.0", base_url=BASE + "/"), transport


def _signed_in_store(user_id: str = "cloud-user") -> CredentialStore:
    store = CredentialStore()
    with store.update() as credentials:
        credentials.connect_user_id = user_id
        credentials.connect_access_token = "cloud-token"
    return store


def test_authenticate_sends_hashed_password() -> None:
    client, transport = _client(
        {
            "/user/authenticate": {
                "AccessToken": "cloud-token",
                "User": {"Id": "42", "Name": "alice"},
            }
        }
    )

    result = asyncio.run(client.authenticate("alice", "secret"))

    request = transport.requests[0]
    assert request.method == "POST"
    assert request.url == f"{BASE}/user/authenticate"
    assert request.form == {
        "nameOrEmail": "alice",
        "password": hashlib.md5(b"secret").hexdigest(),
    }
    assert request.headers["X-Application"] == "MediaConnect/1.0"
    assert result.access_token == "cloud-token"
    assert result.user.id == "42"


def test_rejected_cloud_token_raises_cloud_auth_error() -> None:
    client, _ = _client({"/servers": AuthenticationInvalidError("HTTP 401")})

    with pytest.raises(CloudAuthError):
        asyncio.run(client.get_servers("42", "bad-token"))


def test_get_servers_parses_listing() -> None:
    client, transport = _client(
        {
            "/servers": [
                {"SystemId": "srv1", "Url": "https://one", "AccessKey": "k1", "UserType": "Guest"},
                {"SystemId": "srv2", "Name": "Two"},
            ]
        }
    )

    servers = asyncio.run(client.get_servers("42", "cloud-token"))

    assert [s.system_id for s in servers] == ["srv1", "srv2"]
    assert servers[0].user_type == "Guest"
    assert transport.requests[0].headers["X-Connect-UserToken"] == "cloud-token"
    assert "userId=42" in transport.requests[0].url


def test_get_servers_rejects_non_list() -> None:
    client, _ = _client({"/servers": {"SystemId": "srv1"}})

    with pytest.raises(MalformedResponseError):
        asyncio.run(client.get_servers("42", "cloud-token"))


def test_pin_flow_requests() -> None:
    client, transport = _client(
        {
            "/pin/authenticate": {"UserId": "42", "AccessToken": "pin-token"},
            "/pin?": {"Pin": "1234", "IsConfirmed": True},
            "/pin": {"Pin": "1234", "DeviceId": "device-1", "Id": "p1"},
        }
    )

    async def _run():
        pin = await client.create_pin("device-1")
        status = await client.get_pin_status(pin)
        exchanged = await client.exchange_pin(pin)
        return pin, status, exchanged

    pin, status, exchanged = asyncio.run(_run())

    assert pin == PinCreationResult(device_id="device-1", pin="1234", id="p1")
    assert status.is_confirmed and not status.is_expired
    assert exchanged.access_token == "pin-token"
    assert [r.method for r in transport.requests] == ["POST", "GET", "POST"]


def test_ensure_identity_without_tokens_does_nothing() -> None:
    cloud = FakeCloudClient()
    session = CloudSession(cloud, CredentialStore())

    asyncio.run(session.ensure_cloud_identity())

    assert session.cloud_account is None
    assert cloud.calls == []


def test_ensure_identity_fetches_once_per_user() -> None:
    cloud = FakeCloudClient()
    session = CloudSession(cloud, _signed_in_store("Cloud-User"))

    async def _run() -> None:
        await session.ensure_cloud_identity()
        await session.ensure_cloud_identity()

    asyncio.run(_run())

    assert session.cloud_account.id == "Cloud-User"
    assert cloud.calls == ["get_user"]


def test_ensure_identity_refetches_when_user_changes() -> None:
    cloud = FakeCloudClient()
    store = _signed_in_store("first")
    session = CloudSession(cloud, store)
    asyncio.run(session.ensure_cloud_identity())

    with store.update() as credentials:
        credentials.connect_user_id = "second"
    asyncio.run(session.ensure_cloud_identity())

    assert session.cloud_account.id == "second"
    assert cloud.calls == ["get_user", "get_user"]


def test_failed_identity_lookup_leaves_cache_empty() -> None:
    cloud = FakeCloudClient()
    cloud.user_error = ServerUnreachableError("offline")
    session = CloudSession(cloud, _signed_in_store())

    asyncio.run(session.ensure_cloud_identity())

    assert session.cloud_account is None


def test_login_stores_cloud_tokens() -> None:
    store = CredentialStore()
    session = CloudSession(FakeCloudClient(), store)

    account = asyncio.run(session.login("alice", "secret"))

    credentials = store.load()
    assert credentials.connect_access_token == "cloud-token"
    assert credentials.connect_user_id == account.id
    assert session.cloud_account is account
    assert session.has_access_token()


def test_login_network_failure_is_a_cloud_auth_error() -> None:
    cloud = FakeCloudClient()
    cloud.auth_error = ServerUnreachableError("offline")
    store = CredentialStore()
    session = CloudSession(cloud, store)

    with pytest.raises(CloudAuthError):
        asyncio.run(session.login("alice", "secret"))

    assert store.load().connect_access_token is None


def test_exchange_pin_persists_cloud_session() -> None:
    store = CredentialStore()
    session = CloudSession(FakeCloudClient(), store)

    async def _run():
        pin = await session.create_pin("device-1")
        assert (await session.get_pin_status(pin)).is_confirmed
        return await session.exchange_pin(pin)

    result = asyncio.run(_run())

    credentials = store.load()
    assert (credentials.connect_user_id, credentials.connect_access_token) == (
        result.user_id,
        result.access_token,
    )


def test_sign_out_forgets_cloud_session() -> None:
    store = _signed_in_store()
    session = CloudSession(FakeCloudClient(), store)
    asyncio.run(session.ensure_cloud_identity())

    session.sign_out()

    assert session.cloud_account is None
    assert not session.has_access_token()


def test_get_servers_uses_stored_cloud_session() -> None:
    cloud = FakeCloudClient(servers=[DirectoryServer(system_id="srv1")])

    signed_out = CloudSession(cloud, CredentialStore())
    assert asyncio.run(signed_out.get_servers()) == []
    assert cloud.calls == []

    signed_in = CloudSession(cloud, _signed_in_store())
    servers = asyncio.run(signed_in.get_servers())

    assert [s.system_id for s in servers] == ["srv1"]
    assert cloud.calls == ["get_servers"]
