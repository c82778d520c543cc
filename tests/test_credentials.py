"""Tests for the credential set merge rules and the YAML-backed store."""

from __future__ import annotations

import pytest
import yaml

from conftest import at
from mediaconnect.credentials import CredentialStore
from mediaconnect.models import (
    ConnectionMode,
    CredentialSet,
    ServerRecord,
    UserLinkType,
    WakeOnLanTarget,
)


def test_add_new_server_stores_a_copy() -> None:
    credentials = CredentialSet()
    server = ServerRecord(id="srv1", name="Den")

    stored = credentials.add_or_update_server(server)
    server.name = "changed"

    assert stored is not server
    assert credentials.find_server("SRV1").name == "Den"


def test_partial_record_does_not_erase_stored_fields() -> None:
    credentials = CredentialSet(
        servers=[
            ServerRecord(
                id="srv1",
                name="Den",
                remote_address="https://den.example.com",
                access_token="tok",
                user_id="u1",
                exchange_token="x",
                user_link_type=UserLinkType.LINKED_USER,
                date_last_accessed=at(5),
                wake_on_lan_targets=[WakeOnLanTarget("aa:bb:cc:dd:ee:ff")],
            )
        ]
    )

    credentials.add_or_update_server(
        ServerRecord(id="srv1", local_address="http://10.0.0.2:8096", date_last_accessed=at(1))
    )

    merged = credentials.find_server("srv1")
    assert merged.local_address == "http://10.0.0.2:8096"
    assert merged.remote_address == "https://den.example.com"
    assert (merged.access_token, merged.user_id) == ("tok", "u1")
    assert merged.exchange_token == "x"
    assert merged.user_link_type is UserLinkType.LINKED_USER
    assert merged.date_last_accessed == at(5)
    assert len(merged.wake_on_lan_targets) == 1


def test_access_token_and_user_id_are_replaced_together() -> None:
    credentials = CredentialSet(
        servers=[ServerRecord(id="srv1", access_token="old", user_id="u1")]
    )

    credentials.add_or_update_server(ServerRecord(id="srv1", access_token="new"))

    merged = credentials.find_server("srv1")
    assert merged.access_token == "new"
    assert merged.user_id is None


def test_newer_fields_overwrite() -> None:
    credentials = CredentialSet(servers=[ServerRecord(id="srv1", name="Old")])

    credentials.add_or_update_server(
        ServerRecord(
            id="srv1",
            name="New",
            last_connection_mode=ConnectionMode.REMOTE,
            date_last_accessed=at(7),
        )
    )

    merged = credentials.find_server("srv1")
    assert merged.name == "New"
    assert merged.last_connection_mode is ConnectionMode.REMOTE
    assert merged.date_last_accessed == at(7)


def test_server_without_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        CredentialSet().add_or_update_server(ServerRecord(name="nameless"))


def test_wake_targets_are_deduplicated_by_mac() -> None:
    server = ServerRecord(id="srv1")
    server.add_wake_target(WakeOnLanTarget("AA:BB:CC:DD:EE:FF"))
    server.add_wake_target(WakeOnLanTarget("aa:bb:cc:dd:ee:ff", port=7))

    assert len(server.wake_on_lan_targets) == 1


def test_store_persists_to_yaml(tmp_path) -> None:
    path = tmp_path / "credentials.yaml"
    store = CredentialStore(path)

    with store.update() as credentials:
        credentials.connect_user_id = "cloud-user"
        credentials.add_or_update_server(
            ServerRecord(
                id="srv1",
                access_token="tok",
                last_connection_mode=ConnectionMode.LOCAL,
                date_last_accessed=at(2),
            )
        )

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert data["connect_user_id"] == "cloud-user"
    assert data["servers"][0]["last_connection_mode"] == "local"

    reloaded = CredentialStore(path).load()
    server = reloaded.find_server("srv1")
    assert server.access_token == "tok"
    assert server.last_connection_mode is ConnectionMode.LOCAL
    assert server.date_last_accessed == at(2)


def test_failed_update_writes_nothing(tmp_path) -> None:
    path = tmp_path / "credentials.yaml"
    store = CredentialStore(path)

    with pytest.raises(RuntimeError):
        with store.update() as credentials:
            credentials.add_or_update_server(ServerRecord(id="srv1"))
            raise RuntimeError("boom")

    assert not path.exists()
    assert store.load().servers == []


def test_load_returns_independent_copies() -> None:
    store = CredentialStore()
    store.save(CredentialSet(servers=[ServerRecord(id="srv1", name="Den")]))

    first = store.load()
    first.servers[0].name = "changed"

    assert store.load().servers[0].name == "Den"


def test_unreadable_file_falls_back_to_cache(tmp_path) -> None:
    path = tmp_path / "credentials.yaml"
    store = CredentialStore(path)
    store.save(CredentialSet(connect_user_id="cloud-user"))

    path.write_text("- not\n- a mapping\n", encoding="utf-8")

    assert store.load().connect_user_id == "cloud-user"
