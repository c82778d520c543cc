"""Tests for the command line front end."""

from __future__ import annotations

import asyncio

import pytest

from mediaconnect import __main__ as cli
from mediaconnect.models import (
    CloudAccount,
    ConnectionOutcome,
    ConnectionState,
    PinCreationResult,
    PinStatusResult,
    ServerRecord,
)


class _FakeNegotiator:
    def __init__(self, statuses: list[PinStatusResult] | None = None):
        self.statuses = statuses or []
        self.closed = False
        self.exchanged = False

    async def connect(self) -> ConnectionOutcome:
        return ConnectionOutcome(
            state=ConnectionState.SERVER_SELECTION,
            servers=[ServerRecord(id="srv1", name="Den", local_address="http://10.0.0.2:8096")],
            cloud_account=CloudAccount(id="42", name="alice"),
        )

    async def create_pin(self) -> PinCreationResult:
        return PinCreationResult(device_id="device-1", pin="1234")

    async def get_pin_status(self, pin: PinCreationResult) -> PinStatusResult:
        return self.statuses.pop(0)

    async def exchange_pin(self, pin: PinCreationResult) -> None:
        self.exchanged = True

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def no_pin_wait(monkeypatch):
    async def fake_sleep(delay: float) -> None:
        return None

    monkeypatch.setattr("mediaconnect.__main__.asyncio.sleep", fake_sleep)


def test_format_server_lists_known_addresses() -> None:
    server = ServerRecord(
        id="srv1",
        name="Den",
        local_address="http://10.0.0.2:8096",
        remote_address="https://den.example.com",
        access_token="tok",
    )

    assert cli.format_server(server) == (
        "Den [srv1] http://10.0.0.2:8096, https://den.example.com (signed in)"
    )


def test_connect_command_prints_outcome(monkeypatch, capsys) -> None:
    negotiator = _FakeNegotiator()
    monkeypatch.setattr(
        cli.ConnectionNegotiator, "from_config", classmethod(lambda cls, config: negotiator)
    )

    code = asyncio.run(cli.run_command(cli.parse_args(["connect"]), config=None))

    out = capsys.readouterr().out
    assert code == 0
    assert "State: server_selection" in out
    assert "Cloud user: alice" in out
    assert "Den [srv1]" in out
    assert negotiator.closed


def test_link_device_waits_for_confirmation(no_pin_wait, capsys) -> None:
    negotiator = _FakeNegotiator(
        [PinStatusResult(pin="1234"), PinStatusResult(pin="1234", is_confirmed=True)]
    )

    code = asyncio.run(cli.link_device(negotiator))

    assert code == 0
    assert negotiator.exchanged
    assert "1234" in capsys.readouterr().out


def test_link_device_reports_expired_pin(no_pin_wait) -> None:
    negotiator = _FakeNegotiator([PinStatusResult(pin="1234", is_expired=True)])

    assert asyncio.run(cli.link_device(negotiator)) == 1
    assert not negotiator.exchanged


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args([])


class _SignInNegotiator:
    def __init__(self) -> None:
        self.signed_in: tuple[str, str, str] | None = None

    async def connect(self) -> ConnectionOutcome:
        return ConnectionOutcome(
            state=ConnectionState.SERVER_SIGN_IN,
            servers=[ServerRecord(id="srv1", name="Den")],
        )

    async def sign_in_to_server(self, server_id: str, username: str, password: str):
        self.signed_in = (server_id, username, password)
        return ConnectionOutcome(
            state=ConnectionState.SIGNED_IN,
            servers=[ServerRecord(id="srv1", name="Den", access_token="tok")],
        )


def test_sign_in_command_completes_server_sign_in(monkeypatch, capsys) -> None:
    negotiator = _SignInNegotiator()
    monkeypatch.setattr("mediaconnect.__main__.getpass.getpass", lambda prompt: "secret")

    code = asyncio.run(cli.sign_in(negotiator, "alice"))

    assert code == 0
    assert negotiator.signed_in == ("srv1", "alice", "secret")
    assert "State: signed_in" in capsys.readouterr().out
