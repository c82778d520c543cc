#!/usr/bin/env python3
"""
MediaConnect command line entry point.

Usage:
    python -m mediaconnect [options] COMMAND

Commands:
    connect              Discover servers and connect to the best one
    connect-to ADDRESS   Connect to a server by address
    servers              List known and discovered servers
    logout               Log out of all servers
    sign-in USERNAME     Connect, then sign in to the server as a local user
    login USERNAME       Sign in to the cloud directory
    link                 Link this device to a cloud account with a pin
    wake                 Send wake-on-LAN packets to all stored servers

Options:
    --config PATH        Path to configuration file
    --verbose, -v        Enable verbose debug logging
"""

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from mediaconnect import __version__
from mediaconnect.config import ClientConfig
from mediaconnect.exceptions import CloudAuthError, MediaConnectError
from mediaconnect.logging_config import setup_logging
from mediaconnect.models import ConnectionOutcome, ConnectionState, ServerRecord
from mediaconnect.negotiator import ConnectionNegotiator

logger = logging.getLogger(__name__)

PIN_POLL_INTERVAL = 5.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="mediaconnect",
        description="MediaConnect server connection broker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=str, help="Path to configuration file")
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose debug logging with detailed connection info",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("connect", help="Discover servers and connect to the best one")
    connect_to = sub.add_parser("connect-to", help="Connect to a server by address")
    connect_to.add_argument("address")
    sub.add_parser("servers", help="List known and discovered servers")
    sub.add_parser("logout", help="Log out of all servers")
    login = sub.add_parser("login", help="Sign in to the cloud directory")
    login.add_argument("username")
    sign_in_parser = sub.add_parser(
        "sign-in", help="Connect, then sign in to the server as a local user"
    )
    sign_in_parser.add_argument("username")
    sub.add_parser("link", help="Link this device to a cloud account with a pin")
    sub.add_parser("wake", help="Wake all stored servers")

    return parser.parse_args(argv)


def format_server(server: ServerRecord) -> str:
    signed_in = "signed in" if server.access_token else "not signed in"
    addresses = ", ".join(
        a for a in (server.local_address, server.remote_address, server.manual_address) if a
    )
    return f"{server.name or '?'} [{server.id}] {addresses} ({signed_in})"


def print_outcome(outcome: ConnectionOutcome) -> None:
    print(f"State: {outcome.state.value}")
    if outcome.cloud_account:
        print(f"Cloud user: {outcome.cloud_account.name}")
    for server in outcome.servers:
        print(f"  {format_server(server)}")


async def link_device(negotiator: ConnectionNegotiator) -> int:
    pin = await negotiator.create_pin()
    print(f"Enter pin {pin.pin} on the cloud account page to link this device.")

    while True:
        await asyncio.sleep(PIN_POLL_INTERVAL)
        status = await negotiator.get_pin_status(pin)
        if status.is_expired:
            print("Pin expired.", file=sys.stderr)
            return 1
        if status.is_confirmed:
            break

    await negotiator.exchange_pin(pin)
    print("Device linked.")
    return 0


async def sign_in(negotiator: ConnectionNegotiator, username: str) -> int:
    outcome = await negotiator.connect()
    if outcome.state is not ConnectionState.SERVER_SIGN_IN:
        print_outcome(outcome)
        return 0 if outcome.state is ConnectionState.SIGNED_IN else 1

    password = getpass.getpass("Password: ")
    print_outcome(
        await negotiator.sign_in_to_server(outcome.server.id, username, password)
    )
    return 0


async def run_command(args: argparse.Namespace, config: ClientConfig) -> int:
    negotiator = ConnectionNegotiator.from_config(config)
    try:
        if args.command == "connect":
            print_outcome(await negotiator.connect())
        elif args.command == "connect-to":
            print_outcome(await negotiator.connect_to_address(args.address))
        elif args.command == "servers":
            for server in await negotiator.get_available_servers():
                print(format_server(server))
        elif args.command == "logout":
            await negotiator.logout()
            print("Logged out of all servers.")
        elif args.command == "sign-in":
            return await sign_in(negotiator, args.username)
        elif args.command == "login":
            password = getpass.getpass("Password: ")
            account = await negotiator.login_to_cloud(args.username, password)
            print(f"Signed in as {account.name}.")
        elif args.command == "link":
            return await link_device(negotiator)
        elif args.command == "wake":
            await negotiator.wake_all_servers()
            print("Wake-on-LAN packets sent.")
        return 0
    finally:
        await negotiator.close()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    config = ClientConfig(config_path=Path(args.config) if args.config else None)
    setup_logging(
        verbose=args.verbose,
        component="mediaconnect",
        config_dir=config.config_path.parent,
    )
    logger.debug(f"MediaConnect v{__version__}, config {config.config_path}")

    try:
        return asyncio.run(run_command(args, config))
    except CloudAuthError as e:
        print(f"Cloud sign-in failed: {e}", file=sys.stderr)
        return 1
    except (MediaConnectError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
