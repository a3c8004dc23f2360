"""
Command-line entry point for the update client.

Usage:
    pkg-updates-client --check       exit 0 if an update is available
    pkg-updates-client --list        print the host catalog, newest first
    pkg-updates-client [VERSION]     apply VERSION (default: LATEST)
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any

from pkgupdates.client.session import UpdateClient
from pkgupdates.config import build_arg_parser, cli_overrides, load_config
from pkgupdates.errors import ServerUnreachableError
from pkgupdates.logging import get_logger, setup_logging
from pkgupdates.models import LATEST

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNREACHABLE = 2


async def _check(client: UpdateClient) -> int:
    try:
        available = await client.check_for_update()
    except ServerUnreachableError as e:
        print(f"Update server unreachable: {e.message}", file=sys.stderr)
        return EXIT_UNREACHABLE

    current = client.get_current_version() or "none"
    if available:
        print(f"Update available (installed: {current})")
        return EXIT_OK
    print(f"Up to date (installed: {current})")
    return EXIT_FAILURE


async def _list(client: UpdateClient) -> int:
    try:
        versions = await client.get_available_versions()
    except ServerUnreachableError as e:
        print(f"Update server unreachable: {e.message}", file=sys.stderr)
        return EXIT_UNREACHABLE

    for version in versions:
        print(version)
    return EXIT_OK


async def _update(client: UpdateClient, version: str) -> int:
    result = await client.update(version)
    if result.succeeded:
        print(f"Updated to {result.version}")
        return EXIT_OK

    stage = result.failed_stage.value if result.failed_stage else "unknown"
    print(f"Update failed while {stage}: {result.message}", file=sys.stderr)
    return EXIT_FAILURE


async def run_client(client: UpdateClient, *, check: bool, list_versions: bool, version: str) -> int:
    """
    Run one client command.

    Returns:
        Process exit code.
    """
    if check:
        return await _check(client)
    if list_versions:
        return await _list(client)
    return await _update(client, version)


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``pkg-updates-client``."""
    parser = build_arg_parser("Fetch and apply packages from an update host")
    parser.add_argument(
        "version",
        nargs="?",
        default=LATEST,
        help="Version to apply",
    )
    parser.add_argument("--server-url", type=str, help="Base URL of the update host")
    parser.add_argument("--app-path", type=str, help="Managed application directory")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--check", action="store_true", help="Only check for an update")
    mode.add_argument("--list", action="store_true", help="List available versions")
    parsed = parser.parse_args(argv)

    overrides = cli_overrides(parsed)
    client_overrides: dict[str, Any] = {}
    if parsed.server_url:
        client_overrides["server_url"] = parsed.server_url
    if parsed.app_path:
        client_overrides["app_path"] = parsed.app_path
    if client_overrides:
        overrides["client"] = client_overrides

    config = load_config(config_path=parsed.config, cli_config=overrides)
    setup_logging(config.logging, stream=sys.stderr)

    client = UpdateClient(config.client)
    return asyncio.run(
        run_client(
            client,
            check=parsed.check,
            list_versions=parsed.list,
            version=parsed.version,
        )
    )


if __name__ == "__main__":
    sys.exit(main())
