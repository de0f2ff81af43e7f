#!/usr/bin/env python3
"""
Manual probe for a REST API through the client operations.

Usage:
    python -m client_api.cli get --path-names orders,orderPhases \\
        --pk-type orderPhase --key '{"kt": "orderPhase", "pk": "2", "loc": [{"kt": "order", "lk": "1"}]}'
    python -m client_api.cli all --path-names orders,orderPhases \\
        --pk-type orderPhase --locations '[{"kt": "order", "lk": "1"}]'

Connection, auth and retry settings come from CLIENT_API_* environment
variables (or .env).
"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from client_api.config import ClientApiSettings, configure_logging, get_settings
from client_api.errors import ClientApiError
from client_api.http.transport import AiohttpHttpApi
from client_api.keys import LocKey, key_from_wire
from client_api.operations import create_client_api

logger = logging.getLogger(__name__)


def _json_argument(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}") from e


def _path_names(value: str) -> list[str]:
    names = [name.strip() for name in value.split(",") if name.strip()]
    if not names:
        raise argparse.ArgumentTypeError("at least one path name is required")
    return names


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="client_api.cli",
        description="Send one client operation and print the JSON result",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--base-url", help="Override CLIENT_API_BASE_URL")

    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("get", "Fetch one item by key"),
        ("all", "List items in a collection"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--path-names",
            type=_path_names,
            required=True,
            help="Comma-separated collection names, parent -> child",
        )
        sub.add_argument("--pk-type", required=True, help="Primary key type")

    subparsers.choices["get"].add_argument(
        "--key", type=_json_argument, required=True, help='Key JSON ({"kt", "pk", "loc"?})'
    )
    subparsers.choices["all"].add_argument(
        "--locations",
        type=_json_argument,
        default=[],
        help="Location keys JSON, child -> parent",
    )
    subparsers.choices["all"].add_argument(
        "--query", type=_json_argument, default=None, help="Query filters JSON object"
    )
    return parser


async def run(args: argparse.Namespace, settings: ClientApiSettings) -> Any:
    """Execute the parsed command and return the decoded result."""
    api = AiohttpHttpApi(
        args.base_url or settings.base_url,
        timeout_s=settings.request_timeout_s,
        auth_token=settings.auth_token,
    )
    async with api:
        client = create_client_api(
            api, args.pk_type, args.path_names, settings.to_options()
        )
        match args.command:
            case "get":
                return await client.get(key_from_wire(args.key))
            case "all":
                locations = [LocKey.model_validate(loc) for loc in args.locations]
                return await client.all(args.query, locations)
        raise ValueError(f"Unknown command: {args.command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging(settings)

    try:
        result = asyncio.run(run(args, settings))
    except (KeyError, ValidationError) as e:
        print(f"Invalid key: {e}", file=sys.stderr)
        return 1
    except ClientApiError as e:
        logger.debug("Command failed", exc_info=True)
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
