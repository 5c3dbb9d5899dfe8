#!/usr/bin/env python3
"""Exercise a ConnectedDrive account from the command line.

Credentials come from BMW_USERNAME, BMW_PASSWORD, BMW_CAPTCHA (first login
only) and BMW_VIN. Tokens are kept encrypted in a JSON file between runs.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any

from carbmw import BmwClient, JsonFileTokenStore
from carbmw.const import REGIONS, REGION_REST_OF_WORLD
from carbmw.services import DATA_ENDPOINTS, REMOTE_SERVICES

DEFAULT_TOKENS_PATH = "tokens.json"


def pretty_print_json(data: Any) -> None:
    """Output JSON to stdout in a friendly format."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise SystemExit(f"Environment variable {name} is not set")
    return value


async def run(args: argparse.Namespace) -> int:
    client = BmwClient(
        _require_env("BMW_USERNAME"),
        _require_env("BMW_PASSWORD"),
        region=args.region,
        captcha=os.environ.get("BMW_CAPTCHA"),
        store=JsonFileTokenStore(args.tokens),
        options={"debug_log": args.debug},
    )
    async with client:
        if args.command == "auth":
            await client.async_request_new_token()
            print("Successfully authenticated")
            await client.async_request_new_token()
            print("Token still valid")
        elif args.command == "list":
            pretty_print_json(await client.async_get_car_list())
        elif args.command == "info":
            vin = args.vin or _require_env("BMW_VIN")
            for data_type in args.data_types:
                print(f"--- {data_type} ---")
                pretty_print_json(await client.async_get_car_info(vin, data_type))
        elif args.command == "execute":
            vin = args.vin or _require_env("BMW_VIN")
            pretty_print_json(await client.async_execute_remote_service(vin, args.service))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Try out the ConnectedDrive client.")
    parser.add_argument(
        "--tokens",
        default=DEFAULT_TOKENS_PATH,
        help="Path to the token store (default: tokens.json)",
    )
    parser.add_argument("--region", choices=REGIONS, default=REGION_REST_OF_WORLD)
    parser.add_argument("--vin", help="Vehicle to query (default: $BMW_VIN)")
    parser.add_argument("--debug", action="store_true", help="Enable verbose request logging")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("auth", help="Log in (or refresh) and report the result")
    subparsers.add_parser("list", help="List the vehicles of the account")
    info = subparsers.add_parser("info", help="Read vehicle data")
    info.add_argument(
        "data_types",
        nargs="*",
        default=sorted(name for name in DATA_ENDPOINTS if name != "vehicles"),
        help="Data types to read",
    )
    execute = subparsers.add_parser("execute", help="Trigger a remote service")
    execute.add_argument("service", choices=sorted(REMOTE_SERVICES))

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    try:
        return asyncio.run(run(args))
    except Exception as exc:  # pragma: no cover - CLI guard
        print(f"Request failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
