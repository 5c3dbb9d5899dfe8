#!/usr/bin/env python3
"""Dump the OAuth discovery document the login handshake starts from."""

from __future__ import annotations

import argparse
import json
import sys
import uuid

import requests

from carbmw.const import (
    API_HOSTS,
    IDENTITY_PROVIDER,
    OAUTH_CONFIG_PATH,
    OCP_APIM_KEYS,
    REGION_REST_OF_WORLD,
    REGIONS,
    USER_AGENT,
    USER_AGENT_REGIONS,
    X_USER_AGENT,
)


def fetch_oauth_config(region: str, timeout: float) -> dict:
    """Call the discovery endpoint of ``region`` and return its JSON payload."""
    correlation_id = str(uuid.uuid4())
    headers = {
        "accept": "application/json",
        "user-agent": USER_AGENT,
        "x-user-agent": X_USER_AGENT.format(region=USER_AGENT_REGIONS[region]),
        "ocp-apim-subscription-key": OCP_APIM_KEYS[region],
        "bmw-session-id": str(uuid.uuid4()),
        "x-identity-provider": IDENTITY_PROVIDER,
        "x-correlation-id": correlation_id,
        "bmw-correlation-id": correlation_id,
    }
    response = requests.get(
        f"https://{API_HOSTS[region]}{OAUTH_CONFIG_PATH}", headers=headers, timeout=timeout
    )
    response.raise_for_status()
    return response.json()


def main() -> int:
    parser = argparse.ArgumentParser(description="Fetch the ConnectedDrive OAuth configuration.")
    parser.add_argument("--region", choices=REGIONS, default=REGION_REST_OF_WORLD)
    parser.add_argument(
        "--show-secret",
        action="store_true",
        help="Print the client secret instead of masking it",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="HTTP timeout in seconds (default: 30)",
    )
    args = parser.parse_args()

    try:
        config = fetch_oauth_config(args.region, args.timeout)
    except requests.HTTPError as exc:  # pragma: no cover - CLI guard
        print(f"Request failed: {exc.response.status_code} {exc.response.text}", file=sys.stderr)
        return 1
    except requests.RequestException as exc:  # pragma: no cover - CLI guard
        print(f"Network error: {exc}", file=sys.stderr)
        return 1

    if not args.show_secret and config.get("clientSecret"):
        config["clientSecret"] = "***"
    print(json.dumps(config, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
