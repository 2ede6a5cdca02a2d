#!/usr/bin/env python3
"""Sign in to the club API and make authenticated calls from a terminal.

Usage:
    # Sign in (credentials persist in the file token store between runs):
    CLUB_EMAIL=staff@example.com CLUB_PASSWORD=secret python scripts/club_session.py login

    # Show the signed-in user, fetching it through the refresh pipeline:
    python scripts/club_session.py whoami

    # Any GET under the API prefix, refreshing the access token if it expired:
    python scripts/club_session.py get /api/tables --param status=available

    # Revoke the refresh token and clear stored credentials:
    python scripts/club_session.py logout

Environment Variables:
    CLUB_API_URL: Base URL of the backend (default http://localhost:4000)
    CLUB_TOKEN_STORE: memory, file or redis (this tool defaults to file)
    CLUB_TOKEN_STORE_PATH: Credential file for the file store
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_params(pairs: list[str]) -> dict:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {pair!r}")
        params[key] = value
    return params


async def run_command(args: argparse.Namespace) -> dict:
    # Import here so env defaults are applied before settings load
    from clubclient.logging import set_correlation_id
    from clubclient.service.runtime import get_runtime

    set_correlation_id()

    runtime = get_runtime()
    try:
        if args.command == "login":
            user = await runtime.session.login(args.email, args.password)
            return {"status": "logged_in", "user": user.to_dict()}
        if args.command == "logout":
            await runtime.session.logout()
            return {"status": "logged_out"}
        if args.command == "whoami":
            user = await runtime.session.current_user()
            return {"status": "ok", "user": user.to_dict()}
        if args.command == "get":
            body = await runtime.client.get_json(args.path, params=_parse_params(args.param) or None)
            return {"status": "ok", "body": body}
        raise ValueError(f"unknown command {args.command!r}")
    finally:
        await runtime.aclose()


def main():
    parser = argparse.ArgumentParser(
        description="Authenticated club API session from the command line",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Sign in and store credentials")
    login.add_argument(
        "--email",
        default=os.environ.get("CLUB_EMAIL"),
        help="Account email (or set CLUB_EMAIL env var)",
    )
    login.add_argument(
        "--password",
        default=os.environ.get("CLUB_PASSWORD"),
        help="Account password (or set CLUB_PASSWORD env var)",
    )

    sub.add_parser("logout", help="Revoke the refresh token and clear credentials")
    sub.add_parser("whoami", help="Show the signed-in user")

    get = sub.add_parser("get", help="GET a path under the API prefix")
    get.add_argument("path", help="Path such as /api/tables")
    get.add_argument("--param", action="append", default=[], help="Query parameter key=value")

    args = parser.parse_args()

    if args.command == "login" and (not args.email or not args.password):
        print("Error: --email/--password or CLUB_EMAIL/CLUB_PASSWORD required")
        sys.exit(1)

    os.environ.setdefault("CLUB_TOKEN_STORE", "file")

    from clubclient.service.errors import ClientError

    try:
        result = asyncio.run(run_command(args))
    except ClientError as e:
        print(f"Error ({e.error_code}): {e.message}")
        sys.exit(2 if e.error_code in {"auth_expired", "auth_invalid"} else 1)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
