"""
Whoop connector — operator entry point.

Usage:
    python main.py auth-url
    python main.py exchange <code>
    python main.py status
    python main.py refresh
    python main.py get /recovery start=2024-01-01T00:00:00Z end=2024-01-08T00:00:00Z limit=7
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Dict, List, Optional

from config.settings import Settings
from whoop import TokenManager, WhoopClient, WhoopError

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        stream=sys.stderr,
    )
    for _noisy in ("httpcore", "httpx"):
        logging.getLogger(_noisy).setLevel(logging.WARNING)


def _parse_params(pairs: List[str]) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise SystemExit(f"Query parameters must look like key=value, got {pair!r}")
        params[name] = value
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Whoop OAuth + API client")
    parser.add_argument("--debug", action="store_true", help="Enable debug-level logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("auth-url", help="Print the authorization URL to open in a browser")

    exchange = sub.add_parser("exchange", help="Exchange an authorization code for tokens")
    exchange.add_argument("code")

    sub.add_parser("status", help="Show where the token comes from and when it expires")
    sub.add_parser("refresh", help="Force a token refresh")

    get = sub.add_parser("get", help="GET a resource path")
    get.add_argument("path")
    get.add_argument("params", nargs="*", metavar="key=value")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> int:
    tokens = TokenManager(settings)
    client = WhoopClient(settings, tokens)

    if args.command == "auth-url":
        print(tokens.get_authorization_url())
        return 0

    if args.command == "exchange":
        credential = await tokens.exchange_code(args.code)
        print(f"Authenticated. Token expires at {credential.expires_at.isoformat()}")
        return 0

    if args.command == "status":
        status = await client.get_status()
        print(status.model_dump_json(indent=2))
        return 0

    if args.command == "refresh":
        await tokens.refresh_access_token()
        status = await tokens.get_status()
        print(status.model_dump_json(indent=2))
        return 0

    payload = await client.request(args.path, _parse_params(args.params))
    print(json.dumps(payload, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = Settings()
        configure_logging(args.debug or settings.debug)
        return asyncio.run(run(args, settings))
    except WhoopError as exc:
        logger.debug("command failed: %r", exc)
        print(exc.user_message, file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
