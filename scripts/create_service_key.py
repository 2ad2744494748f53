#!/usr/bin/env python3
"""
Bootstrap a service API key.

The admin routes need a key with admin:write, and keys can only be created
through those routes, so the first one is created here.

Usage:
    # Admin key for the back office
    python3 scripts/create_service_key.py --name "back office" --admin

    # Key for the Mini App backend
    python3 scripts/create_service_key.py --name "mini app backend"

    # Test environment key that expires in 30 days
    python3 scripts/create_service_key.py --name ci --environment test --expires-in-days 30
"""

import argparse
import asyncio
import sys

from economy.db.session import close_engines, get_write_session
from economy.observability import get_logger, setup_logging
from economy.services.api_key import DEFAULT_PERMISSIONS, APIKeyService

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a service API key")
    parser.add_argument("--name", required=True, help="Human-readable key name")
    parser.add_argument("--environment", choices=["test", "live"], default="live")
    parser.add_argument(
        "--admin", action="store_true", help="Also grant admin:write (back office access)"
    )
    parser.add_argument("--expires-in-days", type=int, default=None)
    parser.add_argument("--created-by", default="bootstrap", help="Recorded as the key's creator")
    return parser.parse_args(argv)


async def create_key(args: argparse.Namespace) -> str:
    permissions = list(DEFAULT_PERMISSIONS)
    if args.admin:
        permissions.append("admin:write")

    try:
        async with get_write_session() as session:
            generated = await APIKeyService(session).create_api_key(
                name=args.name,
                created_by=args.created_by,
                environment=args.environment,
                permissions=permissions,
                expires_in_days=args.expires_in_days,
            )
    finally:
        await close_engines()

    logger.info(
        "service_key_bootstrapped",
        key_id=str(generated.key_id),
        key_prefix=generated.key_prefix,
        permissions=permissions,
    )
    return generated.plaintext_key


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = parse_args(argv)
    plaintext_key = asyncio.run(create_key(args))
    # Printed once; only the hash is stored
    print(plaintext_key)
    return 0


if __name__ == "__main__":
    sys.exit(main())
