#!/usr/bin/env python3
"""Register a user against the configured user directory.

Usage:
    USER_EMAIL=alice@example.com USER_PASSWORD=correct-horse python scripts/create_user.py --name Alice

    python scripts/create_user.py --email alice@example.com --password correct-horse --name Alice

Environment Variables:
    USER_EMAIL: Email for the new user
    USER_PASSWORD: Password for the new user (8 to 128 characters)
    DATABASE_URL / USE_MEMORY_STORE: which user directory to write to
    REDIS_URL: token store (ALLOW_REDIS_FALLBACK_DEV=true runs without it)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys


async def create_user(email: str, password: str, name: str, dry_run: bool = False) -> dict:
    # Import here so env vars given on the command line are seen by the config
    from sessionguard.service.errors import ServiceError
    from sessionguard.service.runtime import Runtime

    runtime = await Runtime().open()
    try:
        existing = runtime.directory.find_user_by_email(email)
        if existing:
            print(f"User {email} already exists (id: {existing.id})")
            return {"user_id": existing.id, "email": existing.email, "status": "exists"}
        if dry_run:
            print(f"[DRY RUN] Would create user: {email}")
            return {"user_id": None, "email": email, "status": "dry_run"}
        try:
            user = await runtime.manager.register(email, password, name)
        except ServiceError as exc:
            print(f"Error: {exc.message}")
            return {"user_id": None, "email": email, "status": "failed", "error": exc.error_code}
        print(f"Created user: {user.email} (id: {user.id})")
        return {"user_id": user.id, "email": user.email, "status": "created"}
    finally:
        await runtime.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Create a sessionguard user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("USER_EMAIL"),
        help="User email (or set USER_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("USER_PASSWORD"),
        help="User password (or set USER_PASSWORD env var)",
    )
    parser.add_argument("--name", default=None, help="Display name (defaults to the email's local part)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        print("Error: --email or USER_EMAIL environment variable required")
        sys.exit(1)
    if not args.password and not args.dry_run:
        print("Error: --password or USER_PASSWORD environment variable required")
        sys.exit(1)

    name = args.name or args.email.split("@", 1)[0]
    result = asyncio.run(create_user(args.email, args.password or "", name, dry_run=args.dry_run))
    if result["status"] == "failed":
        sys.exit(1)


if __name__ == "__main__":
    main()
