#!/usr/bin/env python3
"""Create a login for the token service, or deactivate/reactivate one.

Usage:
    # Using environment variables:
    AUTH_USERNAME=alice AUTH_PASSWORD='Correct-Horse-42' python scripts/create_user.py

    # Or with command line args:
    python scripts/create_user.py --username alice --password 'Correct-Horse-42'
    python scripts/create_user.py --username alice --deactivate

Environment Variables:
    AUTH_USERNAME: Username to create
    AUTH_PASSWORD: Password (must meet complexity requirements)
    STORE_BACKEND: memory (default, persisted under STATE_DIR) or postgres
    DATABASE_URL: PostgreSQL connection string when STORE_BACKEND=postgres
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def create_user(
    username: str,
    password: Optional[str],
    *,
    active: Optional[bool] = None,
    dry_run: bool = False,
) -> dict:
    """Create a user, or toggle ``is_active`` on an existing one.

    Returns:
        dict with user_id, username, and status
    """
    # Import here to avoid loading config before env vars are set
    from authcycle.service.runtime import get_runtime

    runtime = get_runtime()
    await runtime.start()
    try:
        existing = await runtime.store.get_user_by_username(username)

        if existing:
            if active is None or existing.is_active == active:
                return {"user_id": existing.id, "username": username, "status": "exists"}
            if dry_run:
                return {"user_id": existing.id, "username": username, "status": "dry_run"}
            await runtime.store.set_user_active(existing.id, active)
            status = "reactivated" if active else "deactivated"
            return {"user_id": existing.id, "username": username, "status": status}

        if not password:
            return {"user_id": None, "username": username, "status": "missing_password"}
        if dry_run:
            return {"user_id": None, "username": username, "status": "dry_run"}

        password_hash = await runtime.hasher.hash(password)
        user = await runtime.store.create_user(username, password_hash)
        return {"user_id": user.id, "username": username, "status": "created"}
    finally:
        await runtime.close()


def main():
    parser = argparse.ArgumentParser(
        description="Create or (de)activate a user for authcycle",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("AUTH_USERNAME"),
        help="Username (or set AUTH_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("AUTH_PASSWORD"),
        help="Password (or set AUTH_PASSWORD env var)",
    )
    toggle = parser.add_mutually_exclusive_group()
    toggle.add_argument("--deactivate", action="store_true", help="Deactivate an existing user")
    toggle.add_argument("--activate", action="store_true", help="Reactivate an existing user")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.username:
        print("Error: --username or AUTH_USERNAME environment variable required")
        sys.exit(1)

    active: Optional[bool] = None
    if args.deactivate:
        active = False
    elif args.activate:
        active = True

    if active is None:
        if not args.password:
            print("Error: --password or AUTH_PASSWORD environment variable required")
            sys.exit(1)
        if not validate_password(args.password):
            print("Error: Password must be at least 12 characters with 3+ character classes")
            print("       (uppercase, lowercase, digits, special characters)")
            sys.exit(1)

    try:
        result = asyncio.run(
            create_user(args.username, args.password, active=active, dry_run=args.dry_run)
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print(f"Created user {result['username']} (id: {result['user_id']})")
    elif result["status"] == "dry_run":
        print(f"[DRY RUN] No changes made for {result['username']}")
    elif result["status"] == "exists":
        print(f"User {result['username']} already exists (id: {result['user_id']})")
    else:
        print(f"User {result['username']} {result['status']}")


if __name__ == "__main__":
    main()
