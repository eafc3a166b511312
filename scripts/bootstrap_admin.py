#!/usr/bin/env python3
"""Create or promote the admin principal.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password SecurePassword123!

Environment Variables:
    ADMIN_EMAIL: Email for the admin principal
    ADMIN_PASSWORD: Password for the admin principal
    DATABASE_URL: PostgreSQL connection string (memory store if not set)
    KEY_DIR: Signing key directory (keys are generated there if missing)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    """At least 12 characters drawn from 3+ character classes."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def bootstrap_admin(email: str, password: str, dry_run: bool = False) -> dict:
    # Import here so config is read after the env defaults below are applied
    from vexillum.service.runtime import get_runtime
    from vexillum.storage.models import UserRole, normalize_email

    runtime = get_runtime()
    email = normalize_email(email)

    if dry_run:
        existing = runtime.store.find_principal_by_email(email)
        if existing is None:
            print(f"[DRY RUN] Would create admin principal: {email}")
        elif existing.role != UserRole.ADMIN:
            print(f"[DRY RUN] Would promote existing principal {email} to admin")
        else:
            print(f"[DRY RUN] {email} is already an admin")
        return {"user_id": existing.id if existing else None, "email": email, "status": "dry_run"}

    user, status = await runtime.auth.ensure_admin(email, password, promote_existing=True)
    return {"user_id": user.id, "email": email, "status": status}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap the Vexillum admin principal",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(bootstrap_admin(args.email, args.password, args.dry_run))
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    status = result["status"]
    if status == "created":
        print("\nAdmin principal created.")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif status == "promoted":
        print(f"\nExisting principal {result['email']} promoted to admin.")
    elif status == "already_admin":
        print("\nNo changes needed - principal is already an admin.")


if __name__ == "__main__":
    main()
