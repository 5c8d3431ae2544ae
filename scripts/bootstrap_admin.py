"""Create the first administrator, or promote an existing account.

At least one ADMIN must exist for role management to work, and the
application itself never creates one. Run this once per environment.

Usage:
    ADMIN_EMAIL=admin@trustbridge.health ADMIN_PASSWORD='...' python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@trustbridge.health --password '...'
"""

import argparse
import asyncio
import os
import sys
from datetime import UTC, datetime

from sqlalchemy import update

from trustbridge.database import AsyncSessionLocal, engine
from trustbridge.models.accounts import accounts
from trustbridge.schemas.users import Role
from trustbridge.services.account_service import AccountService

MIN_PASSWORD_LENGTH = 12


async def bootstrap_admin(email: str, password: str, name: str) -> str:
    """
    Ensure an ADMIN account exists for the given email.

    Returns:
        ``created``, ``promoted`` or ``already_admin``
    """
    service = AccountService()

    async with AsyncSessionLocal() as db:
        existing = await service.find_by_email(db, email)

        if existing:
            if existing["role"] == Role.ADMIN.value:
                print(f"User {email} already exists as admin (id: {existing['id']})")
                return "already_admin"

            await db.execute(
                update(accounts)
                .where(accounts.c.id == existing["id"])
                .values(role=Role.ADMIN.value, updated_at=datetime.now(UTC))
            )
            await db.commit()
            print(f"Promoted existing user {email} to admin (id: {existing['id']})")
            return "promoted"

        account = await service.create_account(db, email=email, name=name, password=password, role=Role.ADMIN)
        print(f"Created admin user {email} (id: {account['id']})")
        return "created"


def main() -> None:
    """Parse arguments and bootstrap the admin account."""
    parser = argparse.ArgumentParser(description="Bootstrap an admin account")
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME", "System Administrator"))
    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("--email and --password (or ADMIN_EMAIL and ADMIN_PASSWORD) are required")

    if not MIN_PASSWORD_LENGTH <= len(args.password) <= 72:
        print(
            f"✗ Admin password must be {MIN_PASSWORD_LENGTH} to 72 characters long",
            file=sys.stderr,
        )
        sys.exit(1)

    async def run() -> None:
        try:
            await bootstrap_admin(args.email, args.password, args.name)
        finally:
            await engine.dispose()

    asyncio.run(run())


if __name__ == "__main__":
    main()
