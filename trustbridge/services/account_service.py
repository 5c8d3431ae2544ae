"""Credential store: account records and password checks."""

import math
from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import asc, desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.core.exceptions import ConflictException
from trustbridge.core.security import dummy_verify, get_password_hash, verify_password
from trustbridge.models.accounts import accounts
from trustbridge.schemas.users import Role

logger = structlog.get_logger(__name__)

DUPLICATE_EMAIL_MESSAGE = "User with this email already exists"

SORT_COLUMNS = {
    "createdAt": accounts.c.created_at,
    "role": accounts.c.role,
    "email": accounts.c.email_lower,
}


class AccountService:
    """Service for account operations."""

    async def get_by_id(self, db: AsyncSession, account_id: UUID) -> dict | None:
        """Get account by ID."""
        query = select(accounts).where(accounts.c.id == account_id)
        result = await db.execute(query)
        account = result.mappings().first()
        return dict(account) if account else None

    async def find_by_email(self, db: AsyncSession, email: str) -> dict | None:
        """Get account by email, case-insensitively."""
        query = select(accounts).where(accounts.c.email_lower == email.strip().lower())
        result = await db.execute(query)
        account = result.mappings().first()
        return dict(account) if account else None

    async def create_account(
        self,
        db: AsyncSession,
        email: str,
        name: str,
        password: str,
        role: Role = Role.PATIENT,
    ) -> dict:
        """
        Create a new account with a bcrypt-hashed password.

        Args:
            db: Database session
            email: Login email, stored as given and case-folded for lookups
            name: Display name
            password: Plaintext password, never stored
            role: Initial role

        Returns:
            Created account

        Raises:
            ConflictException: If the email is already registered
        """
        if await self.find_by_email(db, email):
            raise ConflictException(DUPLICATE_EMAIL_MESSAGE)

        now = datetime.now(UTC)
        query = (
            accounts.insert()
            .values(
                email=email.strip(),
                email_lower=email.strip().lower(),
                name=name,
                password_hash=get_password_hash(password),
                role=role.value,
                created_at=now,
                updated_at=now,
            )
            .returning(accounts)
        )

        try:
            result = await db.execute(query)
            account = result.mappings().first()
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email
            await db.rollback()
            raise ConflictException(DUPLICATE_EMAIL_MESSAGE)

        if not account:
            raise ValueError("Failed to create account")

        logger.info("account_created", account_id=str(account["id"]), role=role.value)
        return dict(account)

    @staticmethod
    def check_password(account: dict | None, password: str) -> bool:
        """
        Verify a password for a possibly missing account.

        When there is no account a dummy hash is still checked, so the
        response time does not reveal whether the email is registered.
        """
        if account is None:
            dummy_verify()
            return False
        return verify_password(password, account["password_hash"])

    async def list_accounts(
        self,
        db: AsyncSession,
        page: int = 1,
        page_size: int = 20,
        q: str | None = None,
        role: Role | None = None,
        sort: str = "createdAt",
        order: str = "desc",
    ) -> tuple[list[dict], int, int]:
        """
        List accounts for administration.

        Args:
            db: Database session
            page: Page number (1-indexed)
            page_size: Rows per page
            q: Case-insensitive substring matched against email and name
            role: Filter by role
            sort: ``createdAt``, ``role`` or ``email``
            order: ``asc`` or ``desc``

        Returns:
            Tuple of (accounts, total count, total pages)
        """
        conditions = []
        if q:
            pattern = f"%{q.lower()}%"
            conditions.append(
                or_(accounts.c.email_lower.like(pattern), func.lower(accounts.c.name).like(pattern))
            )
        if role:
            conditions.append(accounts.c.role == role.value)

        count_query = select(func.count()).select_from(accounts).where(*conditions)
        total = (await db.execute(count_query)).scalar_one()

        direction = asc if order == "asc" else desc
        query = (
            select(accounts)
            .where(*conditions)
            .order_by(direction(SORT_COLUMNS.get(sort, accounts.c.created_at)), accounts.c.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await db.execute(query)
        rows = [dict(row) for row in result.mappings().all()]

        total_pages = math.ceil(total / page_size) if total else 0
        return rows, total, total_pages

    async def list_providers(self, db: AsyncSession) -> list[dict]:
        """Get all providers, ordered by name."""
        query = (
            select(accounts)
            .where(accounts.c.role == Role.PROVIDER.value)
            .order_by(accounts.c.name.asc())
        )
        result = await db.execute(query)
        return [dict(row) for row in result.mappings().all()]

    async def count_admins(self, db: AsyncSession) -> int:
        """Count accounts holding the ADMIN role."""
        query = (
            select(func.count()).select_from(accounts).where(accounts.c.role == Role.ADMIN.value)
        )
        return (await db.execute(query)).scalar_one()
