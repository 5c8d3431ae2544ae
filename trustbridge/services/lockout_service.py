"""Per-account lockout after repeated authentication failures.

An account is LOCKED while ``locked_until`` lies in the future and OPEN
otherwise. Expired locks are cleared lazily on the next check; nothing runs
in the background.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import case, literal, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.config import settings
from trustbridge.core.exceptions import AccountLockedException
from trustbridge.models.accounts import accounts
from trustbridge.models.base import UTCDateTime

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FailureOutcome:
    """Counter state after a failure was registered."""

    attempts: int
    locked_until: datetime | None
    # True only for the failure that crossed the threshold
    just_locked: bool


def minutes_remaining(locked_until: datetime, now: datetime | None = None) -> int:
    """Whole minutes left on a lock, rounded up."""
    now = now or datetime.now(UTC)
    return max(1, math.ceil((locked_until - now).total_seconds() / 60))


class LockoutPolicy:
    """Lockout counter and lock state for accounts."""

    def __init__(
        self,
        max_attempts: int | None = None,
        lockout_minutes: int | None = None,
    ):
        """Initialize policy with threshold and lock duration."""
        self.max_attempts = max_attempts or settings.max_login_attempts
        self.lockout_duration = timedelta(minutes=lockout_minutes or settings.lockout_minutes)

    async def check(self, db: AsyncSession, account: dict) -> None:
        """
        Refuse to proceed while the account is locked.

        Must run before any credential is evaluated. An expired lock is
        cleared together with the failure counter.

        Args:
            db: Database session
            account: Account record

        Raises:
            AccountLockedException: If the lock is still active
        """
        locked_until = account.get("locked_until")
        if locked_until is None:
            return

        now = datetime.now(UTC)
        if locked_until > now:
            remaining = minutes_remaining(locked_until, now)
            logger.info(
                "account_locked_attempt",
                account_id=str(account["id"]),
                minutes_remaining=remaining,
            )
            raise AccountLockedException(remaining)

        # Conditional so a lock set concurrently by another request survives
        query = (
            update(accounts)
            .where(accounts.c.id == account["id"], accounts.c.locked_until <= now)
            .values(login_attempts=0, locked_until=None)
        )
        result = await db.execute(query)
        await db.commit()

        if result.rowcount:
            account["login_attempts"] = 0
            account["locked_until"] = None
            logger.info("account_lock_expired", account_id=str(account["id"]))

    async def register_failure(self, db: AsyncSession, account_id: UUID) -> FailureOutcome:
        """
        Count a failed attempt and lock the account at the threshold.

        The increment and the lock decision happen in one statement, so
        concurrent failures each see a distinct count and exactly one of them
        crosses the threshold.

        Args:
            db: Database session
            account_id: Account that failed to authenticate

        Returns:
            Counter state after the increment
        """
        lock_until = datetime.now(UTC) + self.lockout_duration
        new_attempts = accounts.c.login_attempts + 1

        query = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(
                login_attempts=new_attempts,
                locked_until=case(
                    (new_attempts >= self.max_attempts, literal(lock_until, UTCDateTime())),
                    else_=accounts.c.locked_until,
                ),
            )
            .returning(accounts.c.login_attempts, accounts.c.locked_until)
        )
        result = await db.execute(query)
        row = result.mappings().first()
        await db.commit()

        if not row:
            return FailureOutcome(attempts=0, locked_until=None, just_locked=False)

        attempts = row["login_attempts"]
        just_locked = attempts == self.max_attempts
        if just_locked:
            logger.warning(
                "account_locked",
                account_id=str(account_id),
                attempts=attempts,
                lockout_minutes=int(self.lockout_duration.total_seconds() // 60),
            )
        else:
            logger.info(
                "login_attempt_failed",
                account_id=str(account_id),
                attempts=attempts,
                max_attempts=self.max_attempts,
            )

        return FailureOutcome(
            attempts=attempts,
            locked_until=row["locked_until"],
            just_locked=just_locked,
        )

    async def register_success(self, db: AsyncSession, account_id: UUID) -> None:
        """Reset the failure counter and record the login time."""
        query = (
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(login_attempts=0, locked_until=None, last_login_at=datetime.now(UTC))
        )
        await db.execute(query)
        await db.commit()
