"""Two-factor enrollment, verification and recovery codes."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.core import totp
from trustbridge.core.exceptions import (
    AlreadyEnabledException,
    BadRequestException,
    InvalidCredentialsException,
    NotFoundException,
)
from trustbridge.models.accounts import accounts, backup_codes
from trustbridge.schemas.audit import AuditAction
from trustbridge.services.audit_service import AuditEvent, AuditLogger, ClientInfo

logger = structlog.get_logger(__name__)


class TotpService:
    """Service for TOTP lifecycle operations."""

    def __init__(self, audit: AuditLogger):
        """Initialize service with the audit logger."""
        self.audit = audit

    async def _get_account(self, db: AsyncSession, account_id: UUID) -> dict:
        result = await db.execute(select(accounts).where(accounts.c.id == account_id))
        account = result.mappings().first()
        if not account:
            raise NotFoundException("User not found")
        return dict(account)

    async def enroll(self, db: AsyncSession, account_id: UUID, client: ClientInfo) -> dict:
        """
        Provision a new TOTP secret for an account.

        The secret is stored as pending; 2FA is not enforced until the first
        code is confirmed with :meth:`verify_enrollment`. Re-enrolling replaces
        a pending secret.

        Args:
            db: Database session
            account_id: Account enrolling
            client: Request origin for the audit trail

        Returns:
            Dict with ``secret``, ``otpauth_uri`` and ``qr_image``

        Raises:
            AlreadyEnabledException: If 2FA is already active
        """
        account = await self._get_account(db, account_id)
        if account["two_factor_enabled"]:
            raise AlreadyEnabledException()

        secret = totp.generate_secret()
        result = await db.execute(
            update(accounts)
            .where(accounts.c.id == account_id, accounts.c.two_factor_enabled.is_(False))
            .values(totp_secret=secret, updated_at=datetime.now(UTC))
        )
        # 2FA was enabled between the read and the write
        if result.rowcount != 1:
            await db.rollback()
            raise AlreadyEnabledException()
        await db.execute(delete(backup_codes).where(backup_codes.c.account_id == account_id))
        await db.commit()

        uri = totp.provisioning_uri(secret, account["email"])
        logger.info("totp_enrollment_started", account_id=str(account_id))

        await self.audit.record(
            AuditEvent(
                action=AuditAction.TWOFA_ENROLL,
                actor_id=account_id,
                subject_user_id=account_id,
                client=client,
            )
        )

        return {
            "secret": secret,
            "otpauth_uri": uri,
            "qr_image": totp.qr_data_url(uri),
        }

    async def verify_enrollment(
        self,
        db: AsyncSession,
        account_id: UUID,
        code: str,
        client: ClientInfo,
    ) -> list[str]:
        """
        Confirm a pending enrollment and issue recovery codes.

        Args:
            db: Database session
            account_id: Account confirming
            code: First code from the authenticator
            client: Request origin for the audit trail

        Returns:
            Plaintext backup codes; they are never retrievable again

        Raises:
            AlreadyEnabledException: If 2FA is already active
            BadRequestException: If no enrollment is pending
            InvalidCredentialsException: If the code does not match
        """
        account = await self._get_account(db, account_id)
        if account["two_factor_enabled"]:
            raise AlreadyEnabledException()

        secret = account["totp_secret"]
        if not secret:
            raise BadRequestException("2FA not enrolled")

        if not totp.verify_totp(secret, code):
            logger.info("totp_enrollment_rejected", account_id=str(account_id))
            await self.audit.record(
                AuditEvent(
                    action=AuditAction.TWOFA_VERIFY,
                    actor_id=account_id,
                    subject_user_id=account_id,
                    client=client,
                    metadata={"success": False, "stage": "enrollment"},
                )
            )
            raise InvalidCredentialsException("Invalid TOTP code")

        codes = totp.generate_backup_codes()

        # Only flip the flag if the secret that was checked is still the pending one
        result = await db.execute(
            update(accounts)
            .where(
                accounts.c.id == account_id,
                accounts.c.totp_secret == secret,
                accounts.c.two_factor_enabled.is_(False),
            )
            .values(two_factor_enabled=True, updated_at=datetime.now(UTC))
        )
        if result.rowcount != 1:
            await db.rollback()
            raise BadRequestException("2FA enrollment changed, please enroll again")

        await db.execute(delete(backup_codes).where(backup_codes.c.account_id == account_id))
        await db.execute(
            backup_codes.insert(),
            [{"account_id": account_id, "code_hash": totp.hash_backup_code(c)} for c in codes],
        )
        await db.commit()

        logger.info("totp_enabled", account_id=str(account_id), backup_codes=len(codes))
        await self.audit.record(
            AuditEvent(
                action=AuditAction.TWOFA_VERIFY,
                actor_id=account_id,
                subject_user_id=account_id,
                client=client,
                metadata={"success": True, "stage": "enrollment"},
            )
        )

        return codes

    async def verify_login(self, db: AsyncSession, account: dict, code: str) -> bool:
        """
        Check a second factor presented during login.

        A 6 digit code is checked as TOTP; an 8 character code is checked as a
        backup code and consumed on success. Anything else is rejected without
        touching the secret or the code table.

        Args:
            db: Database session
            account: Account record with ``totp_secret``
            code: Code as typed by the user

        Returns:
            True if the factor is valid
        """
        method = await self._match_second_factor(db, account, code)
        if method:
            logger.info("second_factor_accepted", account_id=str(account["id"]), method=method)
        return method is not None

    async def _match_second_factor(self, db: AsyncSession, account: dict, code: str) -> str | None:
        code = code.strip()
        if totp.is_totp_code(code):
            return "totp" if totp.verify_totp(account["totp_secret"], code) else None

        normalized = totp.normalize_backup_code(code)
        if normalized is None:
            return None

        if await self.consume_backup_code(db, account["id"], normalized):
            return "backup_code"
        return None

    async def consume_backup_code(self, db: AsyncSession, account_id: UUID, code: str) -> bool:
        """
        Use up a backup code.

        Deletion is the consumption: of two concurrent uses of the same code
        only one removes the row.

        Returns:
            True if the code existed and is now spent
        """
        result = await db.execute(
            delete(backup_codes).where(
                backup_codes.c.account_id == account_id,
                backup_codes.c.code_hash == totp.hash_backup_code(code),
            )
        )
        await db.commit()
        return result.rowcount == 1

    async def remaining_backup_codes(self, db: AsyncSession, account_id: UUID) -> int:
        """Count unused backup codes."""
        query = (
            select(func.count())
            .select_from(backup_codes)
            .where(backup_codes.c.account_id == account_id)
        )
        return (await db.execute(query)).scalar_one()

    async def disable(
        self,
        db: AsyncSession,
        account_id: UUID,
        code: str,
        client: ClientInfo,
    ) -> None:
        """
        Turn 2FA off after proof of possession.

        Args:
            db: Database session
            account_id: Account disabling 2FA
            code: Current TOTP code or an unused backup code
            client: Request origin for the audit trail

        Raises:
            BadRequestException: If 2FA is not enabled
            InvalidCredentialsException: If the code does not match
        """
        account = await self._get_account(db, account_id)
        if not account["two_factor_enabled"] or not account["totp_secret"]:
            raise BadRequestException("2FA not enabled")

        if not await self._match_second_factor(db, account, code):
            raise InvalidCredentialsException("Invalid TOTP code or backup code")

        await db.execute(
            update(accounts)
            .where(accounts.c.id == account_id)
            .values(totp_secret=None, two_factor_enabled=False, updated_at=datetime.now(UTC))
        )
        await db.execute(delete(backup_codes).where(backup_codes.c.account_id == account_id))
        await db.commit()

        logger.info("totp_disabled", account_id=str(account_id))
        await self.audit.record(
            AuditEvent(
                action=AuditAction.TWOFA_DISABLE,
                actor_id=account_id,
                subject_user_id=account_id,
                client=client,
            )
        )
