"""Authentication service: registration and the two-step login flow."""

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.config import settings
from trustbridge.core.exceptions import (
    AccountLockedException,
    BadRequestException,
    InvalidCredentialsException,
    RateLimitException,
    UnauthorizedException,
)
from trustbridge.core.redis_client import RateLimiter
from trustbridge.core.security import create_session_token
from trustbridge.schemas.audit import AuditAction
from trustbridge.schemas.auth import RegisterRequest
from trustbridge.services.account_service import AccountService
from trustbridge.services.audit_service import AuditEvent, AuditLogger, ClientInfo
from trustbridge.services.lockout_service import LockoutPolicy
from trustbridge.services.totp_service import TotpService

logger = structlog.get_logger(__name__)

INVALID_2FA_MESSAGE = "Invalid 2FA code"


@dataclass
class LoginResult:
    """Outcome of a successful authentication step."""

    account: dict
    token: str
    requires_two_factor: bool = False


class AuthService:
    """Orchestrates credential, lockout and TOTP checks into sessions.

    Every completed login attempt ends in exactly one LOGIN_SUCCESS or
    LOGIN_FAILED record. The password step of a 2FA account that returns a
    partial session is not a completed attempt; the second-factor step
    closes it.
    """

    def __init__(
        self,
        audit: AuditLogger,
        rate_limiter: RateLimiter,
        account_service: AccountService | None = None,
        lockout: LockoutPolicy | None = None,
        totp_service: TotpService | None = None,
    ):
        """Initialize auth service with its collaborators."""
        self.audit = audit
        self.rate_limiter = rate_limiter
        self.accounts = account_service or AccountService()
        self.lockout = lockout or LockoutPolicy()
        self.totp = totp_service or TotpService(audit)

    async def register(
        self, db: AsyncSession, data: RegisterRequest, client: ClientInfo
    ) -> LoginResult:
        """
        Create an account and sign the new user in.

        Args:
            db: Database session
            data: Validated registration request
            client: Request origin for the audit trail

        Returns:
            New account and a full session token

        Raises:
            ConflictException: If the email is already registered
        """
        account = await self.accounts.create_account(
            db,
            email=data.email,
            name=data.name,
            password=data.password,
            role=data.role,
        )

        await self.audit.record(
            AuditEvent(
                action=AuditAction.ACCOUNT_CREATED,
                actor_id=account["id"],
                subject_user_id=account["id"],
                client=client,
                metadata={"role": account["role"]},
            )
        )

        return LoginResult(account=account, token=create_session_token(account, True))

    async def login(
        self,
        db: AsyncSession,
        email: str,
        password: str,
        totp_code: str | None,
        client: ClientInfo,
    ) -> LoginResult:
        """
        Authenticate with email and password, and a second factor if enabled.

        Args:
            db: Database session
            email: Login email
            password: Plaintext password
            totp_code: Optional TOTP or backup code
            client: Request origin for rate limiting and the audit trail

        Returns:
            A full session, or a partial one when 2FA is enabled and no code
            was given

        Raises:
            RateLimitException: Too many attempts from this client
            AccountLockedException: Account is locked
            InvalidCredentialsException: Wrong email, password or code
        """
        ip_key = f"rl:login:{client.ip or 'unknown'}"
        if not self.rate_limiter.check_rate_limit(
            ip_key, settings.login_rate_limit, settings.login_rate_window_seconds
        ):
            logger.warning("login_rate_limited", ip=client.ip)
            raise RateLimitException("Too many login attempts. Please try again later.")

        account = await self.accounts.find_by_email(db, email)
        if account is None:
            self.accounts.check_password(None, password)
            logger.info("login_failed", reason="unknown_email")
            await self._record_login_failed(
                None, client, {"reason": "unknown_email", "email": email.strip().lower()}
            )
            raise InvalidCredentialsException()

        try:
            await self.lockout.check(db, account)
        except AccountLockedException:
            await self._record_login_failed(account["id"], client, {"reason": "account_locked"})
            raise

        if not self.accounts.check_password(account, password):
            logger.info("login_failed", account_id=str(account["id"]), reason="invalid_password")
            await self._register_failure(db, account["id"], client)
            await self._record_login_failed(account["id"], client, {"reason": "invalid_password"})
            raise InvalidCredentialsException()

        if account["two_factor_enabled"]:
            if not totp_code:
                logger.info("login_two_factor_pending", account_id=str(account["id"]))
                return LoginResult(
                    account=account,
                    token=create_session_token(account, False),
                    requires_two_factor=True,
                )
            await self._check_second_factor(db, account, totp_code, client)

        return await self._complete_login(db, account, client)

    async def verify_second_factor(
        self,
        db: AsyncSession,
        account_id: UUID,
        code: str,
        client: ClientInfo,
    ) -> LoginResult:
        """
        Upgrade a partial session to a full one.

        Args:
            db: Database session
            account_id: Account named by the partial session
            code: TOTP or backup code
            client: Request origin for the audit trail

        Returns:
            Account and a full session token

        Raises:
            RateLimitException: Too many 2FA attempts for this account
            AccountLockedException: Account is locked
            InvalidCredentialsException: Code does not match
        """
        if not self.rate_limiter.check_rate_limit(
            f"rl:2fa:{account_id}",
            settings.two_factor_rate_limit,
            settings.two_factor_rate_window_seconds,
        ):
            logger.warning("two_factor_rate_limited", account_id=str(account_id))
            raise RateLimitException("Too many 2FA attempts. Please try again later.")

        account = await self.accounts.get_by_id(db, account_id)
        if account is None:
            raise UnauthorizedException()
        if not account["two_factor_enabled"]:
            raise BadRequestException("2FA not enabled")

        try:
            await self.lockout.check(db, account)
        except AccountLockedException:
            await self._record_login_failed(account["id"], client, {"reason": "account_locked"})
            raise

        await self._check_second_factor(db, account, code, client)
        return await self._complete_login(db, account, client)

    async def _check_second_factor(
        self, db: AsyncSession, account: dict, code: str, client: ClientInfo
    ) -> None:
        if await self.totp.verify_login(db, account, code):
            await self.audit.record(
                AuditEvent(
                    action=AuditAction.TWOFA_VERIFY,
                    actor_id=account["id"],
                    subject_user_id=account["id"],
                    client=client,
                    metadata={"success": True, "stage": "login"},
                )
            )
            return

        logger.info("login_failed", account_id=str(account["id"]), reason="invalid_2fa_code")
        await self._register_failure(db, account["id"], client)
        await self.audit.record(
            AuditEvent(
                action=AuditAction.TWOFA_VERIFY,
                subject_user_id=account["id"],
                client=client,
                metadata={"success": False, "stage": "login"},
            )
        )
        await self._record_login_failed(account["id"], client, {"reason": "invalid_2fa_code"})
        raise InvalidCredentialsException(INVALID_2FA_MESSAGE)

    async def _complete_login(self, db: AsyncSession, account: dict, client: ClientInfo) -> LoginResult:
        await self.lockout.register_success(db, account["id"])
        token = create_session_token(account, True)

        logger.info("login_succeeded", account_id=str(account["id"]))
        await self.audit.record(
            AuditEvent(
                action=AuditAction.LOGIN_SUCCESS,
                actor_id=account["id"],
                subject_user_id=account["id"],
                client=client,
                metadata={"twoFactor": bool(account["two_factor_enabled"])},
            )
        )
        return LoginResult(account=account, token=token)

    async def _register_failure(self, db: AsyncSession, account_id: UUID, client: ClientInfo) -> None:
        outcome = await self.lockout.register_failure(db, account_id)
        if outcome.just_locked:
            await self.audit.record(
                AuditEvent(
                    action=AuditAction.ACCOUNT_LOCKED,
                    subject_user_id=account_id,
                    client=client,
                    metadata={
                        "attempts": outcome.attempts,
                        "lockoutMinutes": int(self.lockout.lockout_duration.total_seconds() // 60),
                    },
                )
            )

    async def _record_login_failed(
        self, account_id: UUID | None, client: ClientInfo, metadata: dict
    ) -> None:
        await self.audit.record(
            AuditEvent(
                action=AuditAction.LOGIN_FAILED,
                subject_user_id=account_id,
                client=client,
                metadata=metadata,
            )
        )
