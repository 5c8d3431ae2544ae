"""Authentication endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from trustbridge.config import settings
from trustbridge.core.security import create_session_token
from trustbridge.dependencies import (
    AuditLoggerDep,
    ClientInfoDep,
    DatabaseSession,
    Identity,
    RateLimiterDep,
    authorize,
)
from trustbridge.schemas.auth import (
    EnrollmentConfirmRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    SecondFactorRequest,
    TwoFactorEnabledResponse,
    TwoFactorEnrollResponse,
)
from trustbridge.schemas.users import UserResponse
from trustbridge.services.account_service import AccountService
from trustbridge.services.auth_service import AuthService, LoginResult
from trustbridge.services.totp_service import TotpService

router = APIRouter()


def set_session_cookie(response: Response, token: str) -> None:
    """Attach the session token as an http-only cookie."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_token_expire_days * 24 * 60 * 60,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        path="/",
    )


def _login_response(result: LoginResult) -> LoginResponse:
    if result.requires_two_factor:
        return LoginResponse(token=result.token, requires_two_factor=True)
    return LoginResponse(
        token=result.token,
        user=UserResponse.model_validate(result.account),
    )


@router.post(
    "/register",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a patient or provider account",
)
async def register(
    request: RegisterRequest,
    response: Response,
    db: DatabaseSession,
    audit: AuditLoggerDep,
    rate_limiter: RateLimiterDep,
    client: ClientInfoDep,
) -> LoginResponse:
    """
    Create an account and start a session.

    ADMIN cannot be chosen here; admins are created by promotion or by the
    bootstrap script.

    Raises:
        ConflictException: If the email is already registered
    """
    result = await AuthService(audit, rate_limiter).register(db, request, client)
    set_session_cookie(response, result.token)
    return _login_response(result)


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Log in with email and password",
)
async def login(
    request: LoginRequest,
    response: Response,
    db: DatabaseSession,
    audit: AuditLoggerDep,
    rate_limiter: RateLimiterDep,
    client: ClientInfoDep,
) -> LoginResponse:
    """
    Authenticate with email and password.

    When 2FA is enabled and no code is supplied, the returned session is
    partial (``requiresTwoFactor``) and only accepted by
    ``/auth/login/verify-2fa``.

    Raises:
        RateLimitException: Too many attempts from this address
        AccountLockedException: Account is temporarily locked
        InvalidCredentialsException: Wrong email, password or code
    """
    result = await AuthService(audit, rate_limiter).login(
        db,
        email=request.email,
        password=request.password,
        totp_code=request.totp_code,
        client=client,
    )
    set_session_cookie(response, result.token)
    return _login_response(result)


@router.post(
    "/login/verify-2fa",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Complete login with a TOTP or backup code",
)
async def verify_two_factor(
    request: SecondFactorRequest,
    response: Response,
    identity: Annotated[Identity, Depends(authorize("auth.verify_2fa"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    rate_limiter: RateLimiterDep,
    client: ClientInfoDep,
) -> LoginResponse:
    """
    Exchange a partial session and a second factor for a full session.

    Raises:
        RateLimitException: Too many 2FA attempts for this account
        AccountLockedException: Account is temporarily locked
        InvalidCredentialsException: Code does not match
    """
    result = await AuthService(audit, rate_limiter).verify_second_factor(
        db, identity.id, request.totp_code, client
    )
    set_session_cookie(response, result.token)
    return _login_response(result)


@router.post(
    "/logout",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Log out",
)
async def logout(response: Response) -> MessageResponse:
    """
    Clear the session cookie.

    Tokens are stateless, so a copied token stays valid until it expires.
    """
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/totp/enroll",
    response_model=TwoFactorEnrollResponse,
    status_code=status.HTTP_200_OK,
    summary="Start TOTP enrollment",
)
async def enroll_totp(
    identity: Annotated[Identity, Depends(authorize("auth.totp.enroll"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> TwoFactorEnrollResponse:
    """
    Generate a TOTP secret and QR code for an authenticator app.

    Raises:
        AlreadyEnabledException: If 2FA is already active
    """
    provisioning = await TotpService(audit).enroll(db, identity.id, client)
    return TwoFactorEnrollResponse(**provisioning)


@router.post(
    "/totp/verify",
    response_model=TwoFactorEnabledResponse,
    status_code=status.HTTP_200_OK,
    summary="Confirm TOTP enrollment",
)
async def verify_totp_enrollment(
    request: EnrollmentConfirmRequest,
    response: Response,
    identity: Annotated[Identity, Depends(authorize("auth.totp.verify"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> TwoFactorEnabledResponse:
    """
    Confirm the first code, enable 2FA and return the backup codes.

    The backup codes appear in this response only. A new session token is
    issued so the caller's claims show 2FA as enabled and verified.

    Raises:
        BadRequestException: No enrollment is pending
        InvalidCredentialsException: Code does not match
    """
    codes = await TotpService(audit).verify_enrollment(db, identity.id, request.totp_code, client)

    account = await AccountService().get_by_id(db, identity.id)
    token = create_session_token(account, True)
    set_session_cookie(response, token)

    return TwoFactorEnabledResponse(
        message="Two-factor authentication enabled successfully",
        backup_codes=codes,
        token=token,
    )


@router.post(
    "/totp/disable",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Disable TOTP",
)
async def disable_totp(
    request: SecondFactorRequest,
    response: Response,
    identity: Annotated[Identity, Depends(authorize("auth.totp.disable"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> MessageResponse:
    """
    Turn 2FA off after a valid TOTP or backup code.

    Raises:
        BadRequestException: 2FA is not enabled
        InvalidCredentialsException: Code does not match
    """
    await TotpService(audit).disable(db, identity.id, request.totp_code, client)

    account = await AccountService().get_by_id(db, identity.id)
    set_session_cookie(response, create_session_token(account, True))

    return MessageResponse(message="Two-factor authentication disabled successfully")
