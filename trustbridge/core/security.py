"""Security utilities for session tokens and password handling."""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import ValidationError

from trustbridge.config import settings
from trustbridge.schemas.auth import SessionClaims
from trustbridge.schemas.users import Role

SESSION_TOKEN_TYPE = "session"

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.bcrypt_rounds,
)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def dummy_verify() -> None:
    """Spend the same time as a real verification when there is no hash to check."""
    pwd_context.dummy_verify()


def create_session_token(
    account: dict[str, Any],
    two_factor_verified: bool,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a signed session token for an account.

    An account without 2FA has nothing left to verify, so its token is
    always marked verified.

    Args:
        account: Account record (id, email, name, role, two_factor_enabled)
        two_factor_verified: Whether the second factor was presented
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(days=settings.session_token_expire_days))
    two_factor_enabled = bool(account["two_factor_enabled"])

    to_encode = {
        "sub": str(account["id"]),
        "email": account["email"],
        "name": account["name"],
        "role": Role(account["role"]).value,
        "twoFactorEnabled": two_factor_enabled,
        "twoFactorVerified": two_factor_verified or not two_factor_enabled,
        "iat": int(now.timestamp()),
        "exp": int(expire.timestamp()),
        "type": SESSION_TOKEN_TYPE,
    }

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def decode_session_token(token: str) -> SessionClaims | None:
    """
    Decode and validate a session token.

    Args:
        token: JWT token to decode

    Returns:
        Parsed claims or None if the token is invalid, expired or malformed
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    # Verify token type
    if payload.get("type") != SESSION_TOKEN_TYPE:
        return None

    try:
        return SessionClaims.model_validate(payload)
    except ValidationError:
        return None
