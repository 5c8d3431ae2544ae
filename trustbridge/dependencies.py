"""FastAPI dependencies."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.config import settings
from trustbridge.core.exceptions import (
    InsufficientRoleException,
    TwoFactorRequiredException,
    UnauthorizedException,
)
from trustbridge.core.policies import get_policy
from trustbridge.core.redis_client import RateLimiter, get_rate_limiter
from trustbridge.core.security import decode_session_token
from trustbridge.core.storage import ObjectStorage, get_storage
from trustbridge.database import AsyncSessionLocal, get_db
from trustbridge.schemas.users import Role
from trustbridge.services.audit_service import AuditLogger, ClientInfo

logger = structlog.get_logger(__name__)

# Security; the session cookie takes precedence, so a missing header is not an error
security = HTTPBearer(auto_error=False)

_audit_logger = AuditLogger(AsyncSessionLocal)


@dataclass(frozen=True)
class Identity:
    """Caller as established by a verified session token."""

    id: UUID
    email: str
    name: str
    role: Role
    two_factor_enabled: bool
    two_factor_verified: bool


def get_audit_logger() -> AuditLogger:
    """Audit logger writing through its own sessions."""
    return _audit_logger


def get_client_info(request: Request) -> ClientInfo:
    """
    Extract the client address and user agent.

    The first ``X-Forwarded-For`` hop wins, then ``X-Real-IP``, then the
    socket peer.
    """
    ip: str | None = None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip() or None
    if not ip:
        ip = request.headers.get("x-real-ip")
    if not ip and request.client:
        ip = request.client.host
    return ClientInfo(ip=ip, user_agent=request.headers.get("user-agent"))


def _extract_token(
    request: Request, credentials: HTTPAuthorizationCredentials | None
) -> str | None:
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    if credentials and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return None


def authorize(route: str) -> Callable[..., Awaitable[Identity]]:
    """
    Build the access-check dependency for a named route.

    The route's policy is resolved here, when the endpoint is declared, so an
    endpoint referring to an undeclared route fails at import.

    Args:
        route: Key in ``ROUTE_POLICIES``

    Returns:
        Dependency resolving to the caller's identity
    """
    policy = get_policy(route)

    async def dependency(
        request: Request,
        credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    ) -> Identity:
        token = _extract_token(request, credentials)
        if not token:
            raise UnauthorizedException()

        claims = decode_session_token(token)
        if claims is None:
            raise UnauthorizedException("Invalid or expired session")

        if not policy.permits_role(claims.role):
            logger.info("access_denied", route=route, role=claims.role.value, reason="role")
            raise InsufficientRoleException()

        if claims.is_partial and not policy.permits_partial():
            logger.info("access_denied", route=route, reason="two_factor_required")
            raise TwoFactorRequiredException()

        try:
            account_id = UUID(claims.sub)
        except ValueError:
            raise UnauthorizedException("Invalid or expired session")

        return Identity(
            id=account_id,
            email=claims.email,
            name=claims.name,
            role=claims.role,
            two_factor_enabled=claims.two_factor_enabled,
            two_factor_verified=claims.two_factor_verified,
        )

    return dependency


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AuditLoggerDep = Annotated[AuditLogger, Depends(get_audit_logger)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
StorageDep = Annotated[ObjectStorage, Depends(get_storage)]
ClientInfoDep = Annotated[ClientInfo, Depends(get_client_info)]
