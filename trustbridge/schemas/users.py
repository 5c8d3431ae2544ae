"""User schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from trustbridge.schemas.base import CamelModel


class Role(str, Enum):
    """Account roles, lowest privilege first."""

    PATIENT = "PATIENT"
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class UserResponse(CamelModel):
    """Account fields safe to return to clients."""

    id: UUID
    email: str
    name: str
    role: Role
    two_factor_enabled: bool = False
    created_at: datetime | None = None


class CurrentUserResponse(UserResponse):
    """Identity of the caller, including the session's 2FA state."""

    two_factor_verified: bool


class ProviderResponse(CamelModel):
    """Provider directory entry."""

    id: UUID
    email: str
    name: str
    role: Role


class ProviderListResponse(CamelModel):
    """Provider directory listing."""

    providers: list[ProviderResponse]
