"""Admin-specific schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from trustbridge.schemas.base import CamelModel
from trustbridge.schemas.users import Role


class RoleChangeRequest(CamelModel):
    """Promote or demote request."""

    target_user_id: UUID


class RoleUpdateRequest(CamelModel):
    """Generic role update request."""

    role: Role


class AdminUserRow(CamelModel):
    """Account row in the admin user table."""

    id: UUID
    email: str
    name: str
    role: Role
    two_factor_enabled: bool
    created_at: datetime
    updated_at: datetime


class AdminUserListResponse(CamelModel):
    """Response schema for admin user listing."""

    data: list[AdminUserRow]
    page: int
    page_size: int
    total: int
    total_pages: int
    sort: Literal["createdAt", "role", "email"]
    order: Literal["asc", "desc"]
    q: str | None = None
    role: Role | None = None


class RoleChangeResponse(CamelModel):
    """Outcome of a role transition."""

    success: bool = True
    message: str
    user: AdminUserRow
