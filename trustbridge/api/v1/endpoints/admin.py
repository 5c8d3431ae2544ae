"""Admin-only endpoints for account and audit management."""

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from trustbridge.dependencies import (
    AuditLoggerDep,
    ClientInfoDep,
    DatabaseSession,
    Identity,
    authorize,
)
from trustbridge.schemas.admin import (
    AdminUserListResponse,
    AdminUserRow,
    RoleChangeRequest,
    RoleChangeResponse,
    RoleUpdateRequest,
)
from trustbridge.schemas.audit import (
    AuditAction,
    AuditLogEntry,
    AuditLogListResponse,
    AuditTarget,
)
from trustbridge.schemas.users import Role
from trustbridge.services.account_service import AccountService
from trustbridge.services.audit_service import list_audit_logs
from trustbridge.services.rbac_service import RBACService

router = APIRouter(prefix="/admin")


@router.get(
    "/users",
    response_model=AdminUserListResponse,
    status_code=status.HTTP_200_OK,
    summary="List all users (admin only)",
)
async def list_users(
    identity: Annotated[Identity, Depends(authorize("admin.users.list"))],
    db: DatabaseSession,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize", description="Items per page"),
    q: str | None = Query(None, max_length=255, description="Search by name or email"),
    role: Role | None = Query(None, description="Filter by role"),
    sort: Literal["createdAt", "role", "email"] = Query("createdAt"),
    order: Literal["asc", "desc"] = Query("desc"),
) -> AdminUserListResponse:
    """
    Get paginated list of all users with filtering.

    Args:
        identity: Authenticated admin
        db: Database session
        page: Page number
        page_size: Items per page
        q: Search term for name/email
        role: Filter by user role
        sort: Sort column
        order: Sort direction

    Returns:
        Paginated list of users
    """
    rows, total, total_pages = await AccountService().list_accounts(
        db,
        page=page,
        page_size=page_size,
        q=q,
        role=role,
        sort=sort,
        order=order,
    )

    return AdminUserListResponse(
        data=[AdminUserRow.model_validate(row) for row in rows],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
        sort=sort,
        order=order,
        q=q,
        role=role,
    )


@router.post(
    "/promote",
    response_model=RoleChangeResponse,
    status_code=status.HTTP_200_OK,
    summary="Promote a provider to admin",
)
async def promote_user(
    request: RoleChangeRequest,
    identity: Annotated[Identity, Depends(authorize("admin.promote"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> RoleChangeResponse:
    """
    Promote a provider to admin.

    Raises:
        BadRequestException: Target is not a provider
        NotFoundException: Target does not exist
    """
    user = await RBACService(audit).promote(db, identity.id, request.target_user_id, client)
    return RoleChangeResponse(
        message="User promoted to admin successfully",
        user=AdminUserRow.model_validate(user),
    )


@router.post(
    "/demote",
    response_model=RoleChangeResponse,
    status_code=status.HTTP_200_OK,
    summary="Demote an admin to provider",
)
async def demote_user(
    request: RoleChangeRequest,
    identity: Annotated[Identity, Depends(authorize("admin.demote"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> RoleChangeResponse:
    """
    Demote an admin to provider.

    Raises:
        LastAdminException: Target is the only remaining admin
        BadRequestException: Target is not an admin
        NotFoundException: Target does not exist
    """
    user = await RBACService(audit).demote(db, identity.id, request.target_user_id, client)
    return RoleChangeResponse(
        message="User demoted successfully",
        user=AdminUserRow.model_validate(user),
    )


@router.put(
    "/users/{user_id}/role",
    response_model=RoleChangeResponse,
    status_code=status.HTTP_200_OK,
    summary="Change a user's role between patient and provider",
)
async def update_user_role(
    user_id: UUID,
    request: RoleUpdateRequest,
    identity: Annotated[Identity, Depends(authorize("admin.users.role"))],
    db: DatabaseSession,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> RoleChangeResponse:
    """
    Change a user's role.

    Admin status is changed through promote and demote only.

    Raises:
        BadRequestException: Self-change or an ADMIN transition
        NotFoundException: Target does not exist
    """
    user = await RBACService(audit).update_role(db, identity.id, user_id, request.role, client)
    return RoleChangeResponse(
        message=f"User role updated to {request.role.value}",
        user=AdminUserRow.model_validate(user),
    )


@router.get(
    "/audit-logs",
    response_model=AuditLogListResponse,
    status_code=status.HTTP_200_OK,
    summary="Browse the audit trail",
)
async def get_audit_logs(
    identity: Annotated[Identity, Depends(authorize("admin.audit_logs"))],
    db: DatabaseSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    action: AuditAction | None = Query(None),
    actor_id: UUID | None = Query(None, alias="actorId"),
    target: AuditTarget | None = Query(None),
    subject_user_id: UUID | None = Query(None, alias="subjectUserId"),
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
) -> AuditLogListResponse:
    """
    Get audit records, newest first.

    Returns:
        Paginated audit records with actor name and email
    """
    logs, total, total_pages = await list_audit_logs(
        db,
        page=page,
        page_size=page_size,
        action=action,
        actor_id=actor_id,
        target=target,
        subject_user_id=subject_user_id,
        date_from=date_from,
        date_to=date_to,
    )

    return AuditLogListResponse(
        logs=[AuditLogEntry.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )
