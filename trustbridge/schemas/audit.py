"""Audit trail schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from trustbridge.schemas.base import CamelModel


class AuditAction(str, Enum):
    """Security-relevant events recorded in the audit trail."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    TWOFA_ENROLL = "TWOFA_ENROLL"
    TWOFA_VERIFY = "TWOFA_VERIFY"
    TWOFA_DISABLE = "TWOFA_DISABLE"
    ROLE_CHANGE = "ROLE_CHANGE"
    ADMIN_PROMOTE = "ADMIN_PROMOTE"
    ADMIN_DEMOTE = "ADMIN_DEMOTE"
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    FILE_DELETE = "FILE_DELETE"
    FILE_SHARE = "FILE_SHARE"
    FILE_SHARE_REVOKE = "FILE_SHARE_REVOKE"


class AuditTarget(str, Enum):
    """Kind of entity an audit record concerns."""

    USER = "USER"
    FILE = "FILE"
    SHARE = "SHARE"


class AuditLogEntry(CamelModel):
    """A single audit record as returned to administrators."""

    id: UUID
    timestamp: datetime
    action: AuditAction
    target: AuditTarget
    actor_id: UUID | None = None
    actor_name: str | None = None
    actor_email: str | None = None
    subject_user_id: UUID | None = None
    target_id: str | None = None
    file_id: UUID | None = None
    share_id: UUID | None = None
    ip: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] | None = None


class AuditLogListResponse(CamelModel):
    """Paginated audit records, newest first."""

    logs: list[AuditLogEntry]
    total: int
    page: int
    page_size: int
    total_pages: int
