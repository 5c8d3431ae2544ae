"""Audit trail writer and reader."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from trustbridge.core.exceptions import AuditWriteFailure
from trustbridge.models.accounts import accounts
from trustbridge.models.audit_logs import audit_logs
from trustbridge.schemas.audit import AuditAction, AuditTarget

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """Where a request came from, as recorded on audit rows."""

    ip: str | None = None
    user_agent: str | None = None


@dataclass
class AuditEvent:
    """A security-relevant event about to be appended to the audit trail."""

    action: AuditAction
    target: AuditTarget = AuditTarget.USER
    actor_id: UUID | None = None
    subject_user_id: UUID | None = None
    target_id: str | None = None
    file_id: UUID | None = None
    share_id: UUID | None = None
    client: ClientInfo = field(default_factory=ClientInfo)
    metadata: dict[str, Any] | None = None


class AuditLogger:
    """Append-only audit writer.

    Each record is written through a session of its own, so a failing audit
    insert can neither roll back nor block the caller's transaction. Callers
    record an event once the outcome it describes has been committed or
    decided.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize audit logger with a session factory."""
        self.session_factory = session_factory

    async def record(self, event: AuditEvent) -> None:
        """
        Append an event to the audit trail.

        Never raises: a write failure is logged and dropped.

        Args:
            event: Event to record
        """
        try:
            await self._write(event)
        except AuditWriteFailure as e:
            logger.error(
                "audit_write_failed",
                action=event.action.value,
                subject_user_id=str(event.subject_user_id) if event.subject_user_id else None,
                error=str(e.__cause__ or e),
            )

    async def _write(self, event: AuditEvent) -> None:
        try:
            async with self.session_factory() as session:
                await session.execute(
                    audit_logs.insert().values(
                        action=event.action.value,
                        target=event.target.value,
                        actor_id=event.actor_id,
                        subject_user_id=event.subject_user_id,
                        target_id=event.target_id,
                        file_id=event.file_id,
                        share_id=event.share_id,
                        ip=event.client.ip,
                        user_agent=event.client.user_agent,
                        metadata=event.metadata,
                    )
                )
                await session.commit()
        except Exception as e:
            raise AuditWriteFailure(f"Failed to write {event.action.value} audit record") from e


async def list_audit_logs(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    action: AuditAction | None = None,
    actor_id: UUID | None = None,
    target: AuditTarget | None = None,
    subject_user_id: UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> tuple[list[dict], int, int]:
    """
    List audit records, newest first, with the actor's name and email.

    Args:
        db: Database session
        page: Page number (1-indexed)
        page_size: Records per page
        action: Filter by action
        actor_id: Filter by actor
        target: Filter by target kind
        subject_user_id: Filter by the account the event concerns
        date_from: Earliest timestamp, inclusive
        date_to: Latest timestamp, inclusive

    Returns:
        Tuple of (records, total count, total pages)
    """
    conditions = []
    if action:
        conditions.append(audit_logs.c.action == action.value)
    if actor_id:
        conditions.append(audit_logs.c.actor_id == actor_id)
    if target:
        conditions.append(audit_logs.c.target == target.value)
    if subject_user_id:
        conditions.append(audit_logs.c.subject_user_id == subject_user_id)
    if date_from:
        conditions.append(audit_logs.c.timestamp >= date_from)
    if date_to:
        conditions.append(audit_logs.c.timestamp <= date_to)

    count_query = select(func.count()).select_from(audit_logs).where(*conditions)
    total = (await db.execute(count_query)).scalar_one()

    query = (
        select(
            audit_logs,
            accounts.c.name.label("actor_name"),
            accounts.c.email.label("actor_email"),
        )
        .select_from(audit_logs.outerjoin(accounts, audit_logs.c.actor_id == accounts.c.id))
        .where(*conditions)
        .order_by(audit_logs.c.timestamp.desc(), audit_logs.c.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    logs = [dict(row) for row in result.mappings().all()]

    total_pages = math.ceil(total / page_size) if total else 0
    return logs, total, total_pages
