"""Tests for the audit logger and audit log queries."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from trustbridge.core.exceptions import AuditWriteFailure
from trustbridge.models.audit_logs import audit_logs
from trustbridge.schemas.audit import AuditAction, AuditTarget
from trustbridge.services.audit_service import (
    AuditEvent,
    AuditLogger,
    ClientInfo,
    list_audit_logs,
)


@pytest.fixture
def broken_session_factory(tmp_path):
    """Sessions on a database that has no audit table."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}",
        poolclass=NullPool,
    )
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.mark.asyncio
class TestAuditLogger:
    """Tests for writing audit records."""

    async def test_record_persists_event(
        self, db_session: AsyncSession, audit_logger: AuditLogger, patient: dict
    ):
        """Test every field of an event lands in the row."""
        await audit_logger.record(
            AuditEvent(
                action=AuditAction.LOGIN_SUCCESS,
                actor_id=patient["id"],
                subject_user_id=patient["id"],
                client=ClientInfo(ip="192.0.2.1", user_agent="Mozilla/5.0"),
                metadata={"twoFactor": False},
            )
        )

        row = (await db_session.execute(select(audit_logs))).mappings().one()
        assert row["action"] == "LOGIN_SUCCESS"
        assert row["target"] == "USER"
        assert row["actor_id"] == patient["id"]
        assert row["subject_user_id"] == patient["id"]
        assert row["ip"] == "192.0.2.1"
        assert row["user_agent"] == "Mozilla/5.0"
        assert row["metadata"] == {"twoFactor": False}
        assert row["timestamp"].tzinfo is not None

    async def test_write_failure_is_wrapped(self, broken_session_factory):
        """Test the internal writer reports failures as AuditWriteFailure."""
        audit = AuditLogger(broken_session_factory)

        with pytest.raises(AuditWriteFailure):
            await audit._write(AuditEvent(action=AuditAction.LOGIN_FAILED))

    async def test_record_swallows_failures(self, broken_session_factory):
        """Test a failing audit store never propagates to the caller."""
        audit = AuditLogger(broken_session_factory)

        await audit.record(AuditEvent(action=AuditAction.LOGIN_FAILED))


@pytest.mark.asyncio
class TestListAuditLogs:
    """Tests for browsing the audit trail."""

    async def _seed(self, audit_logger: AuditLogger, admin: dict, patient: dict) -> None:
        await audit_logger.record(
            AuditEvent(
                action=AuditAction.LOGIN_SUCCESS,
                actor_id=patient["id"],
                subject_user_id=patient["id"],
            )
        )
        await audit_logger.record(
            AuditEvent(action=AuditAction.LOGIN_FAILED, subject_user_id=patient["id"])
        )
        await audit_logger.record(
            AuditEvent(
                action=AuditAction.ROLE_CHANGE,
                actor_id=admin["id"],
                subject_user_id=patient["id"],
                metadata={"oldRole": "PATIENT", "newRole": "PROVIDER"},
            )
        )
        await audit_logger.record(
            AuditEvent(
                action=AuditAction.FILE_UPLOAD,
                target=AuditTarget.FILE,
                actor_id=admin["id"],
                subject_user_id=admin["id"],
            )
        )

    async def test_newest_first_with_actor_details(
        self, db_session: AsyncSession, audit_logger: AuditLogger, admin: dict, patient: dict
    ):
        """Test records come back newest first with the actor joined in."""
        await self._seed(audit_logger, admin, patient)

        logs, total, total_pages = await list_audit_logs(db_session)

        assert total == 4
        assert total_pages == 1
        assert [log["action"] for log in logs] == [
            "FILE_UPLOAD",
            "ROLE_CHANGE",
            "LOGIN_FAILED",
            "LOGIN_SUCCESS",
        ]
        assert logs[0]["actor_email"] == admin["email"]
        assert logs[0]["actor_name"] == admin["name"]
        assert logs[2]["actor_id"] is None
        assert logs[2]["actor_email"] is None

    async def test_filters(
        self, db_session: AsyncSession, audit_logger: AuditLogger, admin: dict, patient: dict
    ):
        """Test filtering by action, actor, target and subject."""
        await self._seed(audit_logger, admin, patient)

        logs, total, _ = await list_audit_logs(db_session, action=AuditAction.LOGIN_FAILED)
        assert total == 1
        assert logs[0]["action"] == "LOGIN_FAILED"

        _, total, _ = await list_audit_logs(db_session, actor_id=admin["id"])
        assert total == 2

        _, total, _ = await list_audit_logs(db_session, target=AuditTarget.FILE)
        assert total == 1

        _, total, _ = await list_audit_logs(db_session, subject_user_id=patient["id"])
        assert total == 3

    async def test_date_range(
        self, db_session: AsyncSession, audit_logger: AuditLogger, admin: dict, patient: dict
    ):
        """Test the date range bounds are applied."""
        await self._seed(audit_logger, admin, patient)
        now = datetime.now(UTC)

        _, total, _ = await list_audit_logs(db_session, date_from=now - timedelta(hours=1))
        assert total == 4

        _, total, _ = await list_audit_logs(db_session, date_from=now + timedelta(hours=1))
        assert total == 0

        _, total, _ = await list_audit_logs(db_session, date_to=now - timedelta(hours=1))
        assert total == 0

    async def test_pagination(
        self, db_session: AsyncSession, audit_logger: AuditLogger, admin: dict, patient: dict
    ):
        """Test paging through the trail."""
        await self._seed(audit_logger, admin, patient)

        logs, total, total_pages = await list_audit_logs(db_session, page=2, page_size=3)

        assert total == 4
        assert total_pages == 2
        assert len(logs) == 1
        assert logs[0]["action"] == "LOGIN_SUCCESS"
