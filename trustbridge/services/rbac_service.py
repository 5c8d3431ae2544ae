"""Role transitions with the last-admin guard."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.core.exceptions import (
    BadRequestException,
    InsufficientRoleException,
    LastAdminException,
    NotFoundException,
)
from trustbridge.models.accounts import accounts
from trustbridge.schemas.audit import AuditAction
from trustbridge.schemas.users import Role
from trustbridge.services.audit_service import AuditEvent, AuditLogger, ClientInfo

logger = structlog.get_logger(__name__)

# Demoted admins keep clinical access
DEMOTION_FLOOR = Role.PROVIDER


class RBACService:
    """Service for promoting, demoting and re-roling accounts.

    The actor's role is always re-read from the database, so a session token
    issued before the actor lost ADMIN cannot be used to change roles.
    """

    def __init__(self, audit: AuditLogger):
        """Initialize service with the audit logger."""
        self.audit = audit

    async def _get_account(self, db: AsyncSession, account_id: UUID) -> dict | None:
        result = await db.execute(select(accounts).where(accounts.c.id == account_id))
        account = result.mappings().first()
        return dict(account) if account else None

    async def _require_admin(self, db: AsyncSession, actor_id: UUID) -> dict:
        actor = await self._get_account(db, actor_id)
        if not actor or actor["role"] != Role.ADMIN.value:
            raise InsufficientRoleException()
        return actor

    async def _get_target(self, db: AsyncSession, target_id: UUID) -> dict:
        target = await self._get_account(db, target_id)
        if not target:
            raise NotFoundException("User not found")
        return target

    async def _set_role(
        self, db: AsyncSession, target_id: UUID, expected: Role, new_role: Role
    ) -> dict | None:
        # Conditional on the role read earlier so concurrent transitions cannot both apply
        query = (
            update(accounts)
            .where(accounts.c.id == target_id, accounts.c.role == expected.value)
            .values(role=new_role.value, updated_at=datetime.now(UTC))
            .returning(accounts)
        )
        result = await db.execute(query)
        row = result.mappings().first()
        return dict(row) if row else None

    async def _record_role_change(
        self,
        action: AuditAction,
        actor: dict,
        target: dict,
        old_role: Role,
        new_role: Role,
        client: ClientInfo,
    ) -> None:
        if action != AuditAction.ROLE_CHANGE:
            await self.audit.record(
                AuditEvent(
                    action=action,
                    actor_id=actor["id"],
                    subject_user_id=target["id"],
                    target_id=str(target["id"]),
                    client=client,
                    metadata={"actorEmail": actor["email"], "userEmail": target["email"]},
                )
            )
        await self.audit.record(
            AuditEvent(
                action=AuditAction.ROLE_CHANGE,
                actor_id=actor["id"],
                subject_user_id=target["id"],
                target_id=str(target["id"]),
                client=client,
                metadata={"oldRole": old_role.value, "newRole": new_role.value},
            )
        )

    async def promote(
        self, db: AsyncSession, actor_id: UUID, target_id: UUID, client: ClientInfo
    ) -> dict:
        """
        Promote a provider to admin.

        Args:
            db: Database session
            actor_id: Admin performing the change
            target_id: Provider to promote
            client: Request origin for the audit trail

        Returns:
            Updated target account

        Raises:
            InsufficientRoleException: Actor is not currently an admin
            NotFoundException: Target does not exist
            BadRequestException: Target is not a provider
        """
        actor = await self._require_admin(db, actor_id)
        target = await self._get_target(db, target_id)

        if target["role"] == Role.ADMIN.value:
            raise BadRequestException("User is already an admin")
        if target["role"] != Role.PROVIDER.value:
            raise BadRequestException("Only providers can be promoted to admin")

        updated = await self._set_role(db, target_id, Role.PROVIDER, Role.ADMIN)
        if not updated:
            await db.rollback()
            raise BadRequestException("User role changed concurrently, please retry")
        await db.commit()

        logger.info("admin_promoted", actor_id=str(actor_id), target_id=str(target_id))
        await self._record_role_change(
            AuditAction.ADMIN_PROMOTE, actor, target, Role.PROVIDER, Role.ADMIN, client
        )
        return updated

    async def demote(
        self, db: AsyncSession, actor_id: UUID, target_id: UUID, client: ClientInfo
    ) -> dict:
        """
        Demote an admin to provider, never removing the last admin.

        All ADMIN rows are locked before counting, so two concurrent
        demotions cannot both observe two admins and leave none.

        Args:
            db: Database session
            actor_id: Admin performing the change
            target_id: Admin to demote
            client: Request origin for the audit trail

        Returns:
            Updated target account

        Raises:
            InsufficientRoleException: Actor is not currently an admin
            NotFoundException: Target does not exist
            BadRequestException: Target is not an admin
            LastAdminException: Target is the only remaining admin
        """
        actor = await self._require_admin(db, actor_id)
        target = await self._get_target(db, target_id)

        if target["role"] != Role.ADMIN.value:
            raise BadRequestException("User is not an admin")

        admin_rows = await db.execute(
            select(accounts.c.id).where(accounts.c.role == Role.ADMIN.value).with_for_update()
        )
        admin_ids = admin_rows.scalars().all()

        if len(admin_ids) < 2 or target_id not in admin_ids:
            await db.rollback()
            logger.warning("last_admin_demotion_denied", actor_id=str(actor_id), target_id=str(target_id))
            await self.audit.record(
                AuditEvent(
                    action=AuditAction.ADMIN_DEMOTE,
                    actor_id=actor_id,
                    subject_user_id=target_id,
                    target_id=str(target_id),
                    client=client,
                    metadata={"outcome": "denied", "reason": "last_admin"},
                )
            )
            raise LastAdminException()

        updated = await self._set_role(db, target_id, Role.ADMIN, DEMOTION_FLOOR)
        if not updated:
            await db.rollback()
            raise BadRequestException("User role changed concurrently, please retry")
        await db.commit()

        logger.info("admin_demoted", actor_id=str(actor_id), target_id=str(target_id))
        await self._record_role_change(
            AuditAction.ADMIN_DEMOTE, actor, target, Role.ADMIN, DEMOTION_FLOOR, client
        )
        return updated

    async def update_role(
        self,
        db: AsyncSession,
        actor_id: UUID,
        target_id: UUID,
        role: Role,
        client: ClientInfo,
    ) -> dict:
        """
        Move an account between PATIENT and PROVIDER.

        Transitions into or out of ADMIN must go through :meth:`promote` and
        :meth:`demote`, which carry the last-admin guard.

        Args:
            db: Database session
            actor_id: Admin performing the change
            target_id: Account to change
            role: Requested role
            client: Request origin for the audit trail

        Returns:
            Updated (or unchanged) target account

        Raises:
            InsufficientRoleException: Actor is not currently an admin
            NotFoundException: Target does not exist
            BadRequestException: Self-change or an ADMIN transition
        """
        actor = await self._require_admin(db, actor_id)

        if target_id == actor_id and role != Role.ADMIN:
            raise BadRequestException("Cannot change your own admin role")

        target = await self._get_target(db, target_id)
        current = Role(target["role"])
        if current == role:
            return target

        if Role.ADMIN in (current, role):
            raise BadRequestException(
                "Use the promote or demote endpoints to change admin status"
            )

        updated = await self._set_role(db, target_id, current, role)
        if not updated:
            await db.rollback()
            raise BadRequestException("User role changed concurrently, please retry")
        await db.commit()

        logger.info(
            "role_changed",
            actor_id=str(actor_id),
            target_id=str(target_id),
            old_role=current.value,
            new_role=role.value,
        )
        await self._record_role_change(AuditAction.ROLE_CHANGE, actor, target, current, role, client)
        return updated
