"""Encrypted file metadata, presigned transfers and sharing."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from trustbridge.core.exceptions import BadRequestException, ForbiddenException, NotFoundException
from trustbridge.core.storage import ObjectStorage, generate_object_key
from trustbridge.models.accounts import accounts
from trustbridge.models.files import files, shares
from trustbridge.schemas.audit import AuditAction, AuditTarget
from trustbridge.schemas.files import PresignUploadRequest
from trustbridge.services.audit_service import AuditEvent, AuditLogger, ClientInfo

logger = structlog.get_logger(__name__)

FILE_ACCESS_DENIED = "File not found or access denied"
SHARE_ACCESS_DENIED = "Share not found or access denied"

FILE_COLUMNS = [
    files.c.id,
    files.c.filename_cipher,
    files.c.notes_cipher,
    files.c.size,
    files.c.mime_type,
    files.c.object_key,
    files.c.enc_file_key,
    files.c.enc_file_key_alg,
    files.c.iv,
    files.c.created_at,
]


def _active_share(now: datetime):
    return and_(
        shares.c.revoked_at.is_(None),
        or_(shares.c.expires_at.is_(None), shares.c.expires_at > now),
    )


class FileService:
    """Service for encrypted file operations.

    The server stores ciphertext metadata only; the blob itself moves
    between the client and object storage through presigned URLs.
    """

    def __init__(self, storage: ObjectStorage, audit: AuditLogger):
        """Initialize service with object storage and the audit logger."""
        self.storage = storage
        self.audit = audit

    async def _get_owned_file(self, db: AsyncSession, owner_id: UUID, file_id: UUID) -> dict:
        query = select(files).where(
            files.c.id == file_id,
            files.c.owner_id == owner_id,
            files.c.is_deleted.is_(False),
        )
        result = await db.execute(query)
        file = result.mappings().first()
        if not file:
            raise ForbiddenException(FILE_ACCESS_DENIED)
        return dict(file)

    async def list_files(self, db: AsyncSession, account_id: UUID) -> dict:
        """
        List files owned by or actively shared with an account.

        Returns:
            Dict with ``files``, ``total``, ``owned_total`` and ``shared_total``
        """
        owned_query = (
            select(*FILE_COLUMNS)
            .where(files.c.owner_id == account_id, files.c.is_deleted.is_(False))
            .order_by(files.c.created_at.desc())
        )
        owned = [
            {**dict(row), "shared": False}
            for row in (await db.execute(owned_query)).mappings().all()
        ]

        shared_query = (
            select(
                *FILE_COLUMNS,
                shares.c.id.label("share_id"),
                shares.c.created_at.label("shared_at"),
                files.c.owner_id.label("shared_by_id"),
                accounts.c.name.label("shared_by_name"),
                accounts.c.email.label("shared_by_email"),
            )
            .select_from(
                shares.join(files, shares.c.file_id == files.c.id).join(
                    accounts, files.c.owner_id == accounts.c.id
                )
            )
            .where(
                shares.c.grantee_id == account_id,
                files.c.is_deleted.is_(False),
                _active_share(datetime.now(UTC)),
            )
            .order_by(shares.c.created_at.desc())
        )
        shared = [
            {**dict(row), "shared": True}
            for row in (await db.execute(shared_query)).mappings().all()
        ]

        return {
            "files": owned + shared,
            "total": len(owned) + len(shared),
            "owned_total": len(owned),
            "shared_total": len(shared),
        }

    async def presign_upload(
        self,
        db: AsyncSession,
        owner_id: UUID,
        data: PresignUploadRequest,
        client: ClientInfo,
    ) -> dict:
        """
        Register a new encrypted file and return where to upload it.

        Args:
            db: Database session
            owner_id: Uploading account
            data: Ciphertext metadata
            client: Request origin for the audit trail

        Returns:
            Dict with ``file_id``, ``object_key``, ``upload_url`` and
            ``required_headers``
        """
        object_key = generate_object_key(str(owner_id), "file")
        upload_url, required_headers = self.storage.presign_upload(object_key)

        query = (
            files.insert()
            .values(
                owner_id=owner_id,
                bucket=self.storage.bucket,
                object_key=object_key,
                size=data.size,
                mime_type=data.mime_type,
                filename_cipher=data.filename_cipher,
                notes_cipher=data.notes_cipher,
                enc_file_key=data.enc_file_key,
                enc_file_key_alg=data.enc_file_key_alg,
                iv=data.iv,
                created_at=datetime.now(UTC),
            )
            .returning(files.c.id)
        )
        file_id = (await db.execute(query)).scalar_one()
        await db.commit()

        logger.info("file_registered", file_id=str(file_id), owner_id=str(owner_id), size=data.size)
        await self.audit.record(
            AuditEvent(
                action=AuditAction.FILE_UPLOAD,
                target=AuditTarget.FILE,
                actor_id=owner_id,
                subject_user_id=owner_id,
                target_id=str(file_id),
                file_id=file_id,
                client=client,
                metadata={"size": data.size, "mimeType": data.mime_type},
            )
        )

        return {
            "file_id": file_id,
            "object_key": object_key,
            "upload_url": upload_url,
            "required_headers": required_headers,
        }

    async def presign_download(
        self, db: AsyncSession, account_id: UUID, file_id: UUID, client: ClientInfo
    ) -> str:
        """
        Issue a download URL to the owner or an active grantee.

        Raises:
            ForbiddenException: If the caller may not read the file
        """
        query = (
            select(files)
            .outerjoin(
                shares,
                and_(
                    shares.c.file_id == files.c.id,
                    shares.c.grantee_id == account_id,
                    _active_share(datetime.now(UTC)),
                ),
            )
            .where(
                files.c.id == file_id,
                files.c.is_deleted.is_(False),
                or_(files.c.owner_id == account_id, shares.c.id.is_not(None)),
            )
        )
        file = (await db.execute(query)).mappings().first()
        if not file:
            raise ForbiddenException(FILE_ACCESS_DENIED)

        url = self.storage.presign_download(file["object_key"])

        await self.audit.record(
            AuditEvent(
                action=AuditAction.FILE_DOWNLOAD,
                target=AuditTarget.FILE,
                actor_id=account_id,
                subject_user_id=file["owner_id"],
                target_id=str(file_id),
                file_id=file_id,
                client=client,
            )
        )
        return url

    async def share(
        self,
        db: AsyncSession,
        owner_id: UUID,
        file_id: UUID,
        grantee_id: UUID,
        client: ClientInfo,
    ) -> dict:
        """
        Grant read access on an owned file; re-sharing restores a revoked grant.

        Raises:
            ForbiddenException: Caller does not own the file
            NotFoundException: Grantee does not exist
            BadRequestException: Caller tried to share with themselves
        """
        await self._get_owned_file(db, owner_id, file_id)

        if grantee_id == owner_id:
            raise BadRequestException("Cannot share a file with yourself")

        grantee = (
            await db.execute(select(accounts.c.id).where(accounts.c.id == grantee_id))
        ).first()
        if not grantee:
            raise NotFoundException("User not found")

        share = await self._restore_share(db, file_id, grantee_id)
        if share is None:
            try:
                result = await db.execute(
                    shares.insert()
                    .values(
                        file_id=file_id,
                        grantee_id=grantee_id,
                        created_by_id=owner_id,
                        permission="READ",
                        created_at=datetime.now(UTC),
                    )
                    .returning(shares)
                )
                share = dict(result.mappings().one())
            except IntegrityError:
                # Created concurrently; fall back to restoring it
                await db.rollback()
                share = await self._restore_share(db, file_id, grantee_id)
                if share is None:
                    raise
        await db.commit()

        logger.info("file_shared", file_id=str(file_id), grantee_id=str(grantee_id))
        await self.audit.record(
            AuditEvent(
                action=AuditAction.FILE_SHARE,
                target=AuditTarget.SHARE,
                actor_id=owner_id,
                subject_user_id=grantee_id,
                target_id=str(share["id"]),
                file_id=file_id,
                share_id=share["id"],
                client=client,
                metadata={"granteeId": str(grantee_id), "permission": share["permission"]},
            )
        )
        return share

    async def _restore_share(self, db: AsyncSession, file_id: UUID, grantee_id: UUID) -> dict | None:
        result = await db.execute(
            update(shares)
            .where(shares.c.file_id == file_id, shares.c.grantee_id == grantee_id)
            .values(revoked_at=None, revoked_by_id=None, permission="READ")
            .returning(shares)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def revoke_share(
        self, db: AsyncSession, owner_id: UUID, share_id: UUID, client: ClientInfo
    ) -> None:
        """
        Revoke an active share on an owned file.

        Raises:
            ForbiddenException: Share is unknown, already revoked or not the caller's
        """
        query = (
            select(shares.c.id, shares.c.file_id, shares.c.grantee_id)
            .select_from(shares.join(files, shares.c.file_id == files.c.id))
            .where(
                shares.c.id == share_id,
                shares.c.revoked_at.is_(None),
                files.c.owner_id == owner_id,
            )
        )
        share = (await db.execute(query)).mappings().first()
        if not share:
            raise ForbiddenException(SHARE_ACCESS_DENIED)

        result = await db.execute(
            update(shares)
            .where(shares.c.id == share_id, shares.c.revoked_at.is_(None))
            .values(revoked_at=datetime.now(UTC), revoked_by_id=owner_id)
        )
        await db.commit()
        if result.rowcount != 1:
            raise ForbiddenException(SHARE_ACCESS_DENIED)

        logger.info("share_revoked", share_id=str(share_id))
        await self.audit.record(
            AuditEvent(
                action=AuditAction.FILE_SHARE_REVOKE,
                target=AuditTarget.SHARE,
                actor_id=owner_id,
                subject_user_id=share["grantee_id"],
                target_id=str(share_id),
                file_id=share["file_id"],
                share_id=share_id,
                client=client,
            )
        )

    async def delete_file(
        self, db: AsyncSession, owner_id: UUID, file_id: UUID, client: ClientInfo
    ) -> int:
        """
        Soft-delete an owned file and revoke every active share on it.

        Returns:
            Number of shares revoked
        """
        await self._get_owned_file(db, owner_id, file_id)

        now = datetime.now(UTC)
        await db.execute(
            update(files)
            .where(files.c.id == file_id)
            .values(is_deleted=True, deleted_at=now)
        )
        revoked = await db.execute(
            update(shares)
            .where(shares.c.file_id == file_id, shares.c.revoked_at.is_(None))
            .values(revoked_at=now, revoked_by_id=owner_id)
        )
        await db.commit()

        logger.info("file_deleted", file_id=str(file_id), shares_revoked=revoked.rowcount)
        await self.audit.record(
            AuditEvent(
                action=AuditAction.FILE_DELETE,
                target=AuditTarget.FILE,
                actor_id=owner_id,
                subject_user_id=owner_id,
                target_id=str(file_id),
                file_id=file_id,
                client=client,
                metadata={"sharesRevoked": revoked.rowcount},
            )
        )
        return revoked.rowcount
