"""Encrypted file endpoints.

Every route here touches PHI and requires a fully verified session.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from trustbridge.config import settings
from trustbridge.dependencies import (
    AuditLoggerDep,
    ClientInfoDep,
    DatabaseSession,
    Identity,
    StorageDep,
    authorize,
)
from trustbridge.schemas.auth import MessageResponse
from trustbridge.schemas.files import (
    FileItem,
    FileListResponse,
    PresignDownloadRequest,
    PresignDownloadResponse,
    PresignUploadRequest,
    PresignUploadResponse,
    ShareRequest,
    ShareResponse,
)
from trustbridge.services.file_service import FileService

router = APIRouter(prefix="/files")


@router.get(
    "",
    response_model=FileListResponse,
    status_code=status.HTTP_200_OK,
    summary="List owned and shared files",
)
async def list_files(
    identity: Annotated[Identity, Depends(authorize("files.list"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
) -> FileListResponse:
    """List files owned by the caller followed by files shared with them."""
    listing = await FileService(storage, audit).list_files(db, identity.id)
    return FileListResponse(
        files=[FileItem.model_validate(f) for f in listing["files"]],
        total=listing["total"],
        owned_total=listing["owned_total"],
        shared_total=listing["shared_total"],
    )


@router.post(
    "/presign-upload",
    response_model=PresignUploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Register a file and get an upload URL",
)
async def presign_upload(
    request: PresignUploadRequest,
    identity: Annotated[Identity, Depends(authorize("files.presign_upload"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> PresignUploadResponse:
    """Store ciphertext metadata and return a presigned PUT URL."""
    upload = await FileService(storage, audit).presign_upload(db, identity.id, request, client)
    return PresignUploadResponse(**upload)


@router.post(
    "/presign-download",
    response_model=PresignDownloadResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a download URL",
)
async def presign_download(
    request: PresignDownloadRequest,
    identity: Annotated[Identity, Depends(authorize("files.presign_download"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> PresignDownloadResponse:
    """
    Return a presigned GET URL for the owner or an active grantee.

    Raises:
        ForbiddenException: Caller may not read the file
    """
    url = await FileService(storage, audit).presign_download(db, identity.id, request.file_id, client)
    return PresignDownloadResponse(
        download_url=url,
        expires_in=settings.presigned_url_expire_seconds,
    )


@router.post(
    "/share",
    response_model=ShareResponse,
    status_code=status.HTTP_200_OK,
    summary="Share a file",
)
async def share_file(
    request: ShareRequest,
    identity: Annotated[Identity, Depends(authorize("files.share"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> ShareResponse:
    """
    Grant another user read access to an owned file.

    Raises:
        ForbiddenException: Caller does not own the file
        NotFoundException: Grantee does not exist
    """
    share = await FileService(storage, audit).share(
        db, identity.id, request.file_id, request.grantee_id, client
    )
    return ShareResponse.model_validate(share)


@router.delete(
    "/shares/{share_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke a share",
)
async def revoke_share(
    share_id: UUID,
    identity: Annotated[Identity, Depends(authorize("files.share_revoke"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> MessageResponse:
    """
    Revoke an active share on an owned file.

    Raises:
        ForbiddenException: Share is unknown, already revoked or not the caller's
    """
    await FileService(storage, audit).revoke_share(db, identity.id, share_id, client)
    return MessageResponse(message="Share revoked successfully")


@router.delete(
    "/{file_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete a file",
)
async def delete_file(
    file_id: UUID,
    identity: Annotated[Identity, Depends(authorize("files.delete"))],
    db: DatabaseSession,
    storage: StorageDep,
    audit: AuditLoggerDep,
    client: ClientInfoDep,
) -> MessageResponse:
    """
    Soft-delete an owned file and revoke its shares.

    Raises:
        ForbiddenException: Caller does not own the file
    """
    await FileService(storage, audit).delete_file(db, identity.id, file_id, client)
    return MessageResponse(message="File deleted successfully")
