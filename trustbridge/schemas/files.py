"""Encrypted file and share schemas.

Every ``*_cipher`` field, the wrapped file key and the IV are produced by the
client; the server stores them as opaque strings.
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from trustbridge.schemas.base import CamelModel

HEX_OR_BASE64_PATTERN = r"^([0-9a-fA-F]+|[A-Za-z0-9+/=]+)$"


class PresignUploadRequest(CamelModel):
    """Metadata for a ciphertext blob about to be uploaded."""

    mime_type: str | None = Field(None, max_length=255)
    size: int = Field(..., gt=0)
    filename_cipher: str = Field(..., min_length=1, max_length=4096)
    notes_cipher: str | None = Field(None, max_length=16_384)
    enc_file_key: str = Field(..., min_length=1, pattern=HEX_OR_BASE64_PATTERN)
    enc_file_key_alg: str = Field("AES-GCM-256", max_length=64)
    iv: str = Field(..., min_length=1, pattern=HEX_OR_BASE64_PATTERN)


class PresignUploadResponse(CamelModel):
    """Where to PUT the ciphertext."""

    file_id: UUID
    object_key: str
    upload_url: str
    required_headers: dict[str, str]


class PresignDownloadRequest(CamelModel):
    """File whose ciphertext the caller wants to fetch."""

    file_id: UUID


class PresignDownloadResponse(CamelModel):
    """Time-boxed download location."""

    download_url: str
    expires_in: int


class ShareRequest(CamelModel):
    """Grant read access on an owned file."""

    file_id: UUID
    grantee_id: UUID


class ShareResponse(CamelModel):
    """A share grant."""

    id: UUID
    file_id: UUID
    grantee_id: UUID
    permission: str
    expires_at: datetime | None = None
    created_at: datetime


class FileItem(CamelModel):
    """File visible to the caller, owned or shared with them."""

    id: UUID
    filename_cipher: str
    notes_cipher: str | None = None
    size: int
    mime_type: str | None = None
    object_key: str
    enc_file_key: str
    enc_file_key_alg: str
    iv: str
    created_at: datetime
    shared: bool = False
    share_id: UUID | None = None
    shared_at: datetime | None = None
    shared_by_id: UUID | None = None
    shared_by_name: str | None = None
    shared_by_email: str | None = None


class FileListResponse(CamelModel):
    """Owned and shared files."""

    files: list[FileItem]
    total: int
    owned_total: int
    shared_total: int
