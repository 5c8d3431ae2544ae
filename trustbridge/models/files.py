"""Encrypted file and share model definitions using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    text,
)

from trustbridge.models.base import UTCDateTime, metadata, utcnow

files = Table(
    "files",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    Column(
        "owner_id",
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    # Storage location
    Column("bucket", String(255), nullable=False),
    Column("object_key", Text, nullable=False, unique=True),
    Column("size", BigInteger, nullable=False),
    Column("mime_type", String(255)),
    # Client-side encrypted material, opaque to the server
    Column("filename_cipher", Text, nullable=False),
    Column("notes_cipher", Text),
    Column("enc_file_key", Text, nullable=False),
    Column("enc_file_key_alg", String(64), nullable=False, server_default=text("'AES-GCM-256'")),
    Column("iv", Text, nullable=False),
    # Soft delete
    Column("is_deleted", Boolean, nullable=False, default=False, server_default=false()),
    Column("deleted_at", UTCDateTime()),
    Column("created_at", UTCDateTime(), nullable=False, default=utcnow),
)

shares = Table(
    "shares",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    Column(
        "file_id",
        Uuid(as_uuid=True),
        ForeignKey("files.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column(
        "grantee_id",
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("created_by_id", Uuid(as_uuid=True), ForeignKey("accounts.id"), nullable=False),
    Column("permission", String(16), nullable=False, server_default=text("'READ'")),
    Column("expires_at", UTCDateTime()),
    # Revocation is a soft state
    Column("revoked_at", UTCDateTime()),
    Column("revoked_by_id", Uuid(as_uuid=True), ForeignKey("accounts.id")),
    Column("created_at", UTCDateTime(), nullable=False, default=utcnow),
    UniqueConstraint("file_id", "grantee_id", name="uq_shares_file_grantee"),
)
