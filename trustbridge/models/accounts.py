"""Account model definitions using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    text,
)

from trustbridge.models.base import UTCDateTime, metadata, utcnow

accounts = Table(
    "accounts",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    # Identity
    Column("email", Text, nullable=False),
    Column("email_lower", Text, nullable=False, unique=True, index=True),
    Column("name", String(100), nullable=False),
    # Credentials
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=text("'PATIENT'"), index=True),
    # Two-factor state; a secret with two_factor_enabled=false is a pending enrollment
    Column("totp_secret", String(64)),
    Column("two_factor_enabled", Boolean, nullable=False, default=False, server_default=false()),
    # Lockout state
    Column("login_attempts", Integer, nullable=False, default=0, server_default=text("0")),
    Column("locked_until", UTCDateTime()),
    Column("last_login_at", UTCDateTime()),
    # Audit
    Column("created_at", UTCDateTime(), nullable=False, default=utcnow),
    Column("updated_at", UTCDateTime(), nullable=False, default=utcnow),
)

# Single-use 2FA recovery codes; only SHA-256 digests are stored
backup_codes = Table(
    "backup_codes",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    Column(
        "account_id",
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("code_hash", String(64), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False, default=utcnow),
    UniqueConstraint("account_id", "code_hash", name="uq_backup_codes_account_code"),
)
