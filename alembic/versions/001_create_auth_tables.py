"""Create accounts, backup codes, audit log, files and shares tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.TIMESTAMP(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    """Create the auth core schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "accounts",
        _uuid_pk(),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("email_lower", sa.Text(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", sa.String(16), nullable=False, server_default=sa.text("'PATIENT'")),
        sa.Column("totp_secret", sa.String(64), nullable=True),
        sa.Column(
            "two_factor_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("login_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("locked_until", nullable=True),
        _timestamp("last_login_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("role IN ('PATIENT', 'PROVIDER', 'ADMIN')", name="ck_accounts_role"),
        sa.CheckConstraint("login_attempts >= 0", name="ck_accounts_login_attempts"),
        sa.CheckConstraint(
            "NOT two_factor_enabled OR totp_secret IS NOT NULL",
            name="ck_accounts_two_factor_secret",
        ),
    )
    op.create_index("ix_accounts_email_lower", "accounts", ["email_lower"], unique=True)
    op.create_index("ix_accounts_role", "accounts", ["role"])

    op.create_table(
        "backup_codes",
        _uuid_pk(),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code_hash", sa.String(64), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("account_id", "code_hash", name="uq_backup_codes_account_code"),
    )
    op.create_index("ix_backup_codes_account_id", "backup_codes", ["account_id"])

    op.create_table(
        "audit_logs",
        _uuid_pk(),
        _timestamp("timestamp"),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("target", sa.String(16), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("subject_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("target_id", sa.String(64), nullable=True),
        sa.Column("file_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("share_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("ip", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_target", "audit_logs", ["target"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_subject_user_id", "audit_logs", ["subject_user_id"])

    # Audit rows are append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_logs_immutable() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_no_update_delete
        BEFORE UPDATE OR DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION audit_logs_immutable();
        """
    )

    op.create_table(
        "files",
        _uuid_pk(),
        sa.Column(
            "owner_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("bucket", sa.String(255), nullable=False),
        sa.Column("object_key", sa.Text(), nullable=False, unique=True),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=True),
        sa.Column("filename_cipher", sa.Text(), nullable=False),
        sa.Column("notes_cipher", sa.Text(), nullable=True),
        sa.Column("enc_file_key", sa.Text(), nullable=False),
        sa.Column(
            "enc_file_key_alg",
            sa.String(64),
            nullable=False,
            server_default=sa.text("'AES-GCM-256'"),
        ),
        sa.Column("iv", sa.Text(), nullable=False),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("deleted_at", nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_files_owner_id", "files", ["owner_id"])

    op.create_table(
        "shares",
        _uuid_pk(),
        sa.Column(
            "file_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("files.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "grantee_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "created_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id"),
            nullable=False,
        ),
        sa.Column("permission", sa.String(16), nullable=False, server_default=sa.text("'READ'")),
        _timestamp("expires_at", nullable=True),
        _timestamp("revoked_at", nullable=True),
        sa.Column(
            "revoked_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id"),
            nullable=True,
        ),
        _timestamp("created_at"),
        sa.UniqueConstraint("file_id", "grantee_id", name="uq_shares_file_grantee"),
    )
    op.create_index("ix_shares_file_id", "shares", ["file_id"])
    op.create_index("ix_shares_grantee_id", "shares", ["grantee_id"])


def downgrade() -> None:
    """Drop the auth core schema."""
    op.drop_table("shares")
    op.drop_table("files")
    op.execute("DROP TRIGGER IF EXISTS audit_logs_no_update_delete ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS audit_logs_immutable()")
    op.drop_table("audit_logs")
    op.drop_table("backup_codes")
    op.drop_table("accounts")
