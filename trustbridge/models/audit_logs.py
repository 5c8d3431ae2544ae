"""Audit log model definition using SQLAlchemy Core.

Rows are append-only: nothing in the application updates or deletes them.
"""

from uuid import uuid4

from sqlalchemy import JSON, Column, String, Table, Text, Uuid

from trustbridge.models.base import UTCDateTime, metadata, utcnow

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid4),
    Column("timestamp", UTCDateTime(), nullable=False, default=utcnow, index=True),
    Column("action", String(32), nullable=False, index=True),
    Column("target", String(16), nullable=False, index=True),
    # Null when the actor could not be authenticated
    Column("actor_id", Uuid(as_uuid=True), index=True),
    Column("subject_user_id", Uuid(as_uuid=True), index=True),
    Column("target_id", String(64)),
    Column("file_id", Uuid(as_uuid=True)),
    Column("share_id", Uuid(as_uuid=True)),
    # Request context
    Column("ip", String(45)),  # IPv6 max length
    Column("user_agent", Text),
    Column("metadata", JSON),
)
