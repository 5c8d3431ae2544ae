"""Database models."""

from trustbridge.models.accounts import accounts, backup_codes
from trustbridge.models.audit_logs import audit_logs
from trustbridge.models.base import metadata
from trustbridge.models.files import files, shares

__all__ = [
    "accounts",
    "audit_logs",
    "backup_codes",
    "files",
    "metadata",
    "shares",
]
