"""TOTP and backup code primitives.

Pure helpers with no storage access; persistence lives in
``trustbridge.services.totp_service``.
"""

import base64
import hashlib
import re
import secrets
from io import BytesIO

import pyotp
import qrcode

from trustbridge.config import settings

TOTP_CODE_RE = re.compile(r"^\d{6}$")
BACKUP_CODE_RE = re.compile(r"^[A-Z0-9]{8}$")

# No 0/O or 1/I so codes survive being read aloud or written down
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
BACKUP_CODE_LENGTH = 8


def generate_secret() -> str:
    """Generate a fresh base32 TOTP secret."""
    return pyotp.random_base32(32)


def provisioning_uri(secret: str, email: str) -> str:
    """Build the otpauth:// URI an authenticator app imports."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=settings.totp_issuer)


def qr_data_url(uri: str) -> str:
    """
    Render a provisioning URI as a PNG QR code.

    Args:
        uri: otpauth:// URI

    Returns:
        ``data:image/png;base64,...`` URL suitable for an <img> tag
    """
    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode()
    return f"data:image/png;base64,{encoded}"


def is_totp_code(code: str) -> bool:
    """Whether the input has the shape of a TOTP code."""
    return bool(TOTP_CODE_RE.match(code))


def normalize_backup_code(code: str) -> str | None:
    """Return the canonical backup code, or None if it cannot be one."""
    normalized = code.strip().upper()
    if not BACKUP_CODE_RE.match(normalized):
        return None
    return normalized


def verify_totp(secret: str, code: str) -> bool:
    """
    Check a TOTP code against a secret within the configured drift window.

    Malformed codes are rejected before any HMAC is computed.
    """
    if not secret or not is_totp_code(code):
        return False
    return pyotp.TOTP(secret).verify(code, valid_window=settings.totp_valid_window)


def generate_backup_codes(count: int | None = None) -> list[str]:
    """Generate distinct single-use recovery codes."""
    count = count or settings.backup_code_count
    codes: set[str] = set()
    while len(codes) < count:
        codes.add(
            "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))
        )
    return sorted(codes)


def hash_backup_code(code: str) -> str:
    """SHA-256 digest of a normalized backup code."""
    return hashlib.sha256(code.encode()).hexdigest()
