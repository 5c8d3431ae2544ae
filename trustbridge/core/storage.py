"""Object storage for encrypted file blobs.

The server never sees plaintext: it hands out time-boxed presigned URLs and
the client moves ciphertext directly to and from the bucket.
"""

import re
import secrets
import time
from typing import Protocol

import boto3
from botocore.client import Config

from trustbridge.config import settings

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class ObjectStorage(Protocol):
    """Presigned URL issuance for a single bucket."""

    bucket: str

    def presign_upload(self, key: str) -> tuple[str, dict[str, str]]:
        """Return an upload URL and the headers the client must send with it."""
        ...

    def presign_download(self, key: str) -> str:
        """Return a download URL."""
        ...


class S3Storage:
    """S3 (or S3-compatible) storage using SigV4 presigned URLs."""

    def __init__(self) -> None:
        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=settings.s3_region,
        )
        self.s3 = session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            config=Config(signature_version="s3v4"),
        )
        self.bucket = settings.s3_bucket
        self.expires_seconds = settings.presigned_url_expire_seconds

    def presign_upload(self, key: str) -> tuple[str, dict[str, str]]:
        url = self.s3.generate_presigned_url(
            "put_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.expires_seconds,
        )
        # Content type is not part of the signature
        return url, {}

    def presign_download(self, key: str) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=self.expires_seconds,
        )


def generate_object_key(owner_id: str, filename: str) -> str:
    """Build a unique, path-safe object key under the owner's prefix."""
    sanitized = _UNSAFE_KEY_CHARS.sub("_", filename)
    timestamp = int(time.time() * 1000)
    return f"users/{owner_id}/{timestamp}-{secrets.token_hex(6)}-{sanitized}"


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    """Get or create the S3 storage client."""
    global _storage

    if _storage is None:
        _storage = S3Storage()

    return _storage
