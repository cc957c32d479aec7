"""Object storage adapter for Cloudflare R2 (S3-compatible).

Each logical bucket namespace (``media`` and ``archive``) has its own bucket
name, public domain and key prefix, while the endpoint and credentials are
shared. Configuration is resolved lazily from settings and memoized per
bucket, so an unconfigured namespace only fails when it is first used.
"""

import asyncio
import logging
import posixpath
import re
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from mediahub.core.config import Settings, settings as app_settings

logger = logging.getLogger(__name__)

# Well-known key prefixes of historical uploads, searched after the configured ones
LEGACY_KEY_PREFIXES = ("media-storage", "archive-storage")

_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

UPLOAD_KIND_FOLDERS = {
    "video": "videos",
    "thumbnail": "thumbnails",
}


class StorageBucket(str, Enum):
    """Logical bucket namespaces."""

    MEDIA = "media"
    ARCHIVE = "archive"


def parse_storage_bucket(value: Union[str, StorageBucket, None]) -> StorageBucket:
    """Parse a stored bucket tag, falling back to the media bucket."""
    if isinstance(value, StorageBucket):
        return value
    if isinstance(value, str) and value.strip().lower() == StorageBucket.ARCHIVE.value:
        return StorageBucket.ARCHIVE
    return StorageBucket.MEDIA


class StorageError(Exception):
    """Base exception for object storage errors."""
    pass


class ConfigurationError(StorageError):
    """Raised when required configuration is missing or disallows an operation."""
    pass


class UploadError(StorageError):
    """Raised when a file could not be written to the object store."""
    pass


def normalize_endpoint(endpoint: str, bucket_name: str = "") -> str:
    """Strip trailing slashes and a trailing ``/<bucket>`` path segment.

    R2 dashboards hand out endpoints with the bucket appended; the S3 client
    expects the bare account endpoint.
    """
    value = endpoint.strip().rstrip("/")
    parts = urlsplit(value)
    if not parts.netloc:
        return value

    path = parts.path.rstrip("/")
    suffix = f"/{bucket_name}" if bucket_name else ""
    if suffix and path.endswith(suffix):
        path = path[: -len(suffix)]
    return urlunsplit((parts.scheme, parts.netloc, path.rstrip("/"), "", ""))


def _public_origin(public_domain: str) -> str:
    value = public_domain.strip()
    if "://" not in value:
        value = f"https://{value}"
    parts = urlsplit(value)
    if parts.scheme and parts.netloc:
        return f"{parts.scheme}://{parts.netloc}"
    return value.rstrip("/")


@dataclass(frozen=True)
class BucketConfig:
    """Resolved configuration of one bucket namespace."""

    bucket: StorageBucket
    endpoint: str
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    key_prefix: str
    public_domain: Optional[str] = None

    @property
    def endpoint_host(self) -> str:
        return urlsplit(self.endpoint).netloc.lower()

    @property
    def public_base_url(self) -> str:
        """Base that public URLs are built on (no trailing slash)."""
        if self.public_domain:
            return _public_origin(self.public_domain)
        return f"{self.endpoint}/{self.bucket_name}"

    @property
    def public_host(self) -> Optional[str]:
        if not self.public_domain:
            return None
        return urlsplit(_public_origin(self.public_domain)).netloc.lower() or None


def load_bucket_config(bucket: StorageBucket, config: Settings) -> BucketConfig:
    """Build the configuration of a bucket namespace from settings.

    Raises:
        ConfigurationError: If any required value is missing
    """
    if bucket == StorageBucket.ARCHIVE:
        name_var = "R2_ARCHIVE_BUCKET_NAME"
        bucket_name = config.R2_ARCHIVE_BUCKET_NAME
        public_domain = config.R2_ARCHIVE_PUBLIC_DOMAIN
        key_prefix = config.R2_ARCHIVE_KEY_PREFIX
    else:
        name_var = "R2_BUCKET_NAME"
        bucket_name = config.R2_BUCKET_NAME
        public_domain = config.R2_PUBLIC_DOMAIN
        key_prefix = config.R2_KEY_PREFIX

    required = {
        "R2_ENDPOINT": config.R2_ENDPOINT,
        "R2_ACCESS_KEY_ID": config.R2_ACCESS_KEY_ID,
        "R2_SECRET_ACCESS_KEY": config.R2_SECRET_ACCESS_KEY,
        name_var: bucket_name,
    }
    missing = [name for name, value in required.items() if not (value or "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing object storage configuration for '{bucket.value}' bucket: "
            + ", ".join(missing)
        )

    bucket_name = bucket_name.strip()
    return BucketConfig(
        bucket=bucket,
        endpoint=normalize_endpoint(config.R2_ENDPOINT, bucket_name),
        access_key_id=config.R2_ACCESS_KEY_ID.strip(),
        secret_access_key=config.R2_SECRET_ACCESS_KEY.strip(),
        bucket_name=bucket_name,
        key_prefix=(key_prefix or bucket_name).strip().strip("/"),
        public_domain=(public_domain or "").strip() or None,
    )


def _create_s3_client(config: BucketConfig):
    return boto3.client(
        "s3",
        endpoint_url=config.endpoint,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        region_name="auto",
        config=BotoConfig(signature_version="s3v4"),
    )


class ObjectStore:
    """S3-compatible object store shared by every bucket namespace."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        client_factory: Optional[Callable[[BucketConfig], Any]] = None,
    ):
        self.settings = config or app_settings
        self._client_factory = client_factory or _create_s3_client
        self._configs: dict[StorageBucket, BucketConfig] = {}
        self._clients: dict[StorageBucket, Any] = {}

    def get_config(self, bucket: StorageBucket = StorageBucket.MEDIA) -> BucketConfig:
        """Get the memoized configuration of a bucket namespace."""
        bucket = parse_storage_bucket(bucket)
        if bucket not in self._configs:
            self._configs[bucket] = load_bucket_config(bucket, self.settings)
        return self._configs[bucket]

    def _get_client(self, bucket: StorageBucket):
        bucket = parse_storage_bucket(bucket)
        if bucket not in self._clients:
            self._clients[bucket] = self._client_factory(self.get_config(bucket))
        return self._clients[bucket]

    # ------------------------------------------------------------------
    # Signed URLs
    # ------------------------------------------------------------------

    def signed_download_url(
        self,
        key: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
        expires_in: Optional[int] = None,
    ) -> str:
        """Issue a time-limited GET URL for an object."""
        config = self.get_config(bucket)
        return self._get_client(bucket).generate_presigned_url(
            "get_object",
            Params={"Bucket": config.bucket_name, "Key": key},
            ExpiresIn=expires_in or self.settings.SIGNED_URL_TTL_SECONDS,
        )

    def signed_upload_url(
        self,
        key: str,
        content_type: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
        expires_in: Optional[int] = None,
    ) -> str:
        """Issue a time-limited PUT URL for a single-request upload."""
        config = self.get_config(bucket)
        return self._get_client(bucket).generate_presigned_url(
            "put_object",
            Params={"Bucket": config.bucket_name, "Key": key, "ContentType": content_type},
            ExpiresIn=expires_in or self.settings.SIGNED_UPLOAD_TTL_SECONDS,
        )

    def signed_upload_part_url(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        bucket: StorageBucket = StorageBucket.MEDIA,
        expires_in: Optional[int] = None,
    ) -> str:
        """Issue a time-limited PUT URL for one part of a multipart upload."""
        config = self.get_config(bucket)
        return self._get_client(bucket).generate_presigned_url(
            "upload_part",
            Params={
                "Bucket": config.bucket_name,
                "Key": key,
                "UploadId": upload_id,
                "PartNumber": part_number,
            },
            ExpiresIn=expires_in or self.settings.SIGNED_UPLOAD_TTL_SECONDS,
        )

    # ------------------------------------------------------------------
    # Multipart uploads
    # ------------------------------------------------------------------

    async def create_multipart_upload(
        self,
        key: str,
        content_type: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> str:
        """Start a multipart upload and return its upload ID."""
        config = self.get_config(bucket)
        client = self._get_client(bucket)
        try:
            response = await asyncio.to_thread(
                client.create_multipart_upload,
                Bucket=config.bucket_name,
                Key=key,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Failed to start multipart upload for {key}: {e}") from e
        return response["UploadId"]

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: list[dict],
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> str:
        """Complete a multipart upload and return the object's public URL.

        Args:
            key: Object key
            upload_id: Upload ID returned by create_multipart_upload
            parts: ``{"PartNumber": int, "ETag": str}`` entries
            bucket: Bucket namespace
        """
        config = self.get_config(bucket)
        client = self._get_client(bucket)
        ordered = sorted(parts, key=lambda part: part["PartNumber"])
        try:
            await asyncio.to_thread(
                client.complete_multipart_upload,
                Bucket=config.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": ordered},
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Failed to complete multipart upload for {key}: {e}") from e
        return self.public_url(key, bucket)

    async def abort_multipart_upload(
        self,
        key: str,
        upload_id: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> None:
        config = self.get_config(bucket)
        client = self._get_client(bucket)
        try:
            await asyncio.to_thread(
                client.abort_multipart_upload,
                Bucket=config.bucket_name,
                Key=key,
                UploadId=upload_id,
            )
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"Failed to abort multipart upload for {key}: {e}") from e

    # ------------------------------------------------------------------
    # Direct upload
    # ------------------------------------------------------------------

    async def upload_local_file(
        self,
        path: str,
        key: str,
        content_type: str,
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> str:
        """Upload a local file and return its public URL.

        The boto3 managed transfer streams the file (multipart for large
        files) in a worker thread.

        Raises:
            UploadError: If the transfer fails
        """
        config = self.get_config(bucket)
        client = self._get_client(bucket)
        try:
            await asyncio.to_thread(
                client.upload_file,
                path,
                config.bucket_name,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (S3UploadFailedError, BotoCoreError, ClientError, OSError) as e:
            raise UploadError(f"Failed to upload {key}: {e}") from e

        logger.info(
            "Uploaded object",
            extra={"key": key, "bucket": config.bucket_name, "content_type": content_type},
        )
        return self.public_url(key, bucket)

    # ------------------------------------------------------------------
    # Key <-> URL translation
    # ------------------------------------------------------------------

    def public_url(self, key: str, bucket: StorageBucket = StorageBucket.MEDIA) -> str:
        """Build the public URL of an object key."""
        config = self.get_config(bucket)
        return f"{config.public_base_url}/{key.lstrip('/')}"

    def generate_upload_key(
        self,
        bucket: StorageBucket,
        filename: str,
        kind: str = "video",
    ) -> str:
        """Generate a fresh, collision-resistant object key.

        Keys look like ``<prefix>/<videos|thumbnails>/<ms-timestamp>-<random>.<ext>``.
        """
        folder = UPLOAD_KIND_FOLDERS.get(kind)
        if folder is None:
            raise ValueError(f"Unknown upload kind: {kind}")

        config = self.get_config(bucket)
        ext = posixpath.splitext(filename)[1].lstrip(".").lower() or "bin"
        token = uuid.uuid4().hex[:12]
        return f"{config.key_prefix}/{folder}/{int(time.time() * 1000)}-{token}.{ext}"

    def extract_key(
        self,
        stored_url: Optional[str],
        bucket: StorageBucket = StorageBucket.MEDIA,
    ) -> Optional[str]:
        """Recover the object key from a stored URL.

        Accepts the bucket's own public or path-style URLs, bare relative
        keys, and URLs on other hosts whose path contains a known key prefix.
        Returns None when the key cannot be determined.
        """
        if not stored_url:
            return None

        cleaned = stored_url.split("#", 1)[0].split("?", 1)[0].strip()
        if not cleaned:
            return None

        if not _ABSOLUTE_URL_RE.match(cleaned) and not cleaned.startswith("//"):
            return cleaned.lstrip("/") or None

        try:
            parts = urlsplit(f"https:{cleaned}" if cleaned.startswith("//") else cleaned)
            host = parts.netloc.lower()
        except ValueError:
            return None

        file_path = parts.path.lstrip("/")
        if not host or not file_path:
            return None

        config = self.get_config(bucket)
        bucket_segment = f"{config.bucket_name}/"

        if config.public_host and host == config.public_host:
            return file_path
        if host == config.endpoint_host and file_path.startswith(bucket_segment):
            return file_path[len(bucket_segment):] or None

        padded = f"/{file_path}"
        for prefix in self._known_prefixes(config):
            index = padded.find(f"/{prefix}/")
            if index >= 0:
                return file_path[index:]

        if file_path.startswith(bucket_segment):
            return file_path[len(bucket_segment):] or None
        return None

    def _known_prefixes(self, config: BucketConfig) -> list[str]:
        candidates = [
            config.key_prefix,
            self.settings.R2_KEY_PREFIX or self.settings.R2_BUCKET_NAME,
            self.settings.R2_ARCHIVE_KEY_PREFIX or self.settings.R2_ARCHIVE_BUCKET_NAME,
            *LEGACY_KEY_PREFIXES,
        ]
        prefixes = []
        for candidate in candidates:
            value = (candidate or "").strip().strip("/")
            if value and value not in prefixes:
                prefixes.append(value)
        return prefixes


_object_store: Optional[ObjectStore] = None


def get_object_store() -> ObjectStore:
    """Get the process-wide object store instance."""
    global _object_store
    if _object_store is None:
        _object_store = ObjectStore()
    return _object_store
