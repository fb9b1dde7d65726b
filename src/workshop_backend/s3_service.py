"""
Object store clients for workshop images.

This module provides functionality for:
- Uploading image blobs under a workshop-scoped key prefix
- Listing every key under a prefix, paginated internally
- Deleting keys in bulk, chunked to the backend's batch ceiling

Two backends share one interface: ``S3ObjectStore`` (boto3) for deployments
and ``LocalObjectStore`` (filesystem) for development and tests. Backend
failures are raised as ``StorageError``; per-key deletion failures are
reported in the returned ``DeleteResult`` instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .exceptions import StorageError
from .utils import ensure_directory

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most this many keys per request
S3_DELETE_LIMIT = 1000


@dataclass
class KeyListing:
    keys: List[str]
    truncated: bool = False


@dataclass
class DeleteResult:
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class ObjectStore(Protocol):
    backend: str

    def upload(self, key: str, data: bytes, content_type: str) -> str:  # returns locator
        ...

    def list_keys(self, prefix: str) -> KeyListing:
        ...

    def delete_many(self, keys: Sequence[str]) -> DeleteResult:
        ...

    def ping(self) -> str:
        ...


def chunked(items: Sequence[str], size: int) -> Iterator[List[str]]:
    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _client_error_details(exc: Exception) -> Dict[str, str]:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return {"code": error.get("Code", ""), "error": error.get("Message", str(exc))}
    return {"error": str(exc)}


class S3ObjectStore:
    """S3-backed object store. The boto3 client is created once and shared across threads."""

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        public_base_url: str = "",
        page_size: int = 1000,
        max_keys: int = 1000,
        batch_size: int = S3_DELETE_LIMIT,
        client=None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
    ) -> None:
        if not bucket:
            raise ValueError("S3 bucket name must be configured")
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url.rstrip("/")
        self.page_size = page_size
        self.max_keys = max_keys
        self.batch_size = min(batch_size, S3_DELETE_LIMIT)
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                config=Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 0}),
            )
        self.client = client

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"
        return f"https://{self.bucket}.s3.amazonaws.com/{quote(key)}"

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        try:
            logger.info(f"Uploading {len(data)} bytes to s3://{self.bucket}/{key}")
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 upload failed for {key}: {exc}")
            raise StorageError("Failed to upload object", {"key": key, **_client_error_details(exc)}) from exc
        return self.url_for(key)

    def list_keys(self, prefix: str) -> KeyListing:
        """
        List keys under ``prefix``, at most ``max_keys`` of them.

        Pages are fetched lazily; the listing stops at ``max_keys`` and sets
        ``truncated`` when the bucket holds more keys under the prefix.
        """
        keys: List[str] = []
        truncated = False
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            pages = paginator.paginate(
                Bucket=self.bucket,
                Prefix=prefix,
                PaginationConfig={"PageSize": self.page_size},
            )
            for page in pages:
                for item in page.get("Contents", []):
                    if len(keys) >= self.max_keys:
                        truncated = True
                        break
                    keys.append(item["Key"])
                if truncated:
                    break
                if len(keys) >= self.max_keys and page.get("IsTruncated"):
                    truncated = True
                    break
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"S3 listing failed for {prefix}: {exc}")
            raise StorageError("Failed to list objects", {"prefix": prefix, **_client_error_details(exc)}) from exc
        return KeyListing(keys=keys, truncated=truncated)

    def delete_many(self, keys: Sequence[str]) -> DeleteResult:
        result = DeleteResult()
        for batch in chunked(keys, self.batch_size):
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (BotoCoreError, ClientError) as exc:
                logger.error(f"S3 batch delete failed ({len(batch)} keys): {exc}")
                for key in batch:
                    result.failed[key] = str(exc)
                continue
            errors = {error["Key"]: f"{error.get('Code', '')}: {error.get('Message', '')}" for error in response.get("Errors", [])}
            result.failed.update(errors)
            result.deleted.extend(key for key in batch if key not in errors)
        logger.info(f"Deleted {len(result.deleted)} objects from s3://{self.bucket} ({len(result.failed)} failed)")
        return result

    def ping(self) -> str:
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("S3 bucket not reachable", {"bucket": self.bucket, **_client_error_details(exc)}) from exc
        return f"Bucket {self.bucket} reachable"


class LocalObjectStore:
    """Filesystem-backed object store; keys map to paths under ``root``."""

    backend = "local"

    def __init__(self, root: Path, public_base_url: str = "", max_keys: int = 1000) -> None:
        self.root = ensure_directory(Path(root)).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.max_keys = max_keys

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError("Object key escapes storage root", {"key": key})
        return path

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(key)}"
        return self._path(key).as_uri()

    def upload(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        try:
            ensure_directory(path.parent)
            path.write_bytes(data)
        except OSError as exc:
            logger.error(f"Local upload failed for {key}: {exc}")
            raise StorageError("Failed to upload object", {"key": key, "error": str(exc)}) from exc
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {path}")
        return self.url_for(key)

    def list_keys(self, prefix: str) -> KeyListing:
        base = self._path(prefix)
        if not base.is_dir():
            return KeyListing(keys=[])
        found = sorted(path.relative_to(self.root).as_posix() for path in base.rglob("*") if path.is_file())
        return KeyListing(keys=found[: self.max_keys], truncated=len(found) > self.max_keys)

    def delete_many(self, keys: Sequence[str]) -> DeleteResult:
        result = DeleteResult()
        for key in keys:
            try:
                path = self._path(key)
                path.unlink()
            except (OSError, StorageError) as exc:
                result.failed[key] = str(exc)
                continue
            result.deleted.append(key)
            self._prune(path.parent)
        return result

    def _prune(self, directory: Path) -> None:
        while directory != self.root and directory.is_dir() and not any(directory.iterdir()):
            try:
                directory.rmdir()
            except OSError as exc:
                logger.debug(f"Leaving {directory} in place: {exc}")
                return
            directory = directory.parent

    def ping(self) -> str:
        if not self.root.is_dir():
            raise StorageError("Local storage root missing", {"root": str(self.root)})
        return f"Directory {self.root} available"


def build_object_store(settings: DictConfig) -> ObjectStore:
    storage = settings.storage
    if storage.object_backend == "local":
        return LocalObjectStore(
            Path(storage.local_root),
            public_base_url=storage.public_base_url,
            max_keys=storage.max_list_keys,
        )
    return S3ObjectStore(
        bucket=storage.bucket,
        region=storage.region,
        public_base_url=storage.public_base_url,
        page_size=storage.list_page_size,
        max_keys=storage.max_list_keys,
        batch_size=storage.delete_batch_size,
        connect_timeout=storage.connect_timeout,
        read_timeout=storage.read_timeout,
    )
