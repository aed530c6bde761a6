"""Object storage for attachment bytes.

Two backends share one small surface (``put`` / ``delete`` / ``url_for``):
a directory on local disk, and an S3 bucket (AWS or MinIO via
``S3_ENDPOINT_URL``). ``get_storage()`` picks one from ``STORAGE_BACKEND``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from feedloop.core import config

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class LocalStorage:
    name = "local"

    def __init__(self, root: str, base_url: str = ""):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip("/")

    def _target(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Refusing to write outside storage root: {path}")
        return target

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/files/{path}"

    def put(self, path: str, data: bytes, content_type: str) -> str:
        target = self._target(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        return self.url_for(path)

    def delete(self, paths: Iterable[str]) -> int:
        removed = 0
        for path in paths:
            try:
                self._target(path).unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except (OSError, StorageError) as e:
                logger.warning("Could not delete %s: %s", path, e)
        return removed


class S3Storage:
    name = "s3"

    def __init__(self, bucket: str, region: str = "us-east-1", endpoint_url: str | None = None):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    def url_for(self, path: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"

    def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        return self.url_for(path)

    def delete(self, paths: Iterable[str]) -> int:
        keys = [{"Key": p} for p in paths]
        removed = 0
        # delete_objects takes at most 1000 keys per call
        for i in range(0, len(keys), 1000):
            chunk = keys[i:i + 1000]
            try:
                resp = self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": chunk, "Quiet": True})
            except (ClientError, BotoCoreError) as e:
                logger.warning("S3 delete failed for %d object(s): %s", len(chunk), e)
                continue
            removed += len(chunk) - len(resp.get("Errors") or [])
        return removed


@lru_cache(maxsize=1)
def get_storage():
    if config.STORAGE_BACKEND == "s3":
        logger.info("Using S3 storage (bucket=%s, endpoint=%s)", config.S3_BUCKET, config.S3_ENDPOINT_URL or "aws")
        return S3Storage(config.S3_BUCKET, region=config.S3_REGION, endpoint_url=config.S3_ENDPOINT_URL)
    return LocalStorage(config.STORAGE_DIR, base_url=config.PUBLIC_BASE_URL)
