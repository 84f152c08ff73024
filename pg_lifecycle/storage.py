"""S3-compatible object store client (DigitalOcean Spaces)."""

import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import aioboto3
from botocore.exceptions import ConnectionClosedError, EndpointConnectionError
from pydantic import BaseModel
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ._utils import logger
from .config import ObjectStoreConfig
from .errors import InvalidArgumentError
from .models import BackupClass

_TRANSIENT_ERRORS = (EndpointConnectionError, ConnectionClosedError)

_store_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(_TRANSIENT_ERRORS),
    reraise=True,
)


class StoredObject(BaseModel):
    key: str
    size: int = 0
    last_modified: Optional[datetime] = None


class ObjectStore:
    """Put/get/list/delete for backup objects keyed ``<class>/<filename>``."""

    def __init__(self, config: ObjectStoreConfig, bucket: Optional[str] = None):
        if not config.configured:
            raise InvalidArgumentError("Object store credentials are not configured")
        self.config = config
        self.bucket = bucket or config.bucket
        self.session = aioboto3.Session(
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
        )

    @classmethod
    def from_config(cls, config: ObjectStoreConfig) -> Optional["ObjectStore"]:
        """Return a store when credentials are present, otherwise None."""
        return cls(config) if config.configured else None

    @staticmethod
    def key_for(backup_class: BackupClass, filename: str) -> str:
        return f"{backup_class.value}/{filename}"

    @staticmethod
    def parse_uri(uri: str) -> Tuple[str, str]:
        """Split ``s3://bucket/key`` into bucket and key."""
        if not uri.startswith("s3://"):
            raise InvalidArgumentError(f"Not an object-store URI: {uri}")
        bucket, _, key = uri[len("s3://"):].partition("/")
        if not bucket or not key:
            raise InvalidArgumentError(f"Object-store URI needs a bucket and a key: {uri}")
        return bucket, key

    def uri_for(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def with_bucket(self, bucket: str) -> "ObjectStore":
        if bucket == self.bucket:
            return self
        return ObjectStore(self.config, bucket=bucket)

    def _client(self):
        return self.session.client("s3", endpoint_url=self.config.endpoint, region_name=self.config.region)

    @_store_retry
    async def put(self, local_path: Path, key: str) -> str:
        async with self._client() as s3:
            await s3.upload_file(str(local_path), self.bucket, key)
        logger.info(f"Uploaded to {self.uri_for(key)}")
        return key

    @_store_retry
    async def get(self, key: str, local_path: Path) -> Path:
        """Download an object; the target only appears once complete."""
        local_path.parent.mkdir(parents=True, exist_ok=True)
        partial = local_path.with_name(local_path.name + ".part")
        try:
            async with self._client() as s3:
                await s3.download_file(self.bucket, key, str(partial))
            os.replace(partial, local_path)
        finally:
            if partial.exists():
                partial.unlink()
        logger.info(f"Downloaded {self.uri_for(key)} to {local_path}")
        return local_path

    @_store_retry
    async def list(self, prefix: str) -> List[StoredObject]:
        objects = []
        async with self._client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(StoredObject(
                        key=obj["Key"],
                        size=obj.get("Size", 0),
                        last_modified=obj.get("LastModified"),
                    ))
        return objects

    @_store_retry
    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info(f"Deleted {self.uri_for(key)}")
