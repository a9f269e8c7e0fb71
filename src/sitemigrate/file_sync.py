"""
Best-effort sync of a tenant's uploaded assets between environment buckets.

Objects under sites/<tenant>/ are copied server-side from the source
environment's bucket to the target's when they are missing there or
differ in size or ETag. Nothing is deleted from the target.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from sitemigrate.config import FileSyncConfig
from sitemigrate.exceptions import FileSyncFailure
from sitemigrate.models import Environment, FileSyncResult

logger = logging.getLogger(__name__)

_ObjectIndex = dict[str, tuple[int, str]]


class S3FileSync:
    """
    Copies tenant assets between environment buckets.

    Args:
        config: Bucket and prefix templates.
        client: Pre-built boto3 S3 client. Created on first use otherwise.
    """

    def __init__(self, config: FileSyncConfig | None = None, client: Any | None = None) -> None:
        self._config = config or FileSyncConfig()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._config.region)
        return self._client

    def _list(self, bucket: str, prefix: str) -> _ObjectIndex:
        paginator = self._get_client().get_paginator("list_objects_v2")
        index: _ObjectIndex = {}
        for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                index[obj["Key"]] = (obj["Size"], obj.get("ETag", ""))
        return index

    def _copy(self, source_bucket: str, target_bucket: str, key: str) -> None:
        self._get_client().copy({"Bucket": source_bucket, "Key": key}, target_bucket, key)

    async def check_access(self, environment: Environment) -> None:
        """
        Verify the environment's asset bucket is reachable.

        Raises:
            FileSyncFailure: If the bucket cannot be reached.
        """
        bucket = self._config.bucket_for(environment)
        try:
            await asyncio.to_thread(lambda: self._get_client().head_bucket(Bucket=bucket))
        except (BotoCoreError, ClientError, Boto3Error) as e:
            raise FileSyncFailure(f"Cannot access asset bucket {bucket}: {e}") from e

    async def sync(
        self,
        tenant_id: int,
        source: Environment,
        target: Environment,
    ) -> FileSyncResult:
        """
        Copy missing or changed assets.

        Returns:
            FileSyncResult with the number of objects copied.

        Raises:
            FileSyncFailure: On any object-storage error.
        """
        source_bucket = self._config.bucket_for(source)
        target_bucket = self._config.bucket_for(target)
        prefix = self._config.prefix_for(tenant_id)

        logger.info(
            "Syncing s3://%s/%s to s3://%s/%s",
            source_bucket,
            prefix,
            target_bucket,
            prefix,
        )
        copied = 0
        try:
            source_objects = await asyncio.to_thread(self._list, source_bucket, prefix)
            target_objects = await asyncio.to_thread(self._list, target_bucket, prefix)

            pending = [
                key
                for key, signature in sorted(source_objects.items())
                if target_objects.get(key) != signature
            ]
            for key in pending:
                logger.debug("Copying %s", key)
                await asyncio.to_thread(self._copy, source_bucket, target_bucket, key)
                copied += 1
        except (BotoCoreError, ClientError, Boto3Error) as e:
            raise FileSyncFailure(
                f"File sync failed after {copied} objects: {e}",
                tenant_id=tenant_id,
            ) from e

        message = (
            f"Copied {copied} of {len(source_objects)} objects"
            if copied
            else f"All {len(source_objects)} objects already in sync"
        )
        logger.info(message)
        return FileSyncResult(success=True, files_transferred=copied, message=message)


__all__ = ["S3FileSync"]
