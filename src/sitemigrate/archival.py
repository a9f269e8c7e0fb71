"""
Archival of migration artifacts.

Sinks are tried in order until one stores every artifact plus the
metadata record. The usual chain is object storage first, then the local
backup directory, so an unreachable bucket, missing credentials, or an
unconfigured bucket all end the same way: a local copy.

Both sinks write the same ArchiveMetadata JSON next to the artifacts.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import boto3
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError

from sitemigrate.config import S3Config, Settings
from sitemigrate.exceptions import ArchivalError, ArchivalFailure
from sitemigrate.models import ArchiveMetadata, ArchiveResult, Environment, MigrationArtifact
from sitemigrate.naming import METADATA_FILE_NAME, archive_key_prefix
from sitemigrate.observability import ATTR_ARCHIVE_BACKEND, NullTracer, Tracer

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H-%M-%S"


@runtime_checkable
class ArchiveSink(Protocol):
    """A place artifacts can be archived to."""

    name: str

    async def try_store(
        self,
        artifacts: Sequence[MigrationArtifact],
        metadata: ArchiveMetadata,
    ) -> ArchiveResult:
        """
        Store every artifact and the metadata record.

        Raises:
            ArchivalFailure: If anything could not be stored.
        """
        ...


class S3ArchiveSink:
    """
    Uploads artifacts under <prefix>/<site>-<tenant>-<from>-to-<to>-<date>/.

    Args:
        config: Bucket, region, prefix and storage class.
        client: Pre-built boto3 S3 client. Created on first use otherwise.
    """

    name = "s3"

    def __init__(self, config: S3Config, client: Any | None = None) -> None:
        self._config = config
        self._client = client

    async def _get_client(self) -> Any:
        if self._client is None:
            self._client = await asyncio.to_thread(
                boto3.client, "s3", region_name=self._config.region
            )
        return self._client

    def key_prefix(self, metadata: ArchiveMetadata) -> str:
        return archive_key_prefix(
            self._config.prefix,
            metadata.site_name or f"site{metadata.tenant}",
            metadata.tenant,
            Environment(metadata.source),
            Environment(metadata.target),
            datetime.strptime(metadata.timestamp, TIMESTAMP_FORMAT),
        )

    async def try_store(
        self,
        artifacts: Sequence[MigrationArtifact],
        metadata: ArchiveMetadata,
    ) -> ArchiveResult:
        bucket = self._config.bucket
        if not bucket:
            raise ArchivalFailure(self.name, "no bucket configured")

        prefix = self.key_prefix(metadata)
        uploaded: list[str] = []
        try:
            client = await self._get_client()
            for artifact in artifacts:
                key = f"{prefix}{artifact.file_name}"
                logger.debug("Uploading %s to s3://%s/%s", artifact.path, bucket, key)
                await asyncio.to_thread(
                    client.upload_file,
                    str(artifact.path),
                    bucket,
                    key,
                    ExtraArgs={"StorageClass": self._config.storage_class},
                )
                uploaded.append(artifact.file_name)

            await asyncio.to_thread(
                client.put_object,
                Bucket=bucket,
                Key=f"{prefix}{METADATA_FILE_NAME}",
                Body=metadata.model_dump_json(indent=2).encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError, Boto3Error, OSError) as e:
            raise ArchivalFailure(self.name, str(e)) from e

        if len(uploaded) != len(artifacts):
            raise ArchivalFailure(
                self.name,
                f"only {len(uploaded)} of {len(artifacts)} files were transferred",
            )

        return ArchiveResult(
            location=f"s3://{bucket}/{prefix}",
            files=(*uploaded, METADATA_FILE_NAME),
            backend=self.name,
        )


class LocalArchiveSink:
    """
    Copies artifacts to <backup_path>/<run timestamp>/.

    Args:
        backup_path: Root of the local backup tree.
    """

    name = "local"

    def __init__(self, backup_path: Path) -> None:
        self._backup_path = Path(backup_path)

    def directory_for(self, metadata: ArchiveMetadata) -> Path:
        return self._backup_path / metadata.timestamp

    async def try_store(
        self,
        artifacts: Sequence[MigrationArtifact],
        metadata: ArchiveMetadata,
    ) -> ArchiveResult:
        directory = self.directory_for(metadata)
        stored: list[str] = []
        try:
            directory.mkdir(parents=True, exist_ok=True)
            for artifact in artifacts:
                await asyncio.to_thread(shutil.copy2, artifact.path, directory / artifact.file_name)
                stored.append(artifact.file_name)
            (directory / METADATA_FILE_NAME).write_text(
                metadata.model_dump_json(indent=2), encoding="utf-8"
            )
        except OSError as e:
            raise ArchivalFailure(self.name, str(e)) from e

        return ArchiveResult(
            location=str(directory),
            files=(*stored, METADATA_FILE_NAME),
            backend=self.name,
        )


class ArchivalService:
    """
    Archives artifacts through an ordered chain of sinks.

    The first sink that succeeds wins. Failed attempts are kept on the
    result so the run summary can show why the fallback was used.

    Args:
        sinks: Sinks in the order they are tried.
        tracer: Optional tracer.
    """

    def __init__(self, sinks: Sequence[ArchiveSink], tracer: Tracer | None = None) -> None:
        self._sinks = list(sinks)
        self._tracer = tracer or NullTracer()

    @property
    def sinks(self) -> list[ArchiveSink]:
        return list(self._sinks)

    async def archive(
        self,
        artifacts: Sequence[MigrationArtifact],
        metadata: ArchiveMetadata,
        verbose: bool = False,
    ) -> ArchiveResult:
        """
        Archive artifacts and metadata.

        Args:
            artifacts: Files to archive.
            metadata: Audit record written alongside them.
            verbose: Log each attempt at INFO instead of DEBUG.

        Returns:
            Result of the first sink that succeeded. Its location is never
            empty.

        Raises:
            ArchivalError: If every sink failed.
        """
        detail = logging.INFO if verbose else logging.DEBUG
        failures: list[ArchivalFailure] = []

        for sink in self._sinks:
            logger.log(detail, "Archiving %d files via %s", len(artifacts), sink.name)
            with self._tracer.span("sitemigrate.archive", {ATTR_ARCHIVE_BACKEND: sink.name}):
                try:
                    result = await sink.try_store(artifacts, metadata)
                except ArchivalFailure as failure:
                    logger.warning("%s; trying next archive backend", failure)
                    failures.append(failure)
                    continue

            logger.info("Archived %d files to %s", len(result.files), result.location)
            return ArchiveResult(
                location=result.location,
                files=result.files,
                backend=result.backend,
                failures=tuple(str(f) for f in failures),
            )

        raise ArchivalError(failures)


def build_archive_sinks(
    settings: Settings,
    *,
    skip_s3: bool = False,
    s3_client: Any | None = None,
) -> list[ArchiveSink]:
    """
    Build the default chain: object storage (unless skipped), then local.

    An unconfigured bucket still yields an S3 sink; it fails immediately
    and the local sink takes over, so both cases share one code path.
    """
    sinks: list[ArchiveSink] = []
    if not skip_s3:
        sinks.append(S3ArchiveSink(settings.s3, client=s3_client))
    sinks.append(LocalArchiveSink(settings.backup_path))
    return sinks


__all__ = [
    "ArchivalService",
    "ArchiveSink",
    "LocalArchiveSink",
    "S3ArchiveSink",
    "build_archive_sinks",
]
