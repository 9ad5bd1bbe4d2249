"""Remote object stores receiving backups."""

from __future__ import annotations

import logging
import os
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
)

from tidywatch.config.models import BackupSettings

from .errors import BackupError, RemoteUnavailableError

LOGGER = logging.getLogger(__name__)

PERMANENT_S3_CODES = frozenset(
    {
        "AccessDenied",
        "AllAccessDisabled",
        "InvalidAccessKeyId",
        "InvalidBucketName",
        "NoSuchBucket",
        "SignatureDoesNotMatch",
        "403",
        "404",
    }
)


class RemoteStore(ABC):
    """Remote location holding backup copies.

    Implementations must make an object visible only once it is complete.
    """

    @abstractmethod
    def upload(self, local_path: Path, key: str) -> None:
        """Upload ``local_path`` under ``key``.

        Raises:
            RemoteUnavailableError: On transient failures.
            BackupError: On permanent failures.
        """

    @abstractmethod
    def download(self, key: str, destination: Path) -> None:
        """Write the object stored under ``key`` to ``destination``.

        Raises:
            RemoteUnavailableError: On transient failures.
            BackupError: If the object is missing or access is refused.
        """

    @abstractmethod
    def describe(self) -> str:
        """Return a short human readable location."""


class S3RemoteStore(RemoteStore):
    """Keep backups in an S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        client: Any = None,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise BackupError("An S3 bucket must be configured for backups.")
        self._bucket = bucket
        self._client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)

    def describe(self) -> str:
        return f"s3://{self._bucket}"

    def upload(self, local_path: Path, key: str) -> None:
        try:
            self._client.upload_file(str(local_path), self._bucket, key)
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise BackupError(f"No usable AWS credentials: {exc}") from exc
        except ClientError as exc:
            raise _classify_client_error(exc, exc, "upload") from exc
        except S3UploadFailedError as exc:
            cause = exc.__cause__ or exc.__context__
            raise _classify_client_error(exc, cause, "upload") from exc
        except BotoCoreError as exc:
            raise RemoteUnavailableError(f"S3 unreachable: {exc}") from exc
        LOGGER.debug("Uploaded %s to s3://%s/%s", local_path, self._bucket, key)

    def download(self, key: str, destination: Path) -> None:
        try:
            self._client.download_file(self._bucket, key, str(destination))
        except (NoCredentialsError, PartialCredentialsError) as exc:
            raise BackupError(f"No usable AWS credentials: {exc}") from exc
        except ClientError as exc:
            raise _classify_client_error(exc, exc, "download") from exc
        except BotoCoreError as exc:
            raise RemoteUnavailableError(f"S3 unreachable: {exc}") from exc
        LOGGER.debug("Downloaded s3://%s/%s to %s", self._bucket, key, destination)


def _classify_client_error(exc: Exception, cause: object, action: str) -> BackupError:
    code = ""
    if isinstance(cause, ClientError):
        code = str(cause.response.get("Error", {}).get("Code", ""))
    message = str(exc)
    if code in PERMANENT_S3_CODES or any(f"({name})" in message for name in PERMANENT_S3_CODES):
        return BackupError(f"S3 rejected the {action}: {message}")
    return RemoteUnavailableError(f"S3 {action} failed: {message}")


class DirectoryRemoteStore(RemoteStore):
    """Copy backups into a folder, typically a mounted network share."""

    def __init__(self, directory: Path) -> None:
        self._directory = directory.expanduser()

    def describe(self) -> str:
        return str(self._directory)

    def upload(self, local_path: Path, key: str) -> None:
        target = self._directory / key
        staging = target.with_name(f".{target.name}.uploading")
        if not self._directory.is_dir():
            raise RemoteUnavailableError(f"Backup folder {self._directory} is not available.")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(local_path, staging)
            os.replace(staging, target)
        except PermissionError as exc:
            raise BackupError(f"Backup folder is not writable: {exc}") from exc
        except OSError as exc:
            raise RemoteUnavailableError(f"Cannot write backup {target}: {exc}") from exc
        finally:
            staging.unlink(missing_ok=True)

    def download(self, key: str, destination: Path) -> None:
        source = self._directory / key
        if not self._directory.is_dir():
            raise RemoteUnavailableError(f"Backup folder {self._directory} is not available.")
        if not source.is_file():
            raise BackupError(f"No backup named {key} in {self._directory}.")
        try:
            shutil.copyfile(source, destination)
        except PermissionError as exc:
            raise BackupError(f"Backup {source} is not readable: {exc}") from exc
        except OSError as exc:
            raise RemoteUnavailableError(f"Cannot read backup {source}: {exc}") from exc


def build_remote_store(settings: BackupSettings) -> RemoteStore:
    """Create the remote store selected by configuration.

    Raises:
        BackupError: If the selected backend is not configured.
    """
    if settings.backend == "directory":
        if not settings.directory:
            raise BackupError("backup.directory must be set for the directory backend.")
        return DirectoryRemoteStore(Path(settings.directory))
    if not settings.bucket:
        raise BackupError("backup.bucket must be set for the s3 backend.")
    return S3RemoteStore(settings.bucket, region=settings.region, endpoint_url=settings.endpoint_url)


__all__ = [
    "DirectoryRemoteStore",
    "PERMANENT_S3_CODES",
    "RemoteStore",
    "S3RemoteStore",
    "build_remote_store",
]
