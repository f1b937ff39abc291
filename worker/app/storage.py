import hashlib
import logging
import os
import re
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import settings
from .errors import InvalidStateError, StorageError

logger = logging.getLogger(__name__)

SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class Device(ABC):
    @abstractmethod
    def get_path(self, key: str) -> str:
        """Locator of ``key`` on this device."""

    @abstractmethod
    def move(self, source: str, destination: str) -> bool:
        """Move the local file ``source`` to ``destination`` on this device."""

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Return the bytes stored at ``path``; raises ``StorageError``."""

    @abstractmethod
    def write(self, path: str, data: bytes) -> bool:
        """Store ``data`` at ``path``."""


class LocalDevice(Device):
    def __init__(self, root: str):
        self.root = root

    def get_path(self, key: str) -> str:
        return os.path.join(self.root, key)

    def move(self, source, destination):
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            shutil.move(source, destination)
        except OSError as exc:
            logger.error("Failed to move %s to %s: %s", source, destination, exc)
            return False
        return True

    def read(self, path):
        try:
            with open(path, "rb") as handle:
                return handle.read()
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def write(self, path, data):
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            logger.error("Failed to write %s: %s", path, exc)
            return False
        return True


class S3Device(Device):
    def __init__(self, bucket: str, prefix: str = "", endpoint: Optional[str] = None, client=None):
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client or boto3.client("s3", endpoint_url=endpoint)

    def get_path(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    def move(self, source, destination):
        try:
            self.client.upload_file(source, self.bucket, destination)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 upload of %s failed: %s", destination, exc)
            return False
        try:
            os.remove(source)
        except OSError as exc:
            logger.warning("Uploaded %s but could not remove %s: %s", destination, source, exc)
        return True

    def read(self, path):
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to read s3://{self.bucket}/{path}: {exc}") from exc

    def write(self, path, data):
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 write of %s failed: %s", path, exc)
            return False
        return True


def get_backups_device(tenant_id: str) -> Device:
    scope = f"app-{tenant_id}"
    if settings.storage_backend == "s3":
        return S3Device(
            settings.s3_bucket,
            prefix=f"{settings.s3_prefix}/{scope}",
            endpoint=settings.s3_endpoint,
        )
    return LocalDevice(os.path.join(settings.backups_dir, scope))


def get_staging_device() -> LocalDevice:
    return LocalDevice(settings.staging_dir)


@contextmanager
def staging_area(device: LocalDevice, job_id: str) -> Iterator[str]:
    """Job-scoped scratch directory, removed on every exit path."""
    if not SEGMENT_PATTERN.match(job_id) or job_id in (".", ".."):
        raise InvalidStateError(f"Unsafe job id for staging: {job_id!r}")
    path = device.get_path(job_id)
    try:
        os.makedirs(path, mode=0o755, exist_ok=True)
    except OSError as exc:
        raise StorageError(f"Failed to create temporary directory {path}: {exc}") from exc
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.warning("Failed to remove staging directory %s: %s", path, exc)


def checksum(path: str) -> str:
    sha = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            sha.update(chunk)
    return sha.hexdigest()


def checksum_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
