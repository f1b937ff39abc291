"""Backup and restore pipelines.

Both pipelines share one skeleton (``Pipeline.run``): load the job record,
skip records that already reached a terminal status, run the steps, and turn
any failure into a persisted ``failed`` status. Nothing raised inside a
pipeline escapes ``run``; the worker has to stay alive for the next message.
"""

import os
from abc import ABC, abstractmethod
from typing import Optional

from celery.utils.log import get_task_logger

from .config import settings
from .errors import BackupError, InvalidStateError, ProcessError, StorageError
from .executor import Command, CommandExecutor
from .jobs import BackupJob, JobStatus, JobType, Tenant
from .repository import BackupRepository
from .storage import Device, LocalDevice, checksum, checksum_bytes, staging_area
from .tables import DEFAULT_PAGE_SIZE, TableCatalog, enumerate_tables
from .tools import Toolchain, archive_key, archive_member, dump_filename, write_defaults_file

logger = get_task_logger(__name__)


class Pipeline(ABC):
    job_type: JobType

    def __init__(
        self,
        repository: BackupRepository,
        executor: CommandExecutor,
        device: Device,
        staging: LocalDevice,
        toolchain: Optional[Toolchain] = None,
        timeout: Optional[float] = None,
    ):
        self.repository = repository
        self.executor = executor
        self.device = device
        self.staging = staging
        self.toolchain = toolchain or Toolchain.from_settings()
        self.timeout = timeout if timeout is not None else settings.command_timeout

    @abstractmethod
    def execute(self, tenant: Tenant, job: BackupJob) -> None:
        """Run the pipeline steps; leaves ``job`` completed or raises."""

    def run(self, tenant: Tenant, job_id: str) -> Optional[BackupJob]:
        job = self.repository.get(job_id)
        if job is None:
            logger.error("Backup not found: %s", job_id)
            return None
        if job.status.terminal:
            logger.warning("Backup %s is already %s, skipping", job.id, job.status.value)
            return job
        try:
            if job.type is not self.job_type:
                raise InvalidStateError(f"Backup {job.id} is a {job.type.value} job, not {self.job_type.value}")
            self.execute(tenant, job)
            logger.info("%s %s completed", self.job_type.value.capitalize(), job.id)
        except BackupError as exc:
            self.on_failure(job, exc)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s %s failed unexpectedly", self.job_type.value.capitalize(), job.id)
            self.on_failure(job, exc)
        return job

    def on_failure(self, job: BackupJob, error: Exception) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        if isinstance(error, ProcessError) and error.stderr:
            logger.error("%s\n%s", message, error.stderr.strip())
        else:
            logger.error(message)
        if job.status.terminal:
            return
        try:
            job.fail(message)
            self.repository.update(job)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to mark backup %s as failed", job.id)

    def start(self, job: BackupJob) -> None:
        job.transition(JobStatus.PROCESSING)
        self.repository.update(job)

    def finish(self, job: BackupJob) -> None:
        # job stays processing in memory until the completed row is written
        completed = job.model_copy()
        completed.transition(JobStatus.COMPLETED)
        completed.error = None
        self.repository.update(completed)
        job.status = completed.status
        job.error = None
        job.updated_at = completed.updated_at

    def run_command(self, command: Command, failure: str) -> None:
        result = self.executor.execute(command, timeout=self.timeout)
        if not result.ok:
            raise ProcessError(failure, exit_code=result.exit_code, stderr=result.stderr)


class BackupPipeline(Pipeline):
    job_type = JobType.BACKUP

    def __init__(
        self,
        repository,
        executor,
        device,
        staging,
        catalog: TableCatalog,
        page_size: int = DEFAULT_PAGE_SIZE,
        **kwargs,
    ):
        super().__init__(repository, executor, device, staging, **kwargs)
        self.catalog = catalog
        self.page_size = page_size

    def execute(self, tenant, job):
        self.start(job)
        tables = enumerate_tables(self.catalog, tenant.namespace, page_size=self.page_size)
        logger.info("Backing up %d tables for project %s", len(tables), tenant.id)

        key = archive_key(job.id)
        with staging_area(self.staging, job.id) as directory:
            sql_name = dump_filename(job.id)
            sql_path = os.path.join(directory, sql_name)
            archive_path = os.path.join(directory, key)
            defaults_file = write_defaults_file(directory, tenant.database)

            self.run_command(
                self.toolchain.dump(defaults_file, tenant.database, tables, sql_path),
                f"Failed to create backup: {job.id}",
            )
            self.run_command(
                self.toolchain.compress(archive_path, directory, sql_name),
                f"Failed to compress backup: {job.id}",
            )

            digest = checksum(archive_path)
            if not self.device.move(archive_path, self.device.get_path(key)):
                raise StorageError(f"Failed to move backup: {job.id}")

        job.set_archive(key, digest)
        self.finish(job)


class RestorePipeline(Pipeline):
    job_type = JobType.RESTORE

    def execute(self, tenant, job):
        if not job.path:
            raise InvalidStateError(f"Restore {job.id} has no archive path")
        member = archive_member(job.path)
        self.start(job)

        with staging_area(self.staging, job.id) as directory:
            local_archive = os.path.join(directory, os.path.basename(job.path))
            data = self.device.read(self.device.get_path(job.path))
            if job.checksum and checksum_bytes(data) != job.checksum:
                raise StorageError(f"Checksum mismatch for archive {job.path}")
            if not self.staging.write(local_archive, data):
                raise StorageError("Failed to copy backup to temporary directory")

            self.run_command(
                self.toolchain.decompress(local_archive, directory, member),
                f"Failed to extract backup: {job.id}",
            )
            defaults_file = write_defaults_file(directory, tenant.database)
            self.run_command(
                self.toolchain.apply(defaults_file, tenant.database, os.path.join(directory, member)),
                f"Failed to restore backup: {job.id}",
            )

        self.finish(job)
