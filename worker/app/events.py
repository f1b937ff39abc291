"""Producer side: record a pending job and publish it to the backups queue."""

import uuid
from typing import Optional

from .errors import InvalidStateError, NotFoundError
from .jobs import BackupJob, JobStatus, JobType
from .repository import BackupRepository
from .tasks import process_backup_job


def _publish(job: BackupJob) -> None:
    process_backup_job.delay(
        {"tenantId": job.project_id, "payload": {"type": job.type.value, "backupId": job.id}}
    )


def enqueue_backup(tenant_id: str, repository: Optional[BackupRepository] = None) -> BackupJob:
    repository = repository or BackupRepository()
    job = repository.create(BackupJob(id=uuid.uuid4().hex, project_id=tenant_id, type=JobType.BACKUP))
    _publish(job)
    return job


def enqueue_restore(
    tenant_id: str, backup_id: str, repository: Optional[BackupRepository] = None
) -> BackupJob:
    repository = repository or BackupRepository()
    source = repository.get(backup_id)
    if source is None or source.type is not JobType.BACKUP:
        raise NotFoundError(f"Backup not found: {backup_id}")
    if source.project_id != tenant_id:
        raise InvalidStateError(f"Backup {backup_id} belongs to another project")
    if source.status is not JobStatus.COMPLETED or not source.path:
        raise InvalidStateError(f"Backup {backup_id} has no archive to restore")
    job = repository.create(
        BackupJob(
            id=uuid.uuid4().hex,
            project_id=tenant_id,
            type=JobType.RESTORE,
            path=source.path,
            checksum=source.checksum,
        )
    )
    _publish(job)
    return job
