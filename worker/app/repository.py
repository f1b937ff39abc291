from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select, update

from .config import settings
from .db import SessionLocal
from .errors import InvalidStateError, NotFoundError
from .jobs import BackupJob, DatabaseParams, JobStatus, Tenant
from .models import backups, projects

TERMINAL = [status.value for status in JobStatus if status.terminal]


class BackupRepository:
    """Job records keyed by id. Records are created by ``create`` only."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get(self, job_id: str) -> Optional[BackupJob]:
        with self.session_factory() as session:
            row = session.execute(select(backups).where(backups.c.id == job_id)).first()
        if row is None:
            return None
        return BackupJob.model_validate(dict(row._mapping))

    def create(self, job: BackupJob) -> BackupJob:
        now = datetime.utcnow()
        job.created_at = job.created_at or now
        job.updated_at = now
        with self.session_factory() as session:
            session.execute(
                insert(backups).values(
                    id=job.id,
                    project_id=job.project_id,
                    type=job.type.value,
                    status=job.status.value,
                    path=job.path,
                    checksum=job.checksum,
                    error=job.error,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                )
            )
            session.commit()
        return job

    def update(self, job: BackupJob) -> BackupJob:
        job.updated_at = datetime.utcnow()
        with self.session_factory() as session:
            result = session.execute(
                update(backups)
                .where(backups.c.id == job.id)
                .where(backups.c.status.notin_(TERMINAL))
                .values(
                    status=job.status.value,
                    path=job.path,
                    checksum=job.checksum,
                    error=job.error,
                    updated_at=job.updated_at,
                )
            )
            session.commit()
        if result.rowcount == 0:
            current = self.get(job.id)
            if current is None:
                raise NotFoundError(f"Backup not found: {job.id}")
            raise InvalidStateError(f"Backup {job.id} is already {current.status.value}")
        return job

    def list_stale(self, before: datetime) -> list[BackupJob]:
        with self.session_factory() as session:
            rows = session.execute(
                select(backups)
                .where(backups.c.status == JobStatus.PROCESSING.value)
                .where(backups.c.updated_at < before)
                .order_by(backups.c.updated_at)
            ).all()
        return [BackupJob.model_validate(dict(row._mapping)) for row in rows]


class TenantRepository:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get(self, tenant_id: str) -> Optional[Tenant]:
        with self.session_factory() as session:
            row = session.execute(select(projects).where(projects.c.id == tenant_id)).first()
        if row is None:
            return None
        return Tenant(
            id=row.id,
            internal_id=row.internal_id,
            database=DatabaseParams(
                host=settings.db_host,
                port=settings.db_port,
                user=settings.db_user,
                password=settings.db_pass,
                schema_name=row.database or settings.db_schema,
            ),
        )
