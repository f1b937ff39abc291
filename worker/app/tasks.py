from datetime import datetime, timedelta
from typing import Optional

from celery.utils.log import get_task_logger
from pydantic import ValidationError

from .celery_app import celery_app
from .config import settings
from .db import SessionLocal, get_tenant_engine
from .errors import BackupError
from .executor import get_executor
from .jobs import BackupJob, JobMessage, JobType, Tenant
from .pipelines import BackupPipeline, Pipeline, RestorePipeline
from .repository import BackupRepository, TenantRepository
from .storage import get_backups_device, get_staging_device
from .tables import SqlTableCatalog

logger = get_task_logger(__name__)


def _summary(job: Optional[BackupJob]) -> Optional[dict]:
    if job is None:
        return None
    return {"id": job.id, "type": job.type.value, "status": job.status.value, "path": job.path}


def build_pipeline(job_type: JobType, tenant: Tenant) -> Pipeline:
    repository = BackupRepository(SessionLocal)
    executor = get_executor()
    device = get_backups_device(tenant.id)
    staging = get_staging_device()
    if job_type is JobType.BACKUP:
        catalog = SqlTableCatalog(get_tenant_engine(), schema=tenant.database.schema_name)
        return BackupPipeline(
            repository,
            executor,
            device,
            staging,
            catalog=catalog,
            page_size=settings.table_page_size,
        )
    return RestorePipeline(repository, executor, device, staging)


def dispatch(tenant_id: str, job_type: str, job_id: str) -> Optional[dict]:
    try:
        kind = JobType(job_type)
    except ValueError:
        logger.error("Unknown backup type: %s", job_type)
        return None
    tenant = TenantRepository(SessionLocal).get(tenant_id)
    if tenant is None:
        logger.error("Project not found: %s", tenant_id)
        return None
    job = build_pipeline(kind, tenant).run(tenant, job_id)
    return _summary(job)


@celery_app.task(name="worker.app.tasks.process_backup_job")
def process_backup_job(message: dict):
    try:
        decoded = JobMessage.model_validate(message)
    except ValidationError as exc:
        logger.error("Invalid backup job message: %s", exc)
        return None
    return dispatch(decoded.tenant_id, decoded.payload.type, decoded.payload.backup_id)


@celery_app.task(name="worker.app.tasks.reconcile_stuck_jobs")
def reconcile_stuck_jobs(max_age_minutes: Optional[int] = None):
    max_age = max_age_minutes if max_age_minutes is not None else settings.stuck_job_minutes
    repository = BackupRepository(SessionLocal)
    cutoff = datetime.utcnow() - timedelta(minutes=max_age)
    failed = []
    for job in repository.list_stale(cutoff):
        try:
            job.fail(f"No progress since {job.updated_at.isoformat()}; worker presumed lost")
            repository.update(job)
        except BackupError as exc:
            logger.warning("Could not reconcile backup %s: %s", job.id, exc)
            continue
        logger.warning("Marked stuck backup %s as failed", job.id)
        failed.append(job.id)
    return {"failed": failed}
