from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidStateError


class JobType(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# processing -> processing covers a message redelivered after the worker died
TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class BackupJob(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    type: JobType
    status: JobStatus = JobStatus.PENDING
    path: Optional[str] = None
    checksum: Optional[str] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def transition(self, status: JobStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Backup {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status

    def set_archive(self, path: str, checksum: Optional[str] = None) -> None:
        if self.path and self.path != path:
            raise InvalidStateError(f"Backup {self.id} already has archive {self.path}")
        self.path = path
        self.checksum = checksum

    def fail(self, error: str) -> None:
        self.transition(JobStatus.FAILED)
        self.error = error[:500]


class DatabaseParams(BaseModel):
    host: str
    port: int = 3306
    user: str
    password: str
    schema_name: str


class Tenant(BaseModel):
    id: str
    internal_id: int
    database: DatabaseParams

    @property
    def namespace(self) -> str:
        return f"_{self.internal_id}"


class JobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    backup_id: str = Field(alias="backupId")


class JobMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(alias="tenantId")
    payload: JobPayload
