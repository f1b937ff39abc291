import os
import pathlib

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.orm import sessionmaker

from worker.app.executor import CommandExecutor, CommandResult
from worker.app.jobs import BackupJob, DatabaseParams, JobStatus, JobType, Tenant
from worker.app.models import metadata, projects
from worker.app.repository import BackupRepository
from worker.app.storage import LocalDevice
from worker.app.tables import TableCatalog

DUMP_TEXT = b"-- MariaDB dump\nCREATE TABLE `_1_users` (`_id` int);\n"


class FakeCatalog(TableCatalog):
    def __init__(self, table_ids):
        self.table_ids = list(table_ids)
        self.calls = []

    def list_tables(self, namespace, limit, offset):
        self.calls.append((namespace, limit, offset))
        return self.table_ids[offset:offset + limit]


class FakeExecutor(CommandExecutor):
    """Pretends to be mysqldump, tar and mysql; ``exit_codes`` forces failures."""

    def __init__(self, exit_codes=None, dump=DUMP_TEXT):
        super().__init__()
        self.exit_codes = exit_codes or {}
        self.dump = dump
        self.commands = []
        self.timeouts = []

    def execute(self, command, stdin=None, timeout=None):
        self.commands.append(command)
        self.timeouts.append(timeout)
        exit_code = self.exit_codes.get(command.program, 0)
        if exit_code:
            return CommandResult(exit_code, "", f"{command.program}: simulated failure")
        if command.program == "mysqldump":
            pathlib.Path(command.stdout_path).write_bytes(self.dump)
        elif command.program == "tar" and "-czf" in command.args:
            pathlib.Path(command.args[2]).write_bytes(b"compressed:" + self.dump)
        elif command.program == "tar" and "-xzf" in command.args:
            directory = command.args[command.args.index("-C") + 1]
            (pathlib.Path(directory) / command.args[-1]).write_bytes(self.dump)
        elif command.program == "mysql":
            assert pathlib.Path(command.stdin_path).exists()
        return CommandResult(0)

    def programs(self):
        return [command.program for command in self.commands]


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'console.db'}")
    metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return BackupRepository(session_factory)


@pytest.fixture
def tenant():
    return Tenant(
        id="p1",
        internal_id=1,
        database=DatabaseParams(host="mariadb", user="root", password="secret", schema_name="appwrite"),
    )


@pytest.fixture
def project_row(session_factory, tenant):
    with session_factory() as session:
        session.execute(insert(projects).values(id=tenant.id, internal_id=tenant.internal_id))
        session.commit()
    return tenant


@pytest.fixture
def staging(tmp_path):
    return LocalDevice(str(tmp_path / "staging"))


@pytest.fixture
def device(tmp_path):
    return LocalDevice(str(tmp_path / "storage" / "app-p1"))


@pytest.fixture
def make_job(repository):
    def _make(job_id, job_type=JobType.BACKUP, status=JobStatus.PENDING, **fields):
        return repository.create(
            BackupJob(id=job_id, project_id="p1", type=job_type, status=status, **fields)
        )

    return _make
