import os
import posixpath

from .config import settings
from .errors import InvalidStateError
from .executor import Command
from .jobs import DatabaseParams

ARCHIVE_SUFFIX = ".tar.gz"
DEFAULTS_FILENAME = "client.cnf"


def archive_key(job_id: str) -> str:
    return f"{job_id}{ARCHIVE_SUFFIX}"


def dump_filename(job_id: str) -> str:
    return f"{job_id}.sql"


def archive_member(key: str) -> str:
    """Name of the SQL file packed inside the archive stored under ``key``."""
    name = posixpath.basename(key)
    if not name.endswith(ARCHIVE_SUFFIX) or name == ARCHIVE_SUFFIX:
        raise InvalidStateError(f"Not a backup archive: {key}")
    return dump_filename(name[: -len(ARCHIVE_SUFFIX)])


def _option_value(name: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise InvalidStateError(f"Database {name} must not contain line breaks")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_defaults_file(directory: str, database: DatabaseParams) -> str:
    """Write a ``[client]`` option file so credentials stay off the command line."""
    lines = [
        "[client]",
        f"host={_option_value('host', database.host)}",
        f"port={database.port}",
        f"user={_option_value('user', database.user)}",
        f"password={_option_value('password', database.password)}",
    ]
    path = os.path.join(directory, DEFAULTS_FILENAME)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write("\n".join(lines) + "\n")
    return path


class Toolchain:
    def __init__(self, dump: str = "mysqldump", apply: str = "mysql", tar: str = "tar"):
        self.dump_binary = dump
        self.apply_binary = apply
        self.tar_binary = tar

    @classmethod
    def from_settings(cls) -> "Toolchain":
        return cls(dump=settings.dump_binary, apply=settings.apply_binary, tar=settings.tar_binary)

    def dump(self, defaults_file: str, database: DatabaseParams, tables: list[str], output: str) -> Command:
        return Command(
            [
                self.dump_binary,
                f"--defaults-extra-file={defaults_file}",
                "-alv",
                "--skip-dump-date",
                database.schema_name,
                *tables,
            ],
            stdout_path=output,
        )

    def compress(self, archive: str, directory: str, member: str) -> Command:
        return Command([self.tar_binary, "-czf", archive, "-C", directory, member])

    def decompress(self, archive: str, directory: str, member: str) -> Command:
        return Command([self.tar_binary, "-xzf", archive, "-C", directory, member])

    def apply(self, defaults_file: str, database: DatabaseParams, source: str) -> Command:
        return Command(
            [
                self.apply_binary,
                f"--defaults-extra-file={defaults_file}",
                database.schema_name,
            ],
            stdin_path=source,
        )
