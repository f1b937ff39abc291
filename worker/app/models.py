from sqlalchemy import Table, Column, Integer, String, MetaData, DateTime
from sqlalchemy.sql import func

metadata = MetaData()

backups = Table(
    "backups",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("project_id", String(64), nullable=False, index=True),
    Column("type", String(16), nullable=False),
    Column("status", String(16), nullable=False),
    Column("path", String(500)),
    Column("checksum", String(128)),
    Column("error", String(500)),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now(), onupdate=func.now()),
)

projects = Table(
    "projects",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("internal_id", Integer, nullable=False, unique=True),
    Column("database", String(128)),
)
