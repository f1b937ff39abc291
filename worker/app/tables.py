"""Tenant table enumeration.

A tenant's logical tables are stored as ``{namespace}_{table}`` with a
``{namespace}_{table}_perms`` companion, and the catalog of tables lives in
``{namespace}__metadata``. A full dump covers every pair plus the catalog
itself, so N logical tables give ``2N + 2`` physical names.
"""

from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy import column, select, table
from sqlalchemy.engine import Engine

DEFAULT_PAGE_SIZE = 1000


class TableCatalog(ABC):
    @abstractmethod
    def list_tables(self, namespace: str, limit: int, offset: int) -> list[str]:
        """Return logical table ids in a stable order."""


class SqlTableCatalog(TableCatalog):
    def __init__(self, engine: Engine, schema: Optional[str] = None):
        self.engine = engine
        self.schema = schema

    def list_tables(self, namespace: str, limit: int, offset: int) -> list[str]:
        catalog = table(
            f"{namespace}__metadata",
            column("_id"),
            column("_uid"),
            schema=self.schema,
        )
        query = (
            select(catalog.c["_uid"])
            .order_by(catalog.c["_id"])
            .limit(limit)
            .offset(offset)
        )
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(query)]


def enumerate_tables(
    catalog: TableCatalog, namespace: str, page_size: int = DEFAULT_PAGE_SIZE
) -> list[str]:
    if page_size < 1:
        raise ValueError("page_size must be positive")
    tables: list[str] = []
    offset = 0
    while True:
        page = catalog.list_tables(namespace, limit=page_size, offset=offset)
        for table_id in page:
            tables.append(f"{namespace}_{table_id}")
            tables.append(f"{namespace}_{table_id}_perms")
        if len(page) < page_size:
            break
        offset += page_size
    tables.append(f"{namespace}__metadata")
    tables.append(f"{namespace}__metadata_perms")
    return tables
