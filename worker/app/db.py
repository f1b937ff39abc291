from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


@lru_cache
def get_tenant_engine() -> Engine:
    return create_engine(settings.tenant_database_url, pool_pre_ping=True)
