"""
Base database model and session management
"""
import os
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from dental_vitals.config import get_settings
from dental_vitals.utils.logger import log

settings = get_settings()


def _resolve_database_url(url: str) -> str:
    # Relative SQLite paths become absolute so a cwd change can't split the database
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        rel_path = url[len("sqlite:///"):]
        if rel_path and rel_path != ":memory:":
            return "sqlite:///" + os.path.abspath(rel_path)
    return url


def build_engine(url: str):
    """Create an engine with pool settings suited to the backend."""
    url = _resolve_database_url(url)
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise every session sees an empty database
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            poolclass=NullPool,
            pool_pre_ping=True
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _migrate_missing_columns(bind):
    """Add columns defined in models but missing from existing tables.

    create_all() only creates missing tables, so a new Column on an existing
    table is added here with a minimal ALTER TABLE.
    """
    inspector = inspect(bind)
    with bind.connect() as conn:
        for table_name, table in Base.metadata.tables.items():
            if not inspector.has_table(table_name):
                continue
            existing = {c["name"] for c in inspector.get_columns(table_name)}
            for col in table.columns:
                if col.name not in existing:
                    col_type = col.type.compile(dialect=bind.dialect)
                    sql = f'ALTER TABLE {table_name} ADD COLUMN {col.name} {col_type}'
                    log.info(f"Auto-migrating: {sql}")
                    conn.execute(text(sql))
        conn.commit()


def init_db(bind=None):
    """Initialize database tables and auto-migrate new columns."""
    # Register every model on Base.metadata before create_all
    import dental_vitals.models  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    _migrate_missing_columns(bind)
