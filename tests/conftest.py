"""
Shared fixtures.

Settings are cached on first import, so the environment is pinned here
before any dental_vitals module loads: in-memory database, no LLM calls,
no scheduler.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENABLE_LLM_INSIGHTS"] = "false"
os.environ["ENABLE_SCHEDULER"] = "false"

import pytest
from sqlalchemy.orm import sessionmaker

from dental_vitals.models.base import build_engine, init_db


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite database per test"""
    engine = build_engine("sqlite://")
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
