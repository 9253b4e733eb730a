"""Shared pytest fixtures.

Environment overrides are applied before any application module is imported,
since ``config`` reads them at import time.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SEARCH_INDEX_PATH"] = ":memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SEED_SAMPLE_DATA"] = "false"
os.environ.pop("LOG_FILE", None)

import pytest
from sqlalchemy.orm import sessionmaker

from core.database import build_engine, init_db
from models.department import DepartmentModel
from models.role import RoleModel, RoleName
from utils.index_worker import IndexWorker
from utils.search_index import UserSearchIndex
from utils.user_cache import UserCache
from utils.user_manager import UserManager


class FakeClock:
    """Manually advanced clock for cache expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    user_cache = UserCache(ttl_seconds=60, max_size=100, timer=clock).open()
    yield user_cache
    user_cache.close()


@pytest.fixture
def index():
    search_index = UserSearchIndex(":memory:").open()
    yield search_index
    search_index.close()


@pytest.fixture
def worker(index):
    index_worker = IndexWorker(index).start()
    yield index_worker
    index_worker.stop()


@pytest.fixture
def seeded_db(db):
    """Roles plus two departments: Engineering (id 1) and Research (id 2)."""
    for role_name in RoleName:
        db.add(RoleModel(name=role_name.value, description=role_name.description))
    db.add(DepartmentModel(name="Engineering", description="Software development"))
    db.add(DepartmentModel(name="Research", description="Research and development"))
    db.commit()
    return db


@pytest.fixture
def manager(seeded_db, cache, worker, index):
    return UserManager(seeded_db, cache=cache, worker=worker, index=index)
