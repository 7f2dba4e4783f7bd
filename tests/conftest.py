import pytest
from apscheduler.jobstores.base import JobLookupError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from markit.database.initialize import create_tables
from markit.database.store import TreeStore
from markit.schemas.attendance import DeviceInfo
from markit.schemas.geo import GeoLocation
from markit.services import roster_service, session_service

# 2024-05-01T08:00:00Z
NOW = 1714550400000
TODAY = "2024-05-01"

HOST = GeoLocation(latitude=51.5, longitude=-0.12)
NEARBY = GeoLocation(latitude=51.5, longitude=-0.1201)  # about 7m from HOST
FAR = GeoLocation(latitude=51.5045, longitude=-0.12)  # about 500m from HOST

ADMIN_ID = "admin-1"


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(bind=engine)
    yield TreeStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()


@pytest.fixture
def device():
    return DeviceInfo(os="Android", browser="Google Chrome", userAgent="pytest")


@pytest.fixture
def card_id(store):
    return roster_service.create_card(store, ADMIN_ID, "Physics 101", now=NOW)


@pytest.fixture
def user_key(store, card_id):
    return roster_service.create_user(store, card_id, "1001", "Ada Lovelace", now=NOW)


@pytest.fixture
def active_card(store, card_id, user_key):
    session, _ = session_service.start_session(
        store, card_id, ADMIN_ID, "admin@example.com", HOST, 100, now=NOW
    )
    return card_id, user_key, session


class FakeJob:
    def __init__(self, scheduler, func, job_id):
        self.scheduler = scheduler
        self.func = func
        self.id = job_id

    def remove(self):
        if self.id not in self.scheduler.jobs:
            raise JobLookupError(self.id)
        del self.scheduler.jobs[self.id]


class FakeScheduler:
    """Records jobs instead of running them; tests fire them by id."""

    def __init__(self):
        self.jobs = {}
        self.intervals = {}

    def add_job(self, func, trigger, seconds=None, id=None, replace_existing=False):
        job = FakeJob(self, func, id)
        self.jobs[id] = job
        self.intervals[id] = seconds
        return job

    def run(self, job_id):
        return self.jobs[job_id].func()


@pytest.fixture
def scheduler():
    return FakeScheduler()
