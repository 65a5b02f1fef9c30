from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from database import PROGRESS_COLLECTION, InMemoryUserRecordStore, MongoUserRecordStore
from progress_service import ProgressService
from schemas import Category

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)

LIMITS = {
    Category.MOOD_CHECK: 1,
    Category.AI_SPLIT: 2,
    Category.AI_PARSE: 5,
}


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def store():
    return InMemoryUserRecordStore()


@pytest.fixture
def service(store, clock):
    return ProgressService(store, clock=clock, limits=LIMITS)


@pytest.fixture
def client(service):
    from fastapi.testclient import TestClient

    from main import app, get_service

    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class UnreachableCollection:
    """Collection whose server cannot be selected. Has no create_index, so any index I/O fails loudly."""

    def find_one(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("localhost:27017: [Errno 111] Connection refused")

    def find(self, *args, **kwargs):
        raise ServerSelectionTimeoutError("localhost:27017: [Errno 111] Connection refused")


@pytest.fixture
def unreachable_store():
    return MongoUserRecordStore({PROGRESS_COLLECTION: UnreachableCollection()})
