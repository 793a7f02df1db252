import threading
from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

from main import create_app
from rental import RentalEngine
from schemas import Book, User
from stores import CatalogStore, LedgerStore, UserStore


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class SerializedCollection:
    """Runs every collection call under one lock, like single-document atomicity on a server."""

    def __init__(self, collection, lock, database):
        self._collection = collection
        self._lock = lock
        self.database = database

    def __getattr__(self, name):
        attr = getattr(self._collection, name)
        if not callable(attr):
            return attr

        def locked(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)

        return locked


class SerializedDatabase:
    def __init__(self, db):
        self._db = db
        self._lock = threading.RLock()

    def __getitem__(self, name):
        return SerializedCollection(self._db[name], self._lock, self)


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    yield client["bookstore_test"]
    client.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 0, 0))


@pytest.fixture
def catalog(db):
    return CatalogStore(db)


@pytest.fixture
def users(db):
    return UserStore(db)


@pytest.fixture
def ledger(db):
    return LedgerStore(db)


@pytest.fixture
def engine(catalog, users, ledger, clock):
    return RentalEngine(catalog, users, ledger, clock=clock)


@pytest.fixture
def add_book(catalog):
    def _add(name="The Great Gatsby", rent_per_day=2.5, category="Fiction", **extra):
        [book_id] = catalog.insert_books([Book(name=name, category=category, rent_per_day=rent_per_day, **extra)])
        return book_id

    return _add


@pytest.fixture
def add_user(users):
    counter = iter(range(1000))

    def _add(username=None, role="member"):
        n = next(counter)
        username = username or f"reader{n}"
        [user_id] = users.insert_users(
            [User(username=username, email=f"{username}@example.com", password="x", role=role)]
        )
        return user_id

    return _add


@pytest.fixture
def client(db):
    return TestClient(create_app(db=db))
