"""
Shared fixtures.

Unit tests never talk to a real server: ``ThreadedConnectionPool`` inside
``registration_api.db`` is replaced by ``FakeThreadedPool``, which hands out
in-memory connections backed by a ``FakeDatabase``. Like the real psycopg2
pool it raises ``PoolError`` when more than ``maxconn`` connections are
checked out at once.
"""

import threading
import time
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from psycopg2.pool import PoolError

from registration_api import db as db_module
from registration_api.config import DatabaseConfig, ServiceConfig
from registration_api.db import DatabasePool
from registration_api.main import create_app


class FakeDatabase:
    """In-memory stand-in for the users table and the server behind it."""

    def __init__(self):
        self.lock = threading.Lock()
        self.tables = set()
        self.rows = []
        self.statements = []
        self.next_id = 1
        self.delay = 0.0
        self.query_error = None
        self.connect_error = None
        self.in_use = 0
        self.max_in_use = 0
        self.connections_opened = 0


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self._result = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        fake = self.conn.db
        if fake.delay:
            time.sleep(fake.delay)
        if fake.query_error is not None:
            raise fake.query_error
        with fake.lock:
            fake.statements.append((" ".join(query.split()), list(params or [])))
        if query.lstrip().startswith("CREATE TABLE IF NOT EXISTS users"):
            self.conn.pending.append(("create", "users"))
            self._result = None
        elif query.lstrip().startswith("INSERT INTO users"):
            with fake.lock:
                new_id = fake.next_id
                fake.next_id += 1
            full_name, mobile_number = params
            self.conn.pending.append(
                ("insert", {"id": new_id, "full_name": full_name, "mobile_number": mobile_number,
                            "created_at": datetime.now()})
            )
            self._result = {"id": new_id}
        elif query.strip() == "SELECT 1":
            self._result = {"?column?": 1}
        else:
            raise AssertionError(f"Unexpected query: {query}")

    def fetchone(self):
        return self._result


class FakeConnection:
    def __init__(self, fake, pid):
        self.db = fake
        self.pid = pid
        self.closed = 0
        self.pending = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        with self.db.lock:
            for kind, value in self.pending:
                if kind == "create":
                    self.db.tables.add(value)
                else:
                    self.db.rows.append(value)
        self.pending = []
        self.commits += 1

    def rollback(self):
        self.pending = []
        self.rollbacks += 1

    def get_backend_pid(self):
        return self.pid

    def close(self):
        self.closed = 1


class FakeThreadedPool:
    def __init__(self, fake, minconn, maxconn, **kwargs):
        self.db = fake
        self.minconn = minconn
        self.maxconn = maxconn
        self.kwargs = kwargs
        self.closed = False
        self.idle = []
        self.used = []
        self.returned = []
        self._lock = threading.Lock()

    def getconn(self):
        with self._lock:
            if self.closed:
                raise PoolError("connection pool is closed")
            if self.db.connect_error is not None:
                raise self.db.connect_error
            if len(self.used) >= self.maxconn:
                raise PoolError("connection pool exhausted")
            if self.idle:
                conn = self.idle.pop()
            else:
                self.db.connections_opened += 1
                conn = FakeConnection(self.db, 1000 + self.db.connections_opened)
            self.used.append(conn)
            self.db.in_use = len(self.used)
            self.db.max_in_use = max(self.db.max_in_use, self.db.in_use)
            return conn

    def putconn(self, conn, close=False):
        with self._lock:
            if self.closed:
                raise PoolError("connection pool is closed")
            self.used.remove(conn)
            self.returned.append((conn, close))
            self.db.in_use = len(self.used)
            if close:
                conn.close()
            else:
                self.idle.append(conn)

    def closeall(self):
        with self._lock:
            for conn in self.idle + self.used:
                conn.close()
            self.closed = True


@pytest.fixture
def fake_db(monkeypatch):
    fake = FakeDatabase()
    pools = []

    def factory(minconn, maxconn, **kwargs):
        pool = FakeThreadedPool(fake, minconn, maxconn, **kwargs)
        pools.append(pool)
        return pool

    monkeypatch.setattr(db_module, "ThreadedConnectionPool", factory)
    fake.pools = pools
    return fake


@pytest.fixture
def db_config():
    return DatabaseConfig(host="db.internal", user="registration", password="secret", database="registrations")


@pytest.fixture
def service_config(db_config):
    return ServiceConfig(database=db_config)


@pytest.fixture
def pool(fake_db, db_config):
    db_pool = DatabasePool(db_config)
    yield db_pool
    db_pool.close()


@pytest.fixture
def app(service_config, pool):
    return create_app(service_config, pool)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
