###########EXTERNAL IMPORTS############

import pytest
from typing import Any, Dict, List, Optional, Tuple

#######################################

#############LOCAL IMPORTS#############

from db.postgres import PostgresClient
from db.timedb import TimeDBClient
from model.config import InfluxConfig, PostgresConfig

#######################################


class DummyCursor:
    def __init__(self, conn: "DummyConnection"):
        self.conn = conn
        self.rowcount = -1
        self.rows: List[Dict[str, Any]] = []
        self.closed = False

    def execute(self, query: str, params: Optional[Dict[str, Any]] = None):
        error = self.conn.failure_for(query, params)
        if error is not None:
            raise error
        self.conn.pending.append((query, params))
        self.rowcount = 1
        self.rows = self.conn.results.pop(0) if self.conn.results else []

    def fetchall(self):
        return self.rows

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class DummyConnection:
    """
    Records statements per transaction: `pending` until commit, `committed` afterwards.

    `failures` holds (fragment, error) pairs; the first pair whose fragment appears in a
    statement (or its parameters) is consumed and its error raised.
    """

    def __init__(self):
        self.pending: List[Tuple[str, Any]] = []
        self.committed: List[Tuple[str, Any]] = []
        self.failures: List[Tuple[str, Exception]] = []
        self.results: List[List[Dict[str, Any]]] = []
        self.rollbacks = 0
        self.rollback_error: Optional[Exception] = None

    def failure_for(self, query: str, params: Any) -> Optional[Exception]:
        text = f"{query} {params!r}"
        for i, (fragment, error) in enumerate(self.failures):
            if fragment in text:
                del self.failures[i]
                return error
        return None

    def cursor(self, cursor_factory=None):
        return DummyCursor(self)

    def commit(self):
        self.committed.extend(self.pending)
        self.pending = []

    def rollback(self):
        self.rollbacks += 1
        self.pending = []
        if self.rollback_error is not None:
            raise self.rollback_error

    def __enter__(self):
        return self

    def __exit__(self, exc_type, *exc):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False

    @property
    def queries(self) -> List[str]:
        return [q for q, _ in self.committed]


class DummyPool:
    def __init__(self, conn: DummyConnection):
        self.conn = conn
        self.checked_out = 0

    def getconn(self):
        self.checked_out += 1
        return self.conn

    def putconn(self, conn):
        self.checked_out -= 1

    def closeall(self):
        pass


class DummyTimeDB(TimeDBClient):
    """In-memory stand-in recording the InfluxQL sent and replaying canned results."""

    def __init__(self, results: Optional[List[List[Dict[str, Any]]]] = None, error: Optional[Exception] = None):
        super().__init__(InfluxConfig())
        self.results = list(results or [])
        self.error = error
        self.queries: List[Tuple[str, Dict[str, Any]]] = []
        self.executed: List[Tuple[str, Dict[str, Any]]] = []
        self.written: List[List[Dict[str, Any]]] = []

    def query(self, query, params=None):
        self.queries.append((query, params))
        if self.error is not None:
            raise self.error
        return self.results.pop(0) if self.results else []

    def execute(self, statement, params=None):
        self.executed.append((statement, params))
        if self.error is not None:
            raise self.error

    def write_points(self, points):
        if self.error is not None:
            raise self.error
        self.written.append(points)


@pytest.fixture
def pg_conn() -> DummyConnection:
    return DummyConnection()


@pytest.fixture
def pg_client(pg_conn: DummyConnection) -> PostgresClient:
    client = PostgresClient(PostgresConfig())
    client.pool = DummyPool(pg_conn)
    return client


@pytest.fixture
def timescale_client(pg_conn: DummyConnection) -> PostgresClient:
    client = PostgresClient(PostgresConfig(timescale=True))
    client.pool = DummyPool(pg_conn)
    return client
