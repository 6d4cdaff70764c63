"""Shared fixtures: SQLite instances on disk and a recording fake database."""

from __future__ import annotations

import io
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from applyalter.config import DbConfig
from applyalter.db import InstanceHandle
from applyalter.dialects import Dialect
from applyalter.logging_utils import RunContext
from applyalter.models import CheckKind, InstanceConfig, ReportLevel

# ---------------------------------------------------------------------------
# Recording fake
# ---------------------------------------------------------------------------


class FakeDbError(Exception):
    pass


class FakeCursor:
    def __init__(self, conn: "FakeConnection") -> None:
        self.conn = conn
        self.rowcount = -1
        self._row: Optional[tuple] = None

    def execute(self, statement: str, params: Any = None) -> None:
        conn = self.conn
        conn.executed.append(statement)
        if statement.startswith("ROLLBACK TO SAVEPOINT"):
            conn.aborted = False
            return
        if conn.aborted:
            raise FakeDbError("current transaction is aborted")
        if any(token in statement for token in conn.dialect.fail_on):
            conn.aborted = conn.dialect.abort_on_error
            raise FakeDbError(f"failed: {statement}")
        self._row = conn.dialect.rows.get(statement)
        self.rowcount = conn.dialect.rowcounts.get(statement, 1)

    def fetchone(self) -> Optional[tuple]:
        return self._row

    def close(self) -> None:
        pass


class FakeConnection:
    """Records statements; optionally behaves like a transaction that stays aborted after an error."""

    def __init__(self, instance_id: str, dialect: "FakeDialect") -> None:
        self.instance_id = instance_id
        self.dialect = dialect
        self.executed: List[str] = []
        self.commits = 0
        self.committed: List[str] = []
        self.rollbacks = 0
        self.prepared = False
        self.aborted = False
        self.closed = False
        self._pending_from = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        pending = self.executed[self._pending_from:]
        if self.aborted or any(token in s for s in pending for token in self.dialect.fail_commit_after):
            raise FakeDbError("commit failed")
        self.commits += 1
        self.committed = list(self.executed)
        self._pending_from = len(self.executed)

    def rollback(self) -> None:
        if self.dialect.fail_rollback:
            raise FakeDbError("rollback failed")
        self.rollbacks += 1
        self.aborted = False
        self._pending_from = len(self.executed)

    def close(self) -> None:
        self.closed = True


class FakeDialect(Dialect):
    name = "fake"
    driver_errors = (FakeDbError,)
    table_param = ":table"
    check_queries = {
        CheckKind.TABLE: ("SELECT 1 FROM catalog WHERE kind = 'table' AND name = :name", None),
    }

    def __init__(
        self,
        fail_on: tuple = ("FAIL",),
        rows: Optional[Dict[str, tuple]] = None,
        rowcounts: Optional[Dict[str, int]] = None,
        fail_commit_after: tuple = (),
        abort_on_error: bool = False,
    ) -> None:
        self.fail_on = fail_on
        self.rows = rows if rows is not None else {}
        self.rowcounts = rowcounts if rowcounts is not None else {}
        # commit fails while a pending statement contains one of these tokens
        self.fail_commit_after = fail_commit_after
        self.abort_on_error = abort_on_error
        self.fail_rollback = False
        self.fail_prepare = False
        self.connections: Dict[str, FakeConnection] = {}

    def connect(self, instance: InstanceConfig) -> FakeConnection:
        conn = FakeConnection(instance.instance_id, self)
        self.connections[instance.instance_id] = conn
        return conn

    def on_connect(self, conn: FakeConnection, instance: InstanceConfig) -> None:
        if self.fail_prepare:
            raise FakeDbError(f"cannot prepare {instance.instance_id}")
        conn.prepared = True

    def set_schema(self, conn: FakeConnection, schema: str) -> None:
        conn.executed.append(f"SET SCHEMA {schema}")
        if conn.aborted:
            raise FakeDbError("current transaction is aborted")

    def create_staging_table_sql(self, table: str, query: str) -> str:
        return f"CREATE TEMP {table} AS {query}"


@pytest.fixture
def fake_dialect() -> FakeDialect:
    return FakeDialect()


@pytest.fixture
def dialect_factory() -> Callable[..., FakeDialect]:
    return FakeDialect


@pytest.fixture
def fake_handles(fake_dialect: FakeDialect) -> Callable[..., List[InstanceHandle]]:
    def make(*instances: tuple) -> List[InstanceHandle]:
        return [
            InstanceHandle(InstanceConfig(instance_id=iid, dsn=f"fake://{iid}", instance_type=itype, dialect="fake"),
                           dialect=fake_dialect)
            for iid, itype in instances
        ]

    return make


# ---------------------------------------------------------------------------
# SQLite instances
# ---------------------------------------------------------------------------


@pytest.fixture
def sqlite_db(tmp_path: Path) -> Callable[..., InstanceConfig]:
    """Create a SQLite database file seeded with ``statements``."""

    def make(instance_id: str = "main", *statements: str, instance_type: Optional[str] = None) -> InstanceConfig:
        path = tmp_path / f"{instance_id}.db"
        conn = sqlite3.connect(path)
        try:
            for statement in statements:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()
        return InstanceConfig(instance_id=instance_id, dsn=str(path), instance_type=instance_type, dialect="sqlite")

    return make


@pytest.fixture
def query() -> Callable[[InstanceConfig, str], List[tuple]]:
    def run(instance: InstanceConfig, sql: str) -> List[tuple]:
        conn = sqlite3.connect(instance.dsn)
        try:
            return [tuple(row) for row in conn.execute(sql).fetchall()]
        finally:
            conn.close()

    return run


@pytest.fixture
def ctx() -> RunContext:
    return RunContext(ReportLevel.DETAIL, stream=io.StringIO())


@pytest.fixture
def make_config() -> Callable[..., DbConfig]:
    def make(*instances: InstanceConfig, **kwargs: Any) -> DbConfig:
        return DbConfig(instances=list(instances), **kwargs)

    return make
