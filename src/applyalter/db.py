"""Database utilities for the alter tool."""
from __future__ import annotations

import contextlib
import enum
from typing import Any, Iterator, Mapping, Optional, Sequence, Tuple, Union

from .dialects import Dialect, get_dialect
from .models import InstanceConfig

Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]


def execute_update(conn: Any, statement: str, params: Params = None) -> int:
    """Execute a statement and return the number of affected rows."""
    with contextlib.closing(conn.cursor()) as cur:
        if params is None:
            cur.execute(statement)
        else:
            cur.execute(statement, params)
        return max(cur.rowcount, 0)


def fetch_first(conn: Any, query: str, params: Params = None) -> Optional[Tuple[Any, ...]]:
    with contextlib.closing(conn.cursor()) as cur:
        if params is None:
            cur.execute(query)
        else:
            cur.execute(query, params)
        row = cur.fetchone()
        return None if row is None else tuple(row)


@contextlib.contextmanager
def savepoint(conn: Any, name: str = "applyalter_stmt") -> Iterator[None]:
    """Run the body inside a savepoint, rolling back to it on error."""
    execute_update(conn, f"SAVEPOINT {name}")
    try:
        yield
    except BaseException:
        execute_update(conn, f"ROLLBACK TO SAVEPOINT {name}")
        execute_update(conn, f"RELEASE SAVEPOINT {name}")
        raise
    execute_update(conn, f"RELEASE SAVEPOINT {name}")


class HandleState(str, enum.Enum):
    UNOPENED = "unopened"
    CLEAN = "clean"
    DIRTY = "dirty"


class InstanceHandle:
    """One database instance and its single connection for the run.

    The connection is opened on first use; once work is pending the handle is
    dirty until the next :meth:`commit`.
    """

    def __init__(self, config: InstanceConfig, dialect: Optional[Dialect] = None) -> None:
        self.config = config
        self.dialect = dialect or get_dialect(config.dialect)
        self._conn: Any = None
        self._dirty = False
        self._temp_serial = 0

    @property
    def instance_id(self) -> str:
        return self.config.instance_id

    @property
    def instance_type(self) -> Optional[str]:
        return self.config.instance_type

    @property
    def state(self) -> HandleState:
        if self._conn is None:
            return HandleState.UNOPENED
        return HandleState.DIRTY if self._dirty else HandleState.CLEAN

    @property
    def is_dirty(self) -> bool:
        return self.state is HandleState.DIRTY

    def connection(self) -> Any:
        if self._conn is None:
            conn = self.dialect.connect(self.config)
            try:
                self.dialect.on_connect(conn, self.config)
            except BaseException:
                conn.close()
                raise
            self._conn = conn
            self._dirty = False
        return self._conn

    def set_schema(self, schema: str) -> None:
        self.dialect.set_schema(self.connection(), schema)

    def mark_dirty(self) -> None:
        self.connection()
        self._dirty = True

    def commit(self) -> None:
        self.connection().commit()
        self._dirty = False

    def rollback(self) -> None:
        """Discard pending work; a connection that was never opened is left alone."""
        if self._conn is None:
            return
        self._conn.rollback()
        self._dirty = False

    def temporary_table_name(self, base: str) -> str:
        self._temp_serial += 1
        return self.dialect.temporary_table_name(base, self._temp_serial)

    def create_staging_table(self, base: str, source_query: str, index_columns: str) -> Tuple[str, str, str]:
        """Create an empty session table shaped like ``source_query``, indexed on ``index_columns``.

        Returns the table name and the two statements used, for reporting.
        """
        table = self.temporary_table_name(base)
        create_sql = self.dialect.create_staging_table_sql(table, source_query)
        index_sql = self.dialect.create_index_sql(table, index_columns)
        conn = self.connection()
        execute_update(conn, create_sql)
        execute_update(conn, index_sql)
        return table, create_sql, index_sql

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
            self._dirty = False
