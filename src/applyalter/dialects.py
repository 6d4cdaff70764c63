"""Database specific SQL and connection handling."""
from __future__ import annotations

import sqlite3
from typing import Any, Dict, Optional, Tuple, Type

import psycopg
from psycopg import sql

from .errors import ConfigurationError
from .models import CheckKind, InstanceConfig


def _strip(query: str) -> str:
    return query.strip().rstrip(";").strip()


class Dialect:
    """Capabilities every database instance must provide to the core."""

    name = "generic"
    driver_errors: Tuple[Type[BaseException], ...] = ()

    # kind -> (query, column used to narrow the lookup to one table)
    check_queries: Dict[CheckKind, Tuple[str, Optional[str]]] = {}
    table_param = ""

    def connect(self, instance: InstanceConfig) -> Any:
        raise NotImplementedError

    def on_connect(self, conn: Any, instance: InstanceConfig) -> None:
        """Prepare a fresh connection for the run; called once per connection."""
        return None

    def set_schema(self, conn: Any, schema: str) -> None:
        raise NotImplementedError

    def check_query(self, kind: CheckKind, with_table: bool) -> str:
        try:
            query, table_column = self.check_queries[kind]
        except KeyError:
            raise ConfigurationError(
                f"check type '{kind.value}' is not supported by {self.name}"
            ) from None
        if with_table:
            if table_column is None:
                raise ConfigurationError(
                    f"check type '{kind.value}' does not accept a table"
                )
            query = f"{query} AND upper({table_column}) = {self.table_param}"
        return query

    def temporary_table_name(self, base: str, serial: int) -> str:
        return f"{base}_{serial}"

    def create_staging_table_sql(self, table: str, query: str) -> str:
        raise NotImplementedError

    def create_index_sql(self, table: str, columns: str) -> str:
        return f"CREATE INDEX {table}_idx ON {table} ({columns})"

    def insert_from_query_sql(self, table: str, query: str) -> str:
        return f"INSERT INTO {table} SELECT * FROM ({_strip(query)}) AS applyalter_src"

    def copy_batch_sql(self, source: str, target: str, limit: int) -> str:
        return f"INSERT INTO {target} SELECT * FROM {source} LIMIT {int(limit)}"

    def drop_table_sql(self, table: str) -> str:
        return f"DROP TABLE {table}"


class PostgresDialect(Dialect):
    name = "postgresql"
    driver_errors = (psycopg.Error,)
    table_param = "%(table)s"
    check_queries = {
        CheckKind.TABLE: (
            "SELECT 1 FROM information_schema.tables WHERE table_type = 'BASE TABLE'"
            " AND upper(table_schema) = %(schema)s AND upper(table_name) = %(name)s",
            None,
        ),
        CheckKind.VIEW: (
            "SELECT 1 FROM information_schema.views"
            " WHERE upper(table_schema) = %(schema)s AND upper(table_name) = %(name)s",
            None,
        ),
        CheckKind.COLUMN: (
            "SELECT 1 FROM information_schema.columns"
            " WHERE upper(table_schema) = %(schema)s AND upper(column_name) = %(name)s",
            "table_name",
        ),
        CheckKind.INDEX: (
            "SELECT 1 FROM pg_indexes"
            " WHERE upper(schemaname) = %(schema)s AND upper(indexname) = %(name)s",
            "tablename",
        ),
        CheckKind.SEQUENCE: (
            "SELECT 1 FROM information_schema.sequences"
            " WHERE upper(sequence_schema) = %(schema)s AND upper(sequence_name) = %(name)s",
            None,
        ),
        CheckKind.PROCEDURE: (
            "SELECT 1 FROM information_schema.routines"
            " WHERE upper(routine_schema) = %(schema)s AND upper(routine_name) = %(name)s",
            None,
        ),
        CheckKind.TRIGGER: (
            "SELECT 1 FROM information_schema.triggers"
            " WHERE upper(trigger_schema) = %(schema)s AND upper(trigger_name) = %(name)s",
            "event_object_table",
        ),
        CheckKind.CONSTRAINT: (
            "SELECT 1 FROM information_schema.table_constraints"
            " WHERE upper(constraint_schema) = %(schema)s AND upper(constraint_name) = %(name)s",
            "table_name",
        ),
    }

    def __init__(self, app_name: str = "applyalter") -> None:
        self.app_name = app_name

    def connect(self, instance: InstanceConfig) -> psycopg.Connection:
        conn = psycopg.connect(instance.dsn)
        conn.autocommit = False
        return conn

    def on_connect(self, conn: psycopg.Connection, instance: InstanceConfig) -> None:
        with conn.cursor() as cur:
            cur.execute(
                sql.SQL("SET application_name = {}").format(sql.Literal(self.app_name))
            )
            if instance.timeout_sec is not None:
                cur.execute(
                    "SELECT set_config('statement_timeout', %s, false)",
                    (f"{int(max(instance.timeout_sec, 0) * 1000)}ms",),
                )
        conn.commit()

    def set_schema(self, conn: psycopg.Connection, schema: str) -> None:
        with conn.cursor() as cur:
            cur.execute(sql.SQL("SET search_path TO {}").format(sql.Identifier(schema)))

    def temporary_table_name(self, base: str, serial: int) -> str:
        return f"{base}_{serial}".lower()

    def create_staging_table_sql(self, table: str, query: str) -> str:
        return (
            f"CREATE TEMPORARY TABLE {table} AS "
            f"SELECT * FROM ({_strip(query)}) AS applyalter_src WITH NO DATA"
        )


class SqliteDialect(Dialect):
    """SQLite has a single schema per connection; schema switching is a no-op."""

    name = "sqlite"
    driver_errors = (sqlite3.Error,)
    table_param = ":table"
    check_queries = {
        CheckKind.TABLE: ("SELECT 1 FROM sqlite_master WHERE type = 'table' AND upper(name) = :name", None),
        CheckKind.VIEW: ("SELECT 1 FROM sqlite_master WHERE type = 'view' AND upper(name) = :name", None),
        CheckKind.INDEX: ("SELECT 1 FROM sqlite_master WHERE type = 'index' AND upper(name) = :name", "tbl_name"),
        CheckKind.TRIGGER: ("SELECT 1 FROM sqlite_master WHERE type = 'trigger' AND upper(name) = :name", "tbl_name"),
    }

    def connect(self, instance: InstanceConfig) -> sqlite3.Connection:
        timeout = instance.timeout_sec if instance.timeout_sec is not None else 5.0
        # autocommit=False keeps DDL inside the open transaction as well
        return sqlite3.connect(instance.dsn, timeout=timeout, autocommit=False)

    def set_schema(self, conn: sqlite3.Connection, schema: str) -> None:
        return None

    def check_query(self, kind: CheckKind, with_table: bool) -> str:
        if kind is CheckKind.COLUMN:
            # pragma lookup is already scoped to the table
            return "SELECT 1 FROM pragma_table_info(:table) WHERE upper(name) = :name"
        return super().check_query(kind, with_table)

    def create_staging_table_sql(self, table: str, query: str) -> str:
        return f"CREATE TEMP TABLE {table} AS SELECT * FROM ({_strip(query)}) AS applyalter_src LIMIT 0"


DIALECTS: Dict[str, Type[Dialect]] = {
    PostgresDialect.name: PostgresDialect,
    SqliteDialect.name: SqliteDialect,
}


def get_dialect(name: str) -> Dialect:
    try:
        return DIALECTS[name]()
    except KeyError:
        raise ConfigurationError(f"unknown dialect '{name}'") from None
