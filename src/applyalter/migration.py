"""Batched data migrations.

Both engines split one logical migration into many small transactions so that
no single statement has to lock or log the whole data set.  Every batch is
committed on its own; the id-list engine removes processed keys from its
staging table inside the same transaction, so an interrupted run never sees a
committed batch again.
"""
from __future__ import annotations

import time
from typing import Union

from . import db
from .db import InstanceHandle
from .errors import ConfigurationError, MigrationError
from .logging_utils import RunContext
from .models import IdListMigration, MigrationStats, ProcessedStatement, RangeMigration, ReportLevel


def process_statement(statement: str, placeholder: str, replacement: str) -> ProcessedStatement:
    return ProcessedStatement(
        statement=statement.replace(placeholder, replacement),
        replacements=statement.count(placeholder),
    )


def commit_step(handle: InstanceHandle, what: str) -> None:
    """Commit on behalf of a migration, reporting driver failures as migration errors."""
    try:
        handle.commit()
    except handle.dialect.driver_errors as exc:
        raise MigrationError(f"commit {what} failed: {exc}") from exc


def validate_migration(migration: Union[IdListMigration, RangeMigration]) -> None:
    """Raise :class:`ConfigurationError` if the migration definition is unusable."""

    if not migration.statement:
        raise ConfigurationError(f'invalid alter script: missing "statement" for {migration}')
    if isinstance(migration, IdListMigration):
        if not migration.idquery:
            raise ConfigurationError(f'invalid alter script: missing "idquery" for {migration}')
        if not migration.id_columns:
            raise ConfigurationError(f'invalid alter script: missing "idcolumn" for {migration}')
    else:
        if not migration.rangequery:
            raise ConfigurationError(f'invalid alter script: missing "rangequery" for {migration}')
        if not migration.idcolumn:
            raise ConfigurationError(f'invalid alter script: missing "idcolumn" for {migration}')
    if migration.step is None or int(migration.step) < 1:
        raise ConfigurationError(f'invalid alter script: missing or invalid "step" for {migration}')
    if migration.statement.count(migration.token) < 1:
        raise ConfigurationError(
            f"invalid alter script: no {migration.token} in the statement; {migration}"
        )


class IdListMigrationEngine:
    TEMP_TABLE_MAIN = "MGR_IDS"
    TEMP_TABLE_BATCH = "MIG_BATCH"

    def __init__(self, handle: InstanceHandle, ctx: RunContext) -> None:
        self.handle = handle
        self.ctx = ctx

    def _create_table(self, base: str, migration: IdListMigration) -> str:
        self.ctx.report(ReportLevel.STATEMENT_STEP, "creating temporary table for %s", base)
        try:
            table, create_sql, index_sql = self.handle.create_staging_table(
                base, migration.idquery, migration.idcolumn
            )
        except self.handle.dialect.driver_errors as exc:
            raise MigrationError(f"failed to create temporary table {base}: {exc}") from exc
        self.ctx.report(ReportLevel.DETAIL, "creating temporary table by query: %s", create_sql)
        self.ctx.report(ReportLevel.DETAIL, "  creating index: %s", index_sql)
        return table

    def _fill_id_list(self, migration: IdListMigration, table_main: str) -> int:
        insert_sql = self.handle.dialect.insert_from_query_sql(table_main, migration.idquery)
        self.ctx.report(ReportLevel.STATEMENT_STEP, "getting source data: %s", insert_sql)
        try:
            return db.execute_update(self.handle.connection(), insert_sql)
        except self.handle.dialect.driver_errors as exc:
            raise MigrationError(f"failed to get main ID list {table_main}: {exc}") from exc

    def execute(self, migration: IdListMigration) -> MigrationStats:
        validate_migration(migration)
        step = int(migration.step)
        dialect = self.handle.dialect
        conn = self.handle.connection()

        # isolate the migration from whatever the alter did before it
        commit_step(self.handle, "before migration")

        table_main = self._create_table(self.TEMP_TABLE_MAIN, migration)
        table_batch = self._create_table(self.TEMP_TABLE_BATCH, migration)
        commit_step(self.handle, "of temporary tables")

        main = process_statement(
            migration.statement, migration.token, f"(select * from {table_batch})"
        )
        if main.replacements < 1:
            raise ConfigurationError(
                f"invalid alter script: no {migration.token} in the statement; {migration}"
            )

        total = self._fill_id_list(migration, table_main)
        self.ctx.report(ReportLevel.STATEMENT, "total %d rows to be migrated", total)

        columns = ", ".join(migration.id_columns)
        sql_copy = dialect.copy_batch_sql(table_main, table_batch, step)
        sql_delete = f"DELETE FROM {table_main} WHERE ({columns}) IN (SELECT {columns} FROM {table_batch})"
        sql_clean = f"DELETE FROM {table_batch}"
        self.ctx.report(ReportLevel.STATEMENT_STEP, "migration query 1: %s", sql_copy)
        self.ctx.report(ReportLevel.STATEMENT_STEP, "migration query 2: %s", main.statement)
        self.ctx.report(ReportLevel.STATEMENT_STEP, "migration query 3: %s", sql_delete)

        supposed = -(-total // step)
        stats = MigrationStats()
        start = time.monotonic()
        while True:
            try:
                copied = db.execute_update(conn, sql_copy)
                if copied < 1:
                    break
                updated = db.execute_update(conn, main.statement)
                db.execute_update(conn, sql_delete)
                db.execute_update(conn, sql_clean)
                self.handle.commit()
            except dialect.driver_errors as exc:
                raise MigrationError(
                    f"migration batch {stats.batches + 1} failed: {exc}\n{main.statement}"
                ) from exc
            stats.batches += 1
            stats.processed += copied
            stats.affected += updated
            stats.copied_per_batch.append(copied)
            self.ctx.report(
                ReportLevel.DETAIL,
                "  batch %d/%d: %d of %d updated",
                stats.batches, supposed, updated, copied,
            )

        try:
            db.execute_update(conn, dialect.drop_table_sql(table_batch))
            db.execute_update(conn, dialect.drop_table_sql(table_main))
            self.handle.commit()
        except dialect.driver_errors as exc:
            raise MigrationError(f"failed to drop temporary tables: {exc}") from exc

        self.ctx.report(
            ReportLevel.STATEMENT_STEP,
            " migration finished, total %d rows updated in %d batches (%d rows processed) in %d ms",
            stats.affected, stats.batches, stats.processed, int((time.monotonic() - start) * 1000),
        )
        return stats


class RangeMigrationEngine:
    def __init__(self, handle: InstanceHandle, ctx: RunContext) -> None:
        self.handle = handle
        self.ctx = ctx

    def _bounds(self, migration: RangeMigration):
        self.ctx.report(ReportLevel.STATEMENT_STEP, "getting range: %s", migration.rangequery)
        try:
            row = db.fetch_first(self.handle.connection(), migration.rangequery)
        except self.handle.dialect.driver_errors as exc:
            raise MigrationError(f"failed to get migration range: {exc}") from exc
        if row is None or row[0] is None:
            return None
        if len(row) < 2:
            raise ConfigurationError(
                f"invalid alter script: rangequery must return minimum and maximum; {migration}"
            )
        try:
            return int(row[0]), int(row[1])
        except (TypeError, ValueError) as exc:
            raise MigrationError(f"range bounds are not numeric: {row!r}") from exc

    def execute(self, migration: RangeMigration) -> MigrationStats:
        validate_migration(migration)
        step = int(migration.step)
        conn = self.handle.connection()
        commit_step(self.handle, "before migration")

        stats = MigrationStats()
        bounds = self._bounds(migration)
        if bounds is None:
            self.ctx.report(ReportLevel.STATEMENT, "empty range, nothing to migrate")
            return stats
        low, high = bounds
        supposed = (high - low) // step + 1
        self.ctx.report(ReportLevel.STATEMENT, "migrating range %d..%d in steps of %d", low, high, step)

        while low <= high:
            predicate = f"({migration.idcolumn} >= {low} AND {migration.idcolumn} < {low + step})"
            batch = process_statement(migration.statement, migration.token, predicate)
            try:
                updated = db.execute_update(conn, batch.statement)
                self.handle.commit()
            except self.handle.dialect.driver_errors as exc:
                raise MigrationError(
                    f"migration batch {stats.batches + 1} failed: {exc}\n{batch.statement}"
                ) from exc
            stats.batches += 1
            stats.processed += updated
            stats.affected += updated
            self.ctx.report(
                ReportLevel.DETAIL, "  batch %d/%d: %d rows updated", stats.batches, supposed, updated
            )
            low += step

        self.ctx.report(
            ReportLevel.STATEMENT_STEP,
            " migration finished, total %d rows updated in %d batches",
            stats.affected, stats.batches,
        )
        return stats
