"""Core alter application logic."""
from __future__ import annotations

import time
from typing import List, Optional, Sequence

from . import db
from .checks import IdempotencyChecker, validate_check
from .config import DbConfig
from .db import InstanceHandle
from .errors import ApplyAlterError, ApplyAlterErrors, ConfigurationError, StatementError
from .logging_utils import RunContext
from .migration import IdListMigrationEngine, RangeMigrationEngine, validate_migration
from .models import (
    MIGRATION_TYPES,
    AlterUnit,
    Comment,
    IdListMigration,
    RangeMigration,
    ReportLevel,
    RunMode,
    SqlStatement,
    StatementUnit,
)


class AlterRunner:
    """Applies alters unit by unit, instance by instance.

    Each configured instance gets one connection for the whole run.  Work of an
    alter is committed on every instance it touched once the alter has been
    processed everywhere, but only in ``sharp`` mode and only while no failure
    has been recorded anywhere in the run.
    """

    def __init__(
        self,
        config: DbConfig,
        ctx: Optional[RunContext] = None,
        handles: Optional[List[InstanceHandle]] = None,
    ) -> None:
        self.config = config
        self.ctx = ctx or RunContext(config.report_level)
        if handles is None:
            handles = [InstanceHandle(instance) for instance in config.instances]
        self.handles = handles
        self.checker = IdempotencyChecker(self.ctx)

    @property
    def run_mode(self) -> RunMode:
        return self.config.run_mode

    def validate(self, units: Sequence[AlterUnit]) -> None:
        """Reject unusable alters before any database is touched."""
        for unit in units:
            try:
                if not unit.schema:
                    raise ConfigurationError("alter has no schema")
                for check in unit.checks:
                    validate_check(check)
                for statement in unit.statements:
                    if isinstance(statement, MIGRATION_TYPES):
                        validate_migration(statement)
                    elif isinstance(statement, SqlStatement) and not statement.sql.strip():
                        raise ConfigurationError("empty sql statement")
            except ConfigurationError as exc:
                exc.unit_id = exc.unit_id or unit.alter_id
                raise

    def apply(self, units: Sequence[AlterUnit]) -> None:
        self.validate(units)
        failures = ApplyAlterErrors(self.config.ignore_failures)
        commit_allowed = True
        started = time.monotonic()
        try:
            for unit in units:
                for handle in self.handles:
                    if not unit.applies_to(handle.instance_type):
                        continue
                    try:
                        self._apply_unit(handle, unit)
                    except ConfigurationError as exc:
                        self._tag(exc, handle, unit)
                        raise
                    except ApplyAlterError as exc:
                        self._tag(exc, handle, unit)
                        self.ctx.report(ReportLevel.ERROR, "%s", exc)
                        # the work can no longer be committed; keep the connection usable
                        self._discard(handle)
                        commit_allowed = False
                        failures.add_or_raise(exc)
                if commit_allowed and self.run_mode is RunMode.SHARP:
                    try:
                        self._commit_used()
                    except ApplyAlterError as exc:
                        exc.unit_id = unit.alter_id
                        commit_allowed = False
                        failures.add_or_raise(exc)
        finally:
            self.close()

        self.ctx.report(
            ReportLevel.MAIN,
            "ApplyAlter finished: %d alter(s), %d failure(s) in %d ms",
            len(units), len(failures), int((time.monotonic() - started) * 1000),
        )
        if not failures.is_empty():
            raise failures

    def close(self) -> None:
        for handle in self.handles:
            handle.close()

    # --- helpers ---

    @staticmethod
    def _tag(exc: ApplyAlterError, handle: InstanceHandle, unit: AlterUnit) -> None:
        exc.instance_id = exc.instance_id or handle.instance_id
        exc.unit_id = exc.unit_id or unit.alter_id

    def _discard(self, handle: InstanceHandle) -> None:
        try:
            handle.rollback()
        except handle.dialect.driver_errors as exc:
            self.ctx.report(
                ReportLevel.ERROR, "rollback on %s failed, reconnecting: %s", handle.instance_id, exc
            )
            handle.close()

    def _commit_used(self) -> None:
        for handle in self.handles:
            if not handle.is_dirty:
                continue
            try:
                handle.commit()
            except handle.dialect.driver_errors as exc:
                self._discard(handle)
                raise StatementError(
                    f"commit failed: {exc}", instance_id=handle.instance_id
                ) from exc

    def _apply_unit(self, handle: InstanceHandle, unit: AlterUnit) -> None:
        start = time.monotonic()
        self.ctx.report(
            ReportLevel.MAIN,
            "Database instance %s, alter %s, schema %s",
            handle.instance_id, unit.alter_id, unit.schema,
        )
        try:
            handle.set_schema(unit.schema)
        except handle.dialect.driver_errors as exc:
            raise StatementError(f"can not use schema {unit.schema}: {exc}") from exc

        if self.checker.already_applied(handle, unit):
            self.ctx.report(ReportLevel.MAIN, "Alter applied already, skipping")
            return

        handle.mark_dirty()
        for statement in unit.statements:
            try:
                self._execute(handle, statement)
            except handle.dialect.driver_errors as exc:
                raise StatementError(
                    f"can not execute alter statement on db {handle.instance_id}\n{statement}: {exc}"
                ) from exc

        elapsed = int((time.monotonic() - start) * 1000)
        self.ctx.report(
            ReportLevel.MAIN, "Alter %s on %s took %d ms", unit.alter_id, handle.instance_id, elapsed
        )

    def _execute(self, handle: InstanceHandle, statement: StatementUnit) -> None:
        self.ctx.report(ReportLevel.STATEMENT, "%s", statement)
        if isinstance(statement, Comment):
            return
        if isinstance(statement, SqlStatement):
            if self.run_mode is RunMode.PRINT:
                return
            self._execute_sql(handle, statement)
            return
        if self.run_mode is RunMode.PRINT and not self.config.migrations_in_print:
            self.ctx.report(ReportLevel.STATEMENT, "  migration skipped in print mode")
            return
        if isinstance(statement, IdListMigration):
            IdListMigrationEngine(handle, self.ctx).execute(statement)
        elif isinstance(statement, RangeMigration):
            RangeMigrationEngine(handle, self.ctx).execute(statement)
        else:
            raise ConfigurationError(f"unknown statement type {type(statement).__name__}")

    def _execute_sql(self, handle: InstanceHandle, statement: SqlStatement) -> None:
        conn = handle.connection()
        handle.mark_dirty()
        try:
            if statement.can_fail:
                with db.savepoint(conn):
                    db.execute_update(conn, statement.sql)
            else:
                db.execute_update(conn, statement.sql)
        except handle.dialect.driver_errors as exc:
            if statement.can_fail:
                self.ctx.report(
                    ReportLevel.STATEMENT,
                    "  %s\n  but continuing as this is allowed to fail",
                    exc,
                )
                return
            raise StatementError(
                f"can not execute alter statement on db {handle.instance_id}\n{statement}: {exc}"
            ) from exc
