"""Detection of alters that were applied already."""
from __future__ import annotations

from typing import Optional

from . import db
from .db import InstanceHandle
from .errors import CheckError, ConfigurationError
from .logging_utils import RunContext
from .models import TABLE_REQUIRED, AlterUnit, Check, ReportLevel

CHECK_OK = "OK"


def validate_check(check: Check) -> None:
    if not check.name:
        raise ConfigurationError(f"check {check.kind.value} is missing 'name'")
    if check.kind in TABLE_REQUIRED and not check.table:
        raise ConfigurationError(f"check {check} requires 'table'")


class IdempotencyChecker:
    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def already_applied(self, handle: InstanceHandle, unit: AlterUnit) -> bool:
        """True when the custom query or any structural check says the alter is in place.

        Evaluation stops at the first positive answer.
        """
        if self.check_custom(handle, unit.checkok):
            return True
        for check in unit.checks:
            if self.check_object(handle, check, unit.schema):
                return True
        return False

    def check_custom(self, handle: InstanceHandle, query: Optional[str]) -> bool:
        if query is None:
            return False
        self.ctx.report(ReportLevel.STATEMENT, "Check: %s", query)
        try:
            row = db.fetch_first(handle.connection(), query)
        except handle.dialect.driver_errors as exc:
            raise CheckError(f"can not check {query}: {exc}") from exc
        if row is None or not row:
            return False
        value = row[0]
        return isinstance(value, str) and value.upper() == CHECK_OK

    def check_object(self, handle: InstanceHandle, check: Check, schema: str) -> bool:
        validate_check(check)
        query = handle.dialect.check_query(check.kind, check.table is not None)
        params = {
            "schema": schema.upper(),
            "table": check.table.upper() if check.table else None,
            "name": check.name.upper(),
        }
        shown = " ".join(v for v in (params["schema"], params["table"], params["name"]) if v)
        self.ctx.report(ReportLevel.STATEMENT, "Check: %s (%s)", query, shown)
        try:
            return db.fetch_first(handle.connection(), query, params) is not None
        except handle.dialect.driver_errors as exc:
            raise CheckError(f"can not check {check}: {exc}") from exc
