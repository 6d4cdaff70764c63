"""Tests for applyalter.checks."""

from __future__ import annotations

import pytest
from applyalter.checks import IdempotencyChecker, validate_check
from applyalter.db import InstanceHandle
from applyalter.errors import CheckError, ConfigurationError
from applyalter.models import AlterUnit, Check, CheckKind


@pytest.fixture
def handle(sqlite_db):
    instance = sqlite_db(
        "main",
        "CREATE TABLE orders (id INTEGER, status TEXT)",
        "CREATE INDEX orders_status_idx ON orders (status)",
        "CREATE TABLE marker (value TEXT)",
        "INSERT INTO marker VALUES ('ok')",
    )
    handle = InstanceHandle(instance)
    yield handle
    handle.close()


def _unit(**kwargs):
    return AlterUnit(alter_id="001.yaml", schema="main", **kwargs)


# ---------------------------------------------------------------------------
# Custom check query
# ---------------------------------------------------------------------------


class TestCustomCheck:
    def test_ok_is_case_insensitive(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.already_applied(handle, _unit(checkok="SELECT value FROM marker")) is True

    def test_other_value(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.already_applied(handle, _unit(checkok="SELECT 'NOK'")) is False

    def test_no_row(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.already_applied(handle, _unit(checkok="SELECT value FROM marker WHERE 0")) is False

    def test_no_query(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.already_applied(handle, _unit()) is False

    def test_failing_query_is_an_error(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        with pytest.raises(CheckError):
            checker.already_applied(handle, _unit(checkok="SELECT value FROM nowhere"))


# ---------------------------------------------------------------------------
# Structural checks
# ---------------------------------------------------------------------------


class TestStructuralChecks:
    def test_existing_table_lower_case_name(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        unit = _unit(checks=(Check(CheckKind.TABLE, "orders"),))
        assert checker.already_applied(handle, unit) is True

    def test_missing_table(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        unit = _unit(checks=(Check(CheckKind.TABLE, "invoices"),))
        assert checker.already_applied(handle, unit) is False

    def test_column(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.check_object(handle, Check(CheckKind.COLUMN, "Status", table="orders"), "main")
        assert not checker.check_object(handle, Check(CheckKind.COLUMN, "total", table="orders"), "main")

    def test_index_with_table(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        assert checker.check_object(handle, Check(CheckKind.INDEX, "orders_status_idx", table="orders"), "main")
        assert not checker.check_object(handle, Check(CheckKind.INDEX, "orders_status_idx", table="marker"), "main")

    def test_first_positive_short_circuits(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        # the sequence check is unsupported on SQLite and would raise if evaluated
        unit = _unit(checks=(Check(CheckKind.TABLE, "orders"), Check(CheckKind.SEQUENCE, "seq")))
        assert checker.already_applied(handle, unit) is True

    def test_unsupported_kind(self, handle, ctx):
        checker = IdempotencyChecker(ctx)
        with pytest.raises(ConfigurationError):
            checker.check_object(handle, Check(CheckKind.SEQUENCE, "seq"), "main")

    def test_parameters_are_upper_cased(self, fake_handles, fake_dialect, ctx):
        handle = fake_handles(("a", None))[0]
        checker = IdempotencyChecker(ctx)
        checker.check_object(handle, Check(CheckKind.TABLE, "orders"), "app")
        assert "Check: SELECT 1 FROM catalog" in ctx.stream.getvalue()
        assert "(APP ORDERS)" in ctx.stream.getvalue()


class TestValidateCheck:
    def test_column_requires_table(self):
        with pytest.raises(ConfigurationError, match="table"):
            validate_check(Check(CheckKind.COLUMN, "status"))

    def test_name_required(self):
        with pytest.raises(ConfigurationError, match="name"):
            validate_check(Check(CheckKind.TABLE, ""))
