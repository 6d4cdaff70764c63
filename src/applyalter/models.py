"""Data models used across the alter tool."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union


class RunMode(str, enum.Enum):
    """How statements are handled during a run."""

    PRINT = "print"
    SHARP = "sharp"


class ReportLevel(enum.IntEnum):
    ERROR = 0
    MAIN = 1
    STATEMENT = 2
    STATEMENT_STEP = 3
    DETAIL = 4

    @classmethod
    def parse(cls, value: str) -> "ReportLevel":
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown report level: {value}") from None


class CheckKind(str, enum.Enum):
    TABLE = "table"
    VIEW = "view"
    COLUMN = "column"
    INDEX = "index"
    SEQUENCE = "sequence"
    PROCEDURE = "procedure"
    TRIGGER = "trigger"
    CONSTRAINT = "constraint"


# kinds whose catalog lookup is meaningless without a table
TABLE_REQUIRED = frozenset({CheckKind.COLUMN, CheckKind.CONSTRAINT})


@dataclass(frozen=True)
class Check:
    """Structural existence check: the alter is applied if the object exists."""

    kind: CheckKind
    name: str
    table: Optional[str] = None

    def __str__(self) -> str:
        if self.table:
            return f"{self.kind.value} {self.table}.{self.name}"
        return f"{self.kind.value} {self.name}"


@dataclass(frozen=True)
class Comment:
    text: str

    def __str__(self) -> str:
        return f"-- {self.text}"


@dataclass(frozen=True)
class SqlStatement:
    sql: str
    can_fail: bool = False

    def __str__(self) -> str:
        suffix = " (can fail)" if self.can_fail else ""
        return f"{self.sql.strip()}{suffix}"


@dataclass(frozen=True)
class RangeMigration:
    """Numeric range split: the placeholder becomes a bounded predicate per batch."""

    statement: Optional[str]
    rangequery: Optional[str]
    idcolumn: Optional[str]
    step: Optional[int]
    placeholder: Optional[str] = None
    logid: Optional[str] = None
    description: Optional[str] = None

    DEFAULT_PLACEHOLDER = "ID_RANGE"

    @property
    def token(self) -> str:
        return self.placeholder or self.DEFAULT_PLACEHOLDER

    def __str__(self) -> str:
        return (
            f"RangeMigration: logid: {self.logid}\n"
            f"statement: {self.statement}\n"
            f"rangequery: {self.rangequery}\n"
            f"step: {self.step}\n"
            f"description: {self.description}"
        )


@dataclass(frozen=True)
class IdListMigration:
    """General migration over an arbitrary (possibly composite) key set.

    The candidate keys produced by ``idquery`` are staged in a temporary table
    and fed to ``statement`` in batches of ``step`` rows; the placeholder token
    in ``statement`` is replaced with a subquery over the current batch.
    """

    statement: Optional[str]
    idquery: Optional[str]
    idcolumn: Optional[str]
    step: Optional[int]
    placeholder: Optional[str] = None
    logid: Optional[str] = None
    description: Optional[str] = None

    DEFAULT_PLACEHOLDER = "ID_LIST"

    @property
    def token(self) -> str:
        return self.placeholder or self.DEFAULT_PLACEHOLDER

    @property
    def id_columns(self) -> List[str]:
        return [c.strip() for c in (self.idcolumn or "").split(",") if c.strip()]

    def __str__(self) -> str:
        return (
            f"IdListMigration: logid: {self.logid}\n"
            f"statement: {self.statement}\n"
            f"idquery: {self.idquery}\n"
            f"step: {self.step}\n"
            f"description: {self.description}"
        )


StatementUnit = Union[Comment, SqlStatement, RangeMigration, IdListMigration]
MIGRATION_TYPES = (RangeMigration, IdListMigration)


@dataclass(frozen=True)
class AlterUnit:
    alter_id: str
    schema: str
    statements: Sequence[StatementUnit] = ()
    checkok: Optional[str] = None
    checks: Sequence[Check] = ()
    instances: Sequence[str] = ()
    description: Optional[str] = None

    @property
    def all_instances(self) -> bool:
        return not self.instances

    def applies_to(self, instance_type: Optional[str]) -> bool:
        return self.all_instances or instance_type in self.instances


@dataclass
class InstanceConfig:
    instance_id: str
    dsn: str
    instance_type: Optional[str] = None
    dialect: str = "postgresql"
    timeout_sec: Optional[int] = None


@dataclass(frozen=True)
class ProcessedStatement:
    statement: str
    replacements: int


@dataclass
class MigrationStats:
    batches: int = 0
    processed: int = 0
    affected: int = 0
    copied_per_batch: List[int] = field(default_factory=list)
