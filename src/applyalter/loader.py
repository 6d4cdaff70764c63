"""Loading of alter definitions from YAML files and zip packages."""
from __future__ import annotations

import zipfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from .errors import ConfigurationError
from .models import (
    AlterUnit,
    Check,
    CheckKind,
    Comment,
    IdListMigration,
    RangeMigration,
    SqlStatement,
    StatementUnit,
)

YAML_SUFFIXES = (".yaml", ".yml")
ZIP_SUFFIX = ".zip"


class AlterFormatError(ConfigurationError):
    """Raised when an alter document is invalid."""


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return None if value is None else str(value)


def _step(data: Dict[str, Any], source: str) -> Optional[int]:
    value = data.get("step")
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise AlterFormatError(f"{source}: invalid step {value!r}") from None


def _load_statement(item: Any, source: str, index: int) -> StatementUnit:
    where = f"{source}: statement #{index + 1}"
    if isinstance(item, str):
        return SqlStatement(sql=item)
    if not isinstance(item, dict):
        raise AlterFormatError(f"{where} must be a mapping or a string")

    kinds = [key for key in ("comment", "sql", "migration-range", "migration-id-list") if key in item]
    if len(kinds) != 1:
        raise AlterFormatError(
            f"{where} must have exactly one of comment, sql, migration-range, migration-id-list"
        )
    kind = kinds[0]
    if kind == "comment":
        return Comment(text=str(item["comment"] or ""))
    if kind == "sql":
        return SqlStatement(sql=str(item["sql"] or ""), can_fail=bool(item.get("canfail", False)))

    body = item[kind]
    if not isinstance(body, dict):
        raise AlterFormatError(f"{where}: {kind} must be a mapping")
    common = dict(
        statement=_optional_str(body, "statement"),
        idcolumn=_optional_str(body, "idcolumn"),
        step=_step(body, where),
        placeholder=_optional_str(body, "placeholder"),
        logid=_optional_str(body, "logid"),
        description=_optional_str(body, "description"),
    )
    if kind == "migration-range":
        return RangeMigration(rangequery=_optional_str(body, "rangequery"), **common)
    return IdListMigration(idquery=_optional_str(body, "idquery"), **common)


def _load_check(item: Any, source: str) -> Check:
    if not isinstance(item, dict):
        raise AlterFormatError(f"{source}: checks must be mappings")
    try:
        kind = CheckKind(str(item.get("type", "")).lower())
    except ValueError:
        raise AlterFormatError(f"{source}: unknown check type {item.get('type')!r}") from None
    return Check(kind=kind, name=str(item.get("name") or ""), table=_optional_str(item, "table"))


def parse_alter(alter_id: str, raw: Any) -> AlterUnit:
    if not isinstance(raw, dict):
        raise AlterFormatError(f"alter {alter_id} must be a mapping")
    schema = raw.get("schema")
    if not schema:
        raise AlterFormatError(f"alter {alter_id} is missing 'schema'")
    instances = raw.get("instances") or []
    if isinstance(instances, str):
        instances = [instances]
    return AlterUnit(
        alter_id=alter_id,
        schema=str(schema),
        statements=tuple(
            _load_statement(item, alter_id, i) for i, item in enumerate(raw.get("statements") or [])
        ),
        checkok=_optional_str(raw, "checkok"),
        checks=tuple(_load_check(item, alter_id) for item in raw.get("checks") or []),
        instances=tuple(str(i) for i in instances),
        description=_optional_str(raw, "description"),
    )


def new_alter(name: str, content: Union[str, bytes]) -> AlterUnit:
    """Deserialize one alter; its id is the base name of ``name``."""
    alter_id = PurePosixPath(name.replace("\\", "/")).name
    try:
        raw = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise AlterFormatError(f"unable to deserialize alter from {name}: {exc}") from exc
    return parse_alter(alter_id, raw)


def zip_entry_sort_key(name: str) -> Tuple[str, ...]:
    """Entries sort by path component so that directory order is respected."""
    return tuple(PurePosixPath(name).parts)


def from_file(path: Path) -> AlterUnit:
    if not path.exists():
        raise AlterFormatError(f"file not found {path}")
    with path.open("r", encoding="utf-8") as fh:
        return new_alter(path.name, fh.read())


def from_zip(path: Path) -> List[AlterUnit]:
    try:
        with zipfile.ZipFile(path) as archive:
            entries = [
                info for info in archive.infolist()
                if not info.is_dir() and info.filename.lower().endswith(YAML_SUFFIXES)
            ]
            entries.sort(key=lambda info: zip_entry_sort_key(info.filename))
            return [new_alter(info.filename, archive.read(info)) for info in entries]
    except (OSError, zipfile.BadZipFile) as exc:
        raise AlterFormatError(f"error reading zip file {path}: {exc}") from exc


def load_alters(paths: Iterable[Path]) -> List[AlterUnit]:
    """Load alters from YAML files and zip packages, keeping argument order."""

    alters: List[AlterUnit] = []
    for path in paths:
        suffix = path.suffix.lower()
        if suffix in YAML_SUFFIXES:
            alters.append(from_file(path))
        elif suffix == ZIP_SUFFIX:
            alters.extend(from_zip(path))
        else:
            raise AlterFormatError(f"unknown filetype {path}")
    return alters
