"""Run configuration loading."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .dialects import DIALECTS
from .errors import ConfigurationError
from .models import InstanceConfig, ReportLevel, RunMode


class ConfigError(ConfigurationError):
    """Raised when the configuration file is invalid."""


@dataclass
class DbConfig:
    """Effective configuration of one run."""

    instances: List[InstanceConfig]
    ignore_failures: bool = False
    run_mode: RunMode = RunMode.SHARP
    report_level: ReportLevel = ReportLevel.STATEMENT_STEP
    log_dir: Optional[Path] = None
    migrations_in_print: bool = True


def _path_from(value: Optional[str], base_dir: Path) -> Optional[Path]:
    if value is None:
        return None
    return (base_dir / value).resolve() if not Path(value).is_absolute() else Path(value)


def _env_dsn(instance_id: str) -> Optional[str]:
    key = "APPLYALTER_DSN_" + "".join(c if c.isalnum() else "_" for c in instance_id).upper()
    return os.getenv(key)


def _load_instance(index: int, data: Any) -> InstanceConfig:
    if not isinstance(data, dict):
        raise ConfigError(f"instance #{index} must be a mapping")
    instance_id = data.get("id")
    if not instance_id:
        raise ConfigError(f"instance #{index} is missing 'id'")
    instance_id = str(instance_id)
    dsn = _env_dsn(instance_id) or data.get("dsn")
    if not dsn:
        raise ConfigError(f"instance '{instance_id}' is missing 'dsn'")
    dialect = str(data.get("dialect", "postgresql")).lower()
    if dialect not in DIALECTS:
        raise ConfigError(f"instance '{instance_id}' has unknown dialect '{dialect}'")
    timeout = data.get("timeout_sec")
    if timeout is not None:
        try:
            timeout = int(timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"instance '{instance_id}' has invalid timeout_sec {timeout!r}") from None
    return InstanceConfig(
        instance_id=instance_id,
        dsn=str(dsn),
        instance_type=None if data.get("type") is None else str(data["type"]),
        dialect=dialect,
        timeout_sec=timeout,
    )


def _flag(raw: Dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}")
    return value


def parse_config(raw: Dict[str, Any], base_dir: Path) -> DbConfig:
    instances_raw = raw.get("instances") or []
    if not instances_raw:
        raise ConfigError("no instances defined in configuration")

    instances: List[InstanceConfig] = []
    seen = set()
    for index, data in enumerate(instances_raw):
        instance = _load_instance(index, data)
        if instance.instance_id in seen:
            raise ConfigError(f"duplicate instance id '{instance.instance_id}'")
        seen.add(instance.instance_id)
        instances.append(instance)

    try:
        run_mode = RunMode(str(raw.get("run_mode", RunMode.SHARP.value)).lower())
        report_level = ReportLevel.parse(str(raw.get("report_level", "statement_step")))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    return DbConfig(
        instances=instances,
        ignore_failures=_flag(raw, "ignore_failures", False),
        run_mode=run_mode,
        report_level=report_level,
        log_dir=_path_from(raw.get("log_dir"), base_dir),
        migrations_in_print=_flag(raw, "migrations_in_print", True),
    )


def load_config(path: Path) -> DbConfig:
    """Load and validate a database configuration file."""

    if not path.exists():
        raise ConfigError(f"configuration file not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            raw = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"unable to parse configuration {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"configuration {path} must be a mapping")
    return parse_config(raw, path.parent)


def resolve_config(
    config: DbConfig,
    run_mode_override: Optional[str],
    ignore_failures_override: Optional[bool],
    report_level_override: Optional[str],
    log_dir_override: Optional[Path],
    skip_migrations_in_print: bool = False,
) -> DbConfig:
    """Apply CLI overrides on top of the loaded configuration."""

    effective = DbConfig(**config.__dict__)
    try:
        if run_mode_override:
            effective.run_mode = RunMode(run_mode_override.lower())
        if report_level_override:
            effective.report_level = ReportLevel.parse(report_level_override)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    if ignore_failures_override is not None:
        effective.ignore_failures = ignore_failures_override
    if log_dir_override:
        effective.log_dir = log_dir_override.resolve()
    if skip_migrations_in_print:
        effective.migrations_in_print = False
    return effective
