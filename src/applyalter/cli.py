"""Command line interface of the alter tool."""
from __future__ import annotations

import argparse
import sys
import traceback
from pathlib import Path
from typing import Optional

from .config import DbConfig, load_config, resolve_config
from .errors import ApplyAlterError, ApplyAlterErrors
from .loader import load_alters
from .logging_utils import RunContext, run_log
from .models import ReportLevel
from .runner import AlterRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="applyalter", description="Apply alter scripts to database instances")
    parser.add_argument("--config", default="dbconfig.yaml", help="database configuration file")
    parser.add_argument("--run-mode", dest="run_mode", choices=["print", "sharp"],
                        help="print only shows the statements, sharp executes and commits them")
    parser.add_argument(
        "--ignore-failures",
        dest="ignore_failures",
        action="store_true",
        default=None,
        help="collect failures and report them at the end instead of stopping",
    )
    parser.add_argument(
        "--print-stacktrace",
        dest="print_stacktrace",
        action="store_true",
        help="print the full traceback of a failure",
    )
    parser.add_argument("--report-level", dest="report_level",
                        choices=[level.name.lower() for level in ReportLevel],
                        help="most detailed messages echoed to stdout")
    parser.add_argument("--log-dir", dest="log_dir", help="write a run log into this directory")
    parser.add_argument(
        "--skip-migrations-in-print",
        dest="skip_migrations_in_print",
        action="store_true",
        help="do not run batch migrations in print mode",
    )
    parser.add_argument("alters", nargs="+", help="alter files (.yaml) or packages (.zip)")
    return parser


def _load_config(args: argparse.Namespace) -> DbConfig:
    config = load_config(Path(args.config).resolve())
    return resolve_config(
        config,
        run_mode_override=args.run_mode,
        ignore_failures_override=args.ignore_failures,
        report_level_override=args.report_level,
        log_dir_override=Path(args.log_dir) if args.log_dir else None,
        skip_migrations_in_print=args.skip_migrations_in_print,
    )


def run_apply(config: DbConfig, alters: list[str]) -> int:
    units = load_alters(Path(p) for p in alters)
    with run_log(config.log_dir) as log:
        ctx = RunContext(config.report_level, log=log)
        ctx.report(ReportLevel.MAIN, "ApplyAlter started in run mode: %s", config.run_mode.value)
        AlterRunner(config, ctx).apply(units)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    ignore_failures = bool(args.ignore_failures)
    try:
        config = _load_config(args)
        ignore_failures = config.ignore_failures
        return run_apply(config, args.alters)
    except ApplyAlterError as exc:
        if args.print_stacktrace and not ignore_failures:
            traceback.print_exc(file=sys.stderr)
        elif isinstance(exc, ApplyAlterErrors):
            for line in exc.messages():
                print(f"error: {line}", file=sys.stderr)
        else:
            print(f"error: {exc}", file=sys.stderr)
            if exc.__cause__ is not None:
                print(f"  caused by: {exc.__cause__}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
