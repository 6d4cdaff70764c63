"""Logging helpers for alter runs."""
from __future__ import annotations

import contextlib
import datetime as dt
from pathlib import Path
from typing import Callable, Iterator, Optional, TextIO

from .models import ReportLevel


@contextlib.contextmanager
def run_log(log_dir: Optional[Path], name: str = "applyalter") -> Iterator[Optional[Callable[[str], None]]]:
    if log_dir is None:
        yield None
        return
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    log_path = log_dir / f"{name}_{timestamp}.log"
    with log_path.open("w", encoding="utf-8") as fh:
        def log(message: str) -> None:
            fh.write(message + "\n")
            fh.flush()

        yield log


class RunContext:
    """Report sink for a run; messages above ``report_level`` only reach the log file."""

    def __init__(
        self,
        report_level: ReportLevel = ReportLevel.STATEMENT_STEP,
        log: Optional[Callable[[str], None]] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        self.report_level = report_level
        self.log = log
        self.stream = stream

    def report(self, level: ReportLevel, message: str, *args: object) -> None:
        text = message % args if args else message
        if self.log is not None:
            self.log(f"[{level.name}] {text}")
        if level <= self.report_level:
            print(text, file=self.stream)
