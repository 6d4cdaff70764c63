"""Error types raised while applying alters."""
from __future__ import annotations

from typing import Iterator, List, Optional


class ApplyAlterError(RuntimeError):
    """Raised when an alter cannot be applied."""

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        unit_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.instance_id = instance_id
        self.unit_id = unit_id

    def __str__(self) -> str:
        context = []
        if self.unit_id:
            context.append(f"alter {self.unit_id}")
        if self.instance_id:
            context.append(f"db {self.instance_id}")
        if not context:
            return self.message
        return f"[{', '.join(context)}] {self.message}"


class ConfigurationError(ApplyAlterError):
    """The alter or run configuration is unusable; never deferred."""


class CheckError(ApplyAlterError):
    """An idempotency check could not be evaluated."""


class StatementError(ApplyAlterError):
    """A statement that is not allowed to fail has failed."""


class MigrationError(ApplyAlterError):
    """A step of a batched migration has failed."""


class ApplyAlterErrors(ApplyAlterError):
    """Failures collected over a whole run.

    With ``ignore_failures`` disabled, :meth:`add_or_raise` re-raises the
    failure immediately instead of collecting it.
    """

    def __init__(self, ignore_failures: bool) -> None:
        super().__init__("alter application failed")
        self.ignore_failures = ignore_failures
        self._failures: List[ApplyAlterError] = []

    def add_or_raise(self, error: ApplyAlterError) -> None:
        if not self.ignore_failures:
            raise error
        self._failures.append(error)

    def is_empty(self) -> bool:
        return not self._failures

    def __len__(self) -> int:
        return len(self._failures)

    def __iter__(self) -> Iterator[ApplyAlterError]:
        return iter(self._failures)

    def messages(self) -> List[str]:
        lines = []
        for error in self._failures:
            lines.append(str(error))
            cause = error.__cause__
            if cause is not None:
                lines.append(f"  caused by: {cause}")
        return lines

    def __str__(self) -> str:
        header = f"{len(self._failures)} alter failure(s)"
        return "\n".join([header] + self.messages())
