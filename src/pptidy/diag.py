import json
from dataclasses import dataclass
from enum import Enum

from pptidy.source import SourceLocation


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Diagnostic:
    stage: str
    filename: str
    message: str
    line: int | None = None
    column: int | None = None
    code: str | None = None
    severity: Severity = Severity.ERROR
    check: str | None = None

    def __str__(self) -> str:
        suffix = f" [{self.check}]" if self.check is not None else ""
        if self.line is None or self.column is None:
            return f"{self.filename}: {self.severity}: {self.message}{suffix}"
        return (
            f"{self.filename}:{self.line}:{self.column}: "
            f"{self.severity}: {self.message}{suffix}"
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "stage": self.stage,
                "filename": self.filename,
                "line": self.line,
                "column": self.column,
                "code": self.code,
                "severity": self.severity.value,
                "check": self.check,
                "message": self.message,
            },
            separators=(",", ":"),
        )


class FrontendError(ValueError):
    def __init__(self, diagnostic: Diagnostic) -> None:
        super().__init__(str(diagnostic))
        self.diagnostic = diagnostic


class DiagnosticCollector:
    """Accumulates check diagnostics for one translation unit, in emission order."""

    def __init__(self, *, warnings_as_errors: bool = False) -> None:
        self._diagnostics: list[Diagnostic] = []
        self._warnings_as_errors = warnings_as_errors

    def report(
        self,
        location: SourceLocation,
        message: str,
        severity: Severity,
        *,
        check: str | None = None,
    ) -> None:
        if severity is Severity.WARNING and self._warnings_as_errors:
            severity = Severity.ERROR
        self._diagnostics.append(
            Diagnostic(
                "check",
                location.filename,
                message,
                location.line,
                location.column,
                severity=severity,
                check=check,
            )
        )

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return tuple(self._diagnostics)
