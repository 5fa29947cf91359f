import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from pptidy.checks import create_checks
from pptidy.diag import Diagnostic, DiagnosticCollector, FrontendError, Severity
from pptidy.options import CheckOptions, normalize_options
from pptidy.preprocessor import Preprocessor, PreprocessorError


@dataclass(frozen=True)
class CheckResult:
    filename: str
    diagnostics: tuple[Diagnostic, ...]
    include_trace: tuple[str, ...]
    macro_table: tuple[str, ...]

    @property
    def warning_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.severity is Severity.WARNING)

    @property
    def has_errors(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self.diagnostics)


def read_source(path: str, *, stdin: TextIO | None = None) -> tuple[str, str]:
    if path == "-":
        stream = sys.stdin if stdin is None else stdin
        return "<stdin>", stream.read()
    resolved = Path(path)
    return str(resolved), resolved.read_text(encoding="utf-8")


def check_source(
    source: str,
    *,
    filename: str = "<input>",
    options: CheckOptions | None = None,
) -> CheckResult:
    """Run the enabled checks over one translation unit.

    A fresh preprocessor and fresh check instances are built per call, so
    no state is shared between translation units.
    """
    normalized_options = normalize_options(options)
    collector = DiagnosticCollector(warnings_as_errors=normalized_options.warnings_as_errors)
    try:
        preprocessor = Preprocessor(normalized_options)
        for check in create_checks(normalized_options.checks, collector):
            check.register_pp_callbacks(preprocessor)
        result = preprocessor.process(source, filename=filename)
    except PreprocessorError as error:
        diagnostic = Diagnostic(
            "preprocess",
            error.filename if error.filename is not None else filename,
            error.message,
            error.line,
            error.column,
            error.code,
        )
        raise FrontendError(diagnostic) from error
    return CheckResult(
        filename,
        collector.diagnostics(),
        result.include_trace,
        result.macro_table,
    )


def check_path(path: str | Path, *, options: CheckOptions | None = None) -> CheckResult:
    filename, source = read_source(str(path))
    return check_source(source, filename=filename, options=options)
