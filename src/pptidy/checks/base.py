from pptidy.diag import DiagnosticCollector, Severity
from pptidy.preprocessor import Preprocessor
from pptidy.source import SourceLocation


class Check:
    """Base class for checks driven by preprocessor events.

    One instance exists per translation unit. Subclasses set ``name`` and
    hook themselves into the preprocessor in ``register_pp_callbacks``.
    """

    name = ""

    def __init__(self, diagnostics: DiagnosticCollector) -> None:
        self._diagnostics = diagnostics

    def diag(
        self,
        location: SourceLocation,
        message: str,
        severity: Severity = Severity.WARNING,
    ) -> None:
        self._diagnostics.report(location, message, severity, check=self.name)

    def register_pp_callbacks(self, preprocessor: Preprocessor) -> None:
        raise NotImplementedError
