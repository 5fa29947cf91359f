from fnmatch import fnmatchcase

from pptidy.checks.base import Check
from pptidy.checks.redundant_preprocessor import RedundantPreprocessorCheck
from pptidy.diag import DiagnosticCollector

REGISTRY: dict[str, type[Check]] = {
    RedundantPreprocessorCheck.name: RedundantPreprocessorCheck,
}


def select_checks(patterns: str) -> tuple[str, ...]:
    """Resolve a comma-separated glob list such as ``-*,readability-*``.

    Patterns apply left to right; a leading ``-`` removes matches.
    """
    enabled: set[str] = set()
    for raw in patterns.split(","):
        pattern = raw.strip()
        if not pattern:
            continue
        remove = pattern.startswith("-")
        if remove:
            pattern = pattern[1:]
        matches = {name for name in REGISTRY if fnmatchcase(name, pattern)}
        if remove:
            enabled -= matches
        else:
            enabled |= matches
    return tuple(sorted(enabled))


def create_checks(names: tuple[str, ...], diagnostics: DiagnosticCollector) -> list[Check]:
    checks: list[Check] = []
    for name in names:
        check_class = REGISTRY.get(name)
        if check_class is None:
            raise ValueError(f"Unknown check: {name}")
        checks.append(check_class(diagnostics))
    return checks


__all__ = ["REGISTRY", "Check", "create_checks", "select_checks"]
