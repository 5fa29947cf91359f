from dataclasses import dataclass
from typing import Literal

DiagFormat = Literal["human", "json"]

DEFAULT_CHECKS = ("readability-redundant-preprocessor",)


@dataclass(frozen=True)
class CheckOptions:
    include_dirs: tuple[str, ...] = ()
    system_include_dirs: tuple[str, ...] = ()
    forced_includes: tuple[str, ...] = ()
    defines: tuple[str, ...] = ()
    undefs: tuple[str, ...] = ()
    checks: tuple[str, ...] = DEFAULT_CHECKS
    diag_format: DiagFormat = "human"
    warnings_as_errors: bool = False

    def __post_init__(self) -> None:
        if self.diag_format not in {"human", "json"}:
            raise ValueError(f"Unsupported diagnostic format: {self.diag_format}")


def normalize_options(options: CheckOptions | None) -> CheckOptions:
    return CheckOptions() if options is None else options
