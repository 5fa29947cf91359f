import argparse
import sys
from collections.abc import Sequence
from typing import TextIO, cast

from pptidy.checks import select_checks
from pptidy.diag import FrontendError, Severity
from pptidy.frontend import check_source, read_source
from pptidy.options import CheckOptions


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pptidy",
        description="Report redundant nested preprocessor conditionals in C source files.",
    )
    parser.add_argument(
        "inputs",
        nargs="*",
        help="paths to C source files, or - to read from stdin",
    )
    parser.add_argument(
        "--checks",
        default="*",
        help="comma-separated check globs; prefix with - to disable (default: *)",
    )
    parser.add_argument(
        "--list-checks",
        action="store_true",
        help="print the enabled checks and exit",
    )
    parser.add_argument("-I", dest="include_dirs", action="append", default=[], help="include path")
    parser.add_argument(
        "-isystem",
        dest="system_include_dirs",
        action="append",
        default=[],
        help="system include path",
    )
    parser.add_argument(
        "-include",
        dest="forced_includes",
        action="append",
        default=[],
        help="force include before the main source",
    )
    parser.add_argument("-D", dest="defines", action="append", default=[], help="define macro")
    parser.add_argument("-U", dest="undefs", action="append", default=[], help="undefine macro")
    parser.add_argument(
        "--diag-format",
        choices=("human", "json"),
        default="human",
        help="diagnostic output format",
    )
    parser.add_argument(
        "-Werror",
        dest="warnings_as_errors",
        action="store_true",
        help="treat check warnings as errors",
    )
    parser.add_argument(
        "--dump-include-trace",
        action="store_true",
        help="print include resolution trace",
    )
    parser.add_argument(
        "--dump-macro-table",
        action="store_true",
        help="print macros defined at end of preprocessing",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="do not print the warning summary",
    )
    return parser


def main(argv: Sequence[str] | None = None, *, stdin: TextIO | None = None) -> int:
    parser = _build_arg_parser()
    effective_argv = list(argv) if argv is not None else sys.argv[1:]
    try:
        args = parser.parse_args(effective_argv)
    except SystemExit as error:
        return cast(int, error.code)
    checks = select_checks(args.checks)
    if args.list_checks:
        print("Enabled checks:")
        for name in checks:
            print(f"    {name}")
        return 0
    if not checks:
        print("pptidy: error: no checks enabled", file=sys.stderr)
        return 2
    if not args.inputs:
        print("pptidy: error: no input files", file=sys.stderr)
        return 2
    options = CheckOptions(
        include_dirs=tuple(args.include_dirs),
        system_include_dirs=tuple(args.system_include_dirs),
        forced_includes=tuple(args.forced_includes),
        defines=tuple(args.defines),
        undefs=tuple(args.undefs),
        checks=checks,
        diag_format=args.diag_format,
        warnings_as_errors=args.warnings_as_errors,
    )
    exit_code = 0
    warning_count = 0
    promoted_count = 0
    for path in args.inputs:
        try:
            filename, source = read_source(path, stdin=stdin)
        except (OSError, UnicodeError) as error:
            print(f"pptidy: I/O error: {error}", file=sys.stderr)
            exit_code = 1
            continue
        try:
            result = check_source(source, filename=filename, options=options)
        except FrontendError as error:
            if args.diag_format == "json":
                print(error.diagnostic.to_json(), file=sys.stderr)
            else:
                print(error, file=sys.stderr)
            exit_code = 1
            continue
        if args.dump_include_trace:
            for line in result.include_trace:
                print(line)
        if args.dump_macro_table:
            for line in result.macro_table:
                print(line)
        for diagnostic in result.diagnostics:
            print(diagnostic.to_json() if args.diag_format == "json" else diagnostic)
        warning_count += result.warning_count
        promoted_count += sum(
            1 for d in result.diagnostics if d.check is not None and d.severity is Severity.ERROR
        )
        if result.has_errors:
            exit_code = 1
    if warning_count and not args.quiet:
        noun = "warning" if warning_count == 1 else "warnings"
        print(f"{warning_count} {noun} generated.", file=sys.stderr)
    if promoted_count and not args.quiet:
        noun = "warning treated as error" if promoted_count == 1 else "warnings treated as errors"
        print(f"{promoted_count} {noun}.", file=sys.stderr)
    return exit_code
