import tempfile
import unittest
from pathlib import Path

from tests import _bootstrap  # noqa: F401
from pptidy.options import CheckOptions
from pptidy.preprocessor import (
    PPCallbacks,
    Preprocessor,
    PreprocessorError,
    _parse_macro_parameters,
    preprocess_source,
)
from pptidy.lexer import lex_pp
from pptidy.source import SourceLocation, SourceManager, SourceRange


class _Recorder(PPCallbacks):
    def __init__(self) -> None:
        self.events: list[tuple[object, ...]] = []
        self.sources: SourceManager | None = None

    def on_file_entered(self, filename: str, *, is_main: bool) -> None:
        self.events.append(("file", Path(filename).name, is_main))

    def on_include(
        self,
        location: SourceLocation,
        include_name: str,
        *,
        is_angled: bool,
        path: str,
    ) -> None:
        self.events.append(("include", include_name, is_angled))

    def on_if(self, location: SourceLocation, condition: SourceRange) -> None:
        assert self.sources is not None
        text = self.sources.get_source_text(condition)
        self.events.append(("if", location.line, location.column, text))

    def on_ifdef(self, location: SourceLocation, macro_name: str) -> None:
        self.events.append(("ifdef", location.line, location.column, macro_name))

    def on_ifndef(self, location: SourceLocation, macro_name: str) -> None:
        self.events.append(("ifndef", location.line, location.column, macro_name))

    def on_elif(
        self, location: SourceLocation, condition: SourceRange, if_location: SourceLocation
    ) -> None:
        self.events.append(("elif", location.line, if_location.line))

    def on_else(self, location: SourceLocation, if_location: SourceLocation) -> None:
        self.events.append(("else", location.line, if_location.line))

    def on_endif(self, location: SourceLocation, if_location: SourceLocation) -> None:
        self.events.append(("endif", location.line, if_location.line))

    def directive_events(self) -> list[tuple[object, ...]]:
        return [event for event in self.events if event[0] not in {"file", "include"}]


def _run(
    source: str,
    *,
    filename: str = "main.c",
    options: CheckOptions | None = None,
) -> _Recorder:
    recorder = _Recorder()
    processor = Preprocessor(options or CheckOptions())
    recorder.sources = processor.sources
    processor.add_callbacks(recorder)
    processor.process(source, filename=filename)
    return recorder


class DirectiveEventTests(unittest.TestCase):
    def test_if_reports_condition_text_and_name_column(self) -> None:
        recorder = _run("#if A && B // trailing\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("if", 1, 2, "A && B"), ("endif", 2, 1)],
        )

    def test_directive_name_column_with_indentation(self) -> None:
        recorder = _run("  #  ifdef FOO\n#endif\n")
        self.assertEqual(recorder.directive_events()[0], ("ifdef", 1, 6, "FOO"))

    def test_condition_text_is_verbatim(self) -> None:
        recorder = _run("#if A  /* c */ ||B\n#endif\n")
        self.assertEqual(recorder.directive_events()[0], ("if", 1, 2, "A  /* c */ ||B"))

    def test_condition_spanning_continuation(self) -> None:
        recorder = _run("#if A && \\\n    B\nint x;\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("if", 1, 2, "A && \\\n    B"), ("endif", 4, 1)],
        )

    def test_events_are_reported_inside_inactive_regions(self) -> None:
        recorder = _run("#ifdef FOO\n#ifndef BAR\n#endif\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [
                ("ifdef", 1, 2, "FOO"),
                ("ifndef", 2, 2, "BAR"),
                ("endif", 3, 2),
                ("endif", 4, 1),
            ],
        )

    def test_elif_and_else_point_at_opening_directive(self) -> None:
        recorder = _run("#if 0\n#elif 1\n#else\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("if", 1, 2, "0"), ("elif", 2, 1), ("else", 3, 1), ("endif", 4, 1)],
        )

    def test_empty_if_in_inactive_region(self) -> None:
        recorder = _run("#if 0\n#if\n#endif\n#endif\n")
        self.assertEqual(recorder.directive_events()[1], ("if", 2, 2, ""))

    def test_unlexable_condition_in_inactive_region(self) -> None:
        recorder = _run("#if 0\n#if it's broken  \n#endif\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("if", 1, 2, "0"), ("if", 2, 2, "it's broken"), ("endif", 3, 2), ("endif", 4, 1)],
        )

    def test_unlexable_macro_name_in_inactive_region(self) -> None:
        recorder = _run("#if 0\n#ifdef it's\n#endif\n#endif\n")
        self.assertEqual(recorder.directive_events()[1], ("ifdef", 2, 2, "it"))

    def test_unlexable_elif_after_taken_branch(self) -> None:
        recorder = _run("#if 1\n#elif don't care\n#endif\n")
        self.assertEqual(recorder.directive_events()[1], ("elif", 2, 1))

    def test_unlexable_condition_in_active_region(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#if it's\n#endif\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0104")

    def test_directive_inside_block_comment_is_ignored(self) -> None:
        recorder = _run("/*\n#ifdef FOO\n*/\n#ifdef BAR\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("ifdef", 4, 2, "BAR"), ("endif", 5, 4)],
        )

    def test_directive_with_multiline_trailing_comment(self) -> None:
        recorder = _run("#ifdef FOO /* starts\n  ends */\n#endif\n")
        self.assertEqual(
            recorder.directive_events(),
            [("ifdef", 1, 2, "FOO"), ("endif", 3, 1)],
        )

    def test_crlf_line_endings(self) -> None:
        recorder = _run("#if A\r\n#endif\r\n")
        self.assertEqual(recorder.directive_events()[0], ("if", 1, 2, "A"))

    def test_preprocess_source_passes_callbacks(self) -> None:
        recorder = _Recorder()
        result = preprocess_source("#ifdef X\n#endif\n", filename="t.c", callbacks=(recorder,))
        self.assertEqual(result.filename, "t.c")
        self.assertIn(("ifdef", 1, 2, "X"), recorder.events)
        self.assertEqual(result.sources.main_file, "t.c")


class ConditionalStateTests(unittest.TestCase):
    def test_active_define_is_seen_by_later_if(self) -> None:
        result = preprocess_source("#define A 2\n#if A == 2\n#define B\n#endif\n")
        self.assertIn("B=", result.macro_table)

    def test_inactive_define_is_ignored(self) -> None:
        result = preprocess_source("#if 0\n#define B 1\n#endif\n")
        self.assertNotIn("B=1", result.macro_table)

    def test_else_branch_after_false_if(self) -> None:
        result = preprocess_source("#ifdef MISSING\n#define A 1\n#else\n#define A 2\n#endif\n")
        self.assertIn("A=2", result.macro_table)

    def test_elif_chain_takes_first_true_branch(self) -> None:
        source = "#if 0\n#define R 0\n#elif 1\n#define R 1\n#elif 1\n#define R 2\n#endif\n"
        result = preprocess_source(source)
        self.assertIn("R=1", result.macro_table)

    def test_defined_operator_forms(self) -> None:
        source = "#define X\n#if defined X && defined(X) && !defined(Y)\n#define OK\n#endif\n"
        result = preprocess_source(source)
        self.assertIn("OK=", result.macro_table)

    def test_object_like_macros_expand_recursively(self) -> None:
        source = "#define A B\n#define B 3\n#if A == 3\n#define OK\n#endif\n"
        result = preprocess_source(source)
        self.assertIn("OK=", result.macro_table)

    def test_self_referential_macro_terminates(self) -> None:
        source = "#define A A\n#if A\n#define BAD\n#endif\n"
        result = preprocess_source(source)
        self.assertNotIn("BAD=", result.macro_table)

    def test_function_like_macro_expands_in_condition(self) -> None:
        source = "#define F(x) x\n#if F(1)\n#define OK\n#endif\n"
        result = preprocess_source(source)
        self.assertIn("F(x)=x", result.macro_table)
        self.assertIn("OK=", result.macro_table)

    def test_function_like_macro_selects_branch_before_error(self) -> None:
        source = (
            "#define AT_LEAST(x) ((x) >= 2)\n"
            "#if !AT_LEAST(3)\n#error too old\n#endif\n"
        )
        preprocess_source(source)

    def test_function_like_macro_nested_arguments(self) -> None:
        source = "#define ID(x) x\n#define TWO 2\n#if ID(ID(TWO)) == 2\n#define OK\n#endif\n"
        self.assertIn("OK=", preprocess_source(source).macro_table)

    def test_function_like_macro_without_arguments(self) -> None:
        source = "#define Z() 1\n#if Z()\n#define OK\n#endif\n"
        self.assertIn("OK=", preprocess_source(source).macro_table)

    def test_function_like_name_without_call_is_zero(self) -> None:
        source = "#define F(x) 1\n#if F\n#define BAD\n#endif\n"
        self.assertNotIn("BAD=", preprocess_source(source).macro_table)

    def test_variadic_macro(self) -> None:
        source = (
            "#define FIRST(x, ...) x\n#define SUM(...) (__VA_ARGS__ + 0)\n"
            "#if FIRST(1, 0, 0) && SUM(2) == 2\n#define OK\n#endif\n"
        )
        self.assertIn("OK=", preprocess_source(source).macro_table)

    def test_token_paste(self) -> None:
        source = (
            "#define CAT(a, b) a ## b\n#define V12 1\n"
            "#if CAT(V, 12) && CAT(, 1)\n#define OK\n#endif\n"
        )
        self.assertIn("OK=", preprocess_source(source).macro_table)

    def test_macro_argument_count_mismatch(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#define F(a, b) a\n#if F(1)\n#endif\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0201")
        self.assertEqual((ctx.exception.line, ctx.exception.column), (2, 2))

    def test_unterminated_macro_invocation(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#define F(a) a\n#if F(1\n#endif\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0201")

    def test_undef(self) -> None:
        result = preprocess_source("#define A 1\n#undef A\n")
        self.assertNotIn("A=1", result.macro_table)

    def test_cli_defines_and_undefs(self) -> None:
        options = CheckOptions(defines=("A", "B=7"), undefs=("__STDC_HOSTED__",))
        result = preprocess_source("", options=options)
        self.assertIn("A=1", result.macro_table)
        self.assertIn("B=7", result.macro_table)
        self.assertNotIn("__STDC_HOSTED__=1", result.macro_table)

    def test_invalid_cli_define(self) -> None:
        with self.assertRaises(PreprocessorError):
            Preprocessor(CheckOptions(defines=("1A=2",)))

    def test_invalid_cli_undef(self) -> None:
        with self.assertRaises(PreprocessorError):
            Preprocessor(CheckOptions(undefs=("not valid",)))

    def test_error_directive_in_active_region(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#error stop here\n", filename="e.c")
        self.assertEqual(ctx.exception.message, "stop here")
        self.assertEqual(ctx.exception.code, "PTY-PP-0104")

    def test_error_directive_in_inactive_region(self) -> None:
        preprocess_source("#if 0\n#error skipped\n#endif\n")

    def test_unknown_directive(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#frobnicate\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0101")

    def test_ignored_directives(self) -> None:
        preprocess_source('#pragma pack(1)\n#warning careful\n#line 10 "x.c"\n#ident "v1"\n')

    def test_invalid_if_expression_in_active_region(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#if 1 +\n#endif\n", filename="bad.c")
        self.assertEqual(ctx.exception.code, "PTY-PP-0103")
        self.assertEqual((ctx.exception.line, ctx.exception.column), (1, 2))

    def test_invalid_if_expression_in_inactive_region(self) -> None:
        preprocess_source("#if 0\n#if 1 +\n#endif\n#endif\n")

    def test_empty_if_in_active_region(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#if\n#endif\n")

    def test_missing_macro_name(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#ifdef 1\n#endif\n")

    def test_define_without_name(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#define\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0201")


class ConditionalStructureTests(unittest.TestCase):
    def test_unterminated_conditional(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#ifdef A\nint x;\n", filename="u.c")
        self.assertEqual((ctx.exception.line, ctx.exception.column), (1, 2))
        self.assertEqual(ctx.exception.filename, "u.c")

    def test_endif_without_if(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#endif\n")

    def test_else_without_if(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#else\n")

    def test_elif_after_else(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#if 1\n#else\n#elif 1\n#endif\n")

    def test_duplicate_else(self) -> None:
        with self.assertRaises(PreprocessorError):
            preprocess_source("#if 1\n#else\n#else\n#endif\n")

    def test_conditional_cannot_span_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "open.h").write_text("#ifdef A\n", encoding="utf-8")
            main = root / "main.c"
            source = '#include "open.h"\n#endif\n'
            with self.assertRaises(PreprocessorError):
                preprocess_source(source, filename=str(main))


class IncludeTests(unittest.TestCase):
    def test_include_quoted_from_source_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "inc.h").write_text("#define FROM_HEADER 1\n", encoding="utf-8")
            main = root / "main.c"
            recorder = _run('#include "inc.h"\n', filename=str(main))
        self.assertEqual(
            recorder.events,
            [("file", "main.c", True), ("include", "inc.h", False), ("file", "inc.h", False)],
        )

    def test_include_angle_from_include_paths(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            include = root / "include"
            include.mkdir()
            (include / "lib.h").write_text("#define LIB 1\n", encoding="utf-8")
            options = CheckOptions(include_dirs=(str(include),))
            result = preprocess_source(
                "#include <lib.h>\n", filename=str(root / "main.c"), options=options
            )
        self.assertIn("LIB=1", result.macro_table)
        self.assertEqual(len(result.include_trace), 1)
        self.assertIn("#include <lib.h> ->", result.include_trace[0])

    def test_angle_include_skips_source_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "local.h").write_text("", encoding="utf-8")
            with self.assertRaises(PreprocessorError) as ctx:
                preprocess_source("#include <local.h>\n", filename=str(root / "main.c"))
        self.assertEqual(ctx.exception.code, "PTY-PP-0102")

    def test_include_through_macro(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "cfg.h").write_text("#define CFG 1\n", encoding="utf-8")
            source = '#define HEADER "cfg.h"\n#include HEADER\n'
            result = preprocess_source(source, filename=str(root / "main.c"))
        self.assertIn("CFG=1", result.macro_table)

    def test_include_in_inactive_region_is_not_followed(self) -> None:
        preprocess_source('#if 0\n#include "missing.h"\n#endif\n', filename="main.c")

    def test_include_missing(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source('#include "missing.h"\n', filename="main.c")
        self.assertEqual(ctx.exception.code, "PTY-PP-0102")
        self.assertIn('"missing.h"', ctx.exception.message)

    def test_include_guard_and_pragma_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "guarded.h").write_text(
                "#ifndef GUARDED_H\n#define GUARDED_H\n#endif\n", encoding="utf-8"
            )
            (root / "once.h").write_text("#pragma once\n", encoding="utf-8")
            source = (
                '#include "guarded.h"\n#include "guarded.h"\n'
                '#include "once.h"\n#include "once.h"\n'
            )
            recorder = _run(source, filename=str(root / "main.c"))
        entered = [event[1] for event in recorder.events if event[0] == "file"]
        self.assertEqual(entered, ["main.c", "guarded.h", "guarded.h", "once.h"])
        ifndefs = [event for event in recorder.events if event[0] == "ifndef"]
        self.assertEqual(len(ifndefs), 2)

    def test_import_is_included_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "objc.h").write_text("", encoding="utf-8")
            source = '#import "objc.h"\n#import "objc.h"\n'
            recorder = _run(source, filename=str(root / "main.c"))
        entered = [event[1] for event in recorder.events if event[0] == "file"]
        self.assertEqual(entered, ["main.c", "objc.h"])

    def test_recursive_include_is_too_deep(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "self.h").write_text('#include "self.h"\n', encoding="utf-8")
            with self.assertRaises(PreprocessorError) as ctx:
                preprocess_source('#include "self.h"\n', filename=str(root / "main.c"))
        self.assertEqual(ctx.exception.code, "PTY-PP-0302")

    def test_include_next_continues_search(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            first = root / "first"
            second = root / "second"
            first.mkdir()
            second.mkdir()
            (first / "wrap.h").write_text(
                "#define FIRST 1\n#include_next <wrap.h>\n", encoding="utf-8"
            )
            (second / "wrap.h").write_text("#define SECOND 1\n", encoding="utf-8")
            options = CheckOptions(include_dirs=(str(first), str(second)))
            result = preprocess_source(
                "#include <wrap.h>\n", filename=str(root / "main.c"), options=options
            )
        self.assertIn("FIRST=1", result.macro_table)
        self.assertIn("SECOND=1", result.macro_table)

    def test_system_include_dirs_are_searched_after_include_dirs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            user = root / "user"
            system = root / "system"
            user.mkdir()
            system.mkdir()
            (user / "h.h").write_text("#define WHO 1\n", encoding="utf-8")
            (system / "h.h").write_text("#define WHO 2\n", encoding="utf-8")
            options = CheckOptions(include_dirs=(str(user),), system_include_dirs=(str(system),))
            result = preprocess_source(
                "#include <h.h>\n", filename=str(root / "main.c"), options=options
            )
        self.assertIn("WHO=1", result.macro_table)

    def test_forced_include_runs_before_main_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            forced = root / "config.h"
            forced.write_text("#define FORCED 1\n", encoding="utf-8")
            options = CheckOptions(forced_includes=(str(forced),))
            recorder = _run("#if FORCED\n#endif\n", filename=str(root / "main.c"), options=options)
        files = [event for event in recorder.events if event[0] == "file"]
        self.assertEqual(files, [("file", "config.h", False), ("file", "main.c", True)])

    def test_forced_include_missing(self) -> None:
        options = CheckOptions(forced_includes=("definitely-missing-config.h",))
        with self.assertRaises(PreprocessorError):
            preprocess_source("", filename="<stdin>", options=options)

    def test_has_include(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "present.h").write_text("", encoding="utf-8")
            source = (
                '#if __has_include("present.h") && !__has_include("absent.h")\n'
                "#define OK\n#endif\n"
                "#if defined(__has_include)\n#define HAS\n#endif\n"
            )
            result = preprocess_source(source, filename=str(root / "main.c"))
        self.assertIn("OK=", result.macro_table)
        self.assertIn("HAS=", result.macro_table)

    def test_has_include_invalid_operand(self) -> None:
        with self.assertRaises(PreprocessorError) as ctx:
            preprocess_source("#if __has_include(MISSING)\n#endif\n")
        self.assertEqual(ctx.exception.code, "PTY-PP-0103")


class MacroParameterTests(unittest.TestCase):
    def test_parse_macro_parameters(self) -> None:
        tokens = lex_pp("(a, b, ...) a")[:-1]
        self.assertEqual(_parse_macro_parameters(tokens), (["a", "b"], True, 7))

    def test_parse_empty_parameters(self) -> None:
        tokens = lex_pp("() 1")[:-1]
        self.assertEqual(_parse_macro_parameters(tokens), ([], False, 2))

    def test_parse_invalid_parameters(self) -> None:
        self.assertIsNone(_parse_macro_parameters(lex_pp("(a,)")[:-1]))
        self.assertIsNone(_parse_macro_parameters(lex_pp("(1)")[:-1]))
        self.assertIsNone(_parse_macro_parameters(lex_pp("(..., a)")[:-1]))
        self.assertIsNone(_parse_macro_parameters(lex_pp("(a")[:-1]))


if __name__ == "__main__":
    unittest.main()
