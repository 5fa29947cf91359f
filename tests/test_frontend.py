import io
import tempfile
import unittest
from pathlib import Path

from tests import _bootstrap  # noqa: F401
from pptidy.diag import FrontendError, Severity
from pptidy.frontend import check_path, check_source, read_source
from pptidy.options import CheckOptions


class FrontendTests(unittest.TestCase):
    def test_check_source_clean(self) -> None:
        result = check_source("#ifdef A\nint x;\n#endif\n", filename="clean.c")
        self.assertEqual(result.filename, "clean.c")
        self.assertEqual(result.diagnostics, ())
        self.assertEqual(result.warning_count, 0)
        self.assertFalse(result.has_errors)

    def test_check_source_reports_redundant_directive(self) -> None:
        result = check_source("#ifdef A\n#ifdef A\n#endif\n#endif\n", filename="r.c")
        self.assertEqual(
            [(d.filename, d.severity, d.line) for d in result.diagnostics],
            [("r.c", Severity.WARNING, 2), ("r.c", Severity.NOTE, 1)],
        )
        self.assertEqual(result.warning_count, 1)

    def test_state_is_not_shared_between_calls(self) -> None:
        check_source("#define A 1\n#if A\n#endif\n", filename="one.c")
        second = check_source("#if A\n#endif\n", filename="two.c")
        self.assertEqual(second.diagnostics, ())
        self.assertNotIn("A=1", second.macro_table)

    def test_check_source_macro_table(self) -> None:
        result = check_source("#define ANSWER 42\n")
        self.assertIn("ANSWER=42", result.macro_table)

    def test_preprocessor_error_becomes_frontend_error(self) -> None:
        with self.assertRaises(FrontendError) as ctx:
            check_source("#ifdef A\n", filename="open.c")
        diagnostic = ctx.exception.diagnostic
        self.assertEqual(diagnostic.stage, "preprocess")
        self.assertEqual(diagnostic.filename, "open.c")
        self.assertEqual((diagnostic.line, diagnostic.column), (1, 2))
        self.assertEqual(diagnostic.code, "PTY-PP-0104")
        self.assertEqual(diagnostic.severity, Severity.ERROR)
        self.assertEqual(str(ctx.exception), "open.c:1:2: error: Unterminated conditional directive")

    def test_error_inside_header_names_header(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            header = root / "bad.h"
            header.write_text("#error from header\n", encoding="utf-8")
            with self.assertRaises(FrontendError) as ctx:
                check_source('#include "bad.h"\n', filename=str(root / "main.c"))
            self.assertEqual(ctx.exception.diagnostic.filename, str(header.resolve()))
        self.assertEqual(ctx.exception.diagnostic.message, "from header")

    def test_invalid_cli_define_becomes_frontend_error(self) -> None:
        with self.assertRaises(FrontendError) as ctx:
            check_source("", filename="d.c", options=CheckOptions(defines=("=1",)))
        self.assertEqual(ctx.exception.diagnostic.filename, "d.c")
        self.assertIsNone(ctx.exception.diagnostic.line)
        self.assertEqual(ctx.exception.diagnostic.code, "PTY-PP-0201")

    def test_unknown_check_name(self) -> None:
        with self.assertRaises(ValueError):
            check_source("", options=CheckOptions(checks=("bogus",)))

    def test_read_source_from_file_and_stdin(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "in.c"
            path.write_text("int x;\n", encoding="utf-8")
            self.assertEqual(read_source(str(path)), (str(path), "int x;\n"))
        self.assertEqual(read_source("-", stdin=io.StringIO("int y;\n")), ("<stdin>", "int y;\n"))

    def test_check_path(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "p.c"
            path.write_text("#if X\n#if X\n#endif\n#endif\n", encoding="utf-8")
            result = check_path(path)
        self.assertEqual(result.filename, str(path))
        self.assertEqual(result.warning_count, 1)


if __name__ == "__main__":
    unittest.main()
