#!/usr/bin/env python3
"""
StackLang command-line tests
"""

import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).parent.parent))

from stacklang import run_cli

STEPLIMIT = str(Path(__file__).parent.parent / "ext" / "steplimit.py")


def cli(*argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = run_cli(list(argv))
    return code, out.getvalue(), err.getvalue()


class TestCli(unittest.TestCase):

    def test_source_mode(self):
        code, out, err = cli("-source", "fun main 3 while 5 print 1 - end")
        self.assertEqual(code, 0)
        self.assertEqual(out.split(), ["5", "5", "5"])
        self.assertEqual(err, "")

    def test_file_mode(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "square.sl")
            with open(path, "w", encoding="utf-8") as handle:
                handle.write("# squares a number\nfun square dup * ret\nfun main\n  7 square print\nret\n")
            code, out, _ = cli(path)
        self.assertEqual(code, 0)
        self.assertEqual(out, "49\n")

    def test_missing_file(self):
        code, _, err = cli("/no/such/program.sl")
        self.assertEqual(code, 1)
        self.assertIn("Failed to read", err)

    def test_parse_error(self):
        code, out, err = cli("-source", "fun main 1 end")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertTrue(err.startswith("ParseError: Unexpected end"))

    def test_unknown_token(self):
        code, _, err = cli("-source", "fun main 1 ^")
        self.assertEqual(code, 1)
        self.assertIn("'^'", err)

    def test_function_not_found(self):
        code, _, err = cli("-source", "1 print")
        self.assertEqual(code, 1)
        self.assertIn("FunctionNotFound", err)
        self.assertIn("'main'", err)

    def test_runtime_error_traceback(self):
        code, out, err = cli("-source", "fun main 2 2 print +", "--traceback-json")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Traceback (most recent call last):", err)
        self.assertIn("StackEmptyError: Stack empty (rule: ADD)", err)
        payload = err[err.index("{"):]
        self.assertEqual(json.loads(payload)["error"]["type"], "StackEmptyError")

    def test_division_by_zero(self):
        code, _, err = cli("-source", "fun main 1 0 / print")
        self.assertEqual(code, 1)
        self.assertIn("DivisionByZeroError", err)

    def test_check_rejects_underflow(self):
        code, _, err = cli("-source", "fun main 1 +", "--check")
        self.assertEqual(code, 1)
        self.assertTrue(err.startswith("CheckError:"))

    def test_check_passes_straight_line(self):
        code, out, _ = cli("-source", "fun main 1 2 + print", "--check")
        self.assertEqual(code, 0)
        self.assertEqual(out, "3\n")

    def test_listing(self):
        code, out, _ = cli("-source", "fun main 1 print", "--listing")
        self.assertEqual(code, 0)
        self.assertEqual(out.splitlines()[0], "main:")
        self.assertIn("PUSH 1", out)

    def test_entry(self):
        code, out, _ = cli("-source", "fun go 4 print", "--entry", "go")
        self.assertEqual(code, 0)
        self.assertEqual(out, "4\n")

    def test_bad_extension(self):
        code, _, err = cli("-source", "fun main", "--ext", "/no/such/ext.py")
        self.assertEqual(code, 1)
        self.assertIn("ExtensionError", err)

    def test_bad_step_limit_value(self):
        with mock.patch.dict(os.environ, {"STACKLANG_STEP_LIMIT": "abc"}):
            code, out, err = cli("--ext", STEPLIMIT, "-source", "fun main 1 print")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("ExtensionError:", err)
        self.assertIn("STACKLANG_STEP_LIMIT", err)

    def test_very_long_literal_is_a_parse_error(self):
        code, out, err = cli("-source", "fun main " + "9" * 5000 + " print")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertTrue(err.startswith("ParseError:"))

    def test_source_mode_requires_program(self):
        code, _, err = cli("-source")
        self.assertEqual(code, 1)
        self.assertIn("-source requires a program string", err)


if __name__ == "__main__":
    unittest.main()
