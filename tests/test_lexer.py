#!/usr/bin/env python3
"""
StackLang lexer tests
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from lexer import Lexer, StackLangParseError, Token, UnknownTokenError, tokenize


def types(source):
    return [token.type for token in tokenize(source)]


class TestLexer(unittest.TestCase):

    def test_empty_input(self):
        self.assertEqual(tokenize(""), [])
        self.assertEqual(tokenize("\n"), [])
        self.assertEqual(tokenize("   \n\t\r"), [])

    def test_numbers(self):
        tokens = tokenize("3 123")
        self.assertEqual(tokens[0], Token("NUMBER", "3", 1, 1))
        self.assertEqual(tokens[1], Token("NUMBER", "123", 1, 3))

    def test_operators(self):
        self.assertEqual(types("2 2 + 3 - 4 * 5 /"), [
            "NUMBER", "NUMBER", "PLUS", "NUMBER", "MINUS", "NUMBER", "STAR", "NUMBER", "SLASH",
        ])

    def test_operators_need_no_whitespace(self):
        self.assertEqual(types("1 2+3-"), ["NUMBER", "NUMBER", "PLUS", "NUMBER", "MINUS"])

    def test_keywords(self):
        source = "print pop dup swap rot over nip while end if else fun ret"
        expected = [
            "PRINT", "POP", "DUP", "SWAP", "ROT", "OVER", "NIP",
            "WHILE", "END", "IF", "ELSE", "FUN", "RET",
        ]
        self.assertEqual(types(source), expected)

    def test_identifiers(self):
        tokens = tokenize("fun square_2 main")
        self.assertEqual([t.type for t in tokens], ["FUN", "IDENT", "IDENT"])
        self.assertEqual(tokens[1].value, "square_2")
        self.assertEqual(tokens[1].column, 5)

    def test_keywords_are_case_sensitive(self):
        self.assertEqual(types("PRINT"), ["IDENT"])

    def test_number_followed_by_word(self):
        tokens = tokenize("12abc")
        self.assertEqual([(t.type, t.value) for t in tokens], [("NUMBER", "12"), ("IDENT", "abc")])

    def test_comments(self):
        source = "# leading comment\n1 print # trailing\n2"
        tokens = tokenize(source)
        self.assertEqual([t.value for t in tokens], ["1", "print", "2"])
        self.assertEqual(tokens[2].line, 3)

    def test_line_and_column_tracking(self):
        tokens = tokenize("2 3 +\n4 5 *\n    7 -")
        last = tokens[-1]
        self.assertEqual((last.value, last.line, last.column), ("-", 3, 7))
        seven = tokens[-2]
        self.assertEqual((seven.line, seven.column), (3, 5))

    def test_carriage_return_resets_column(self):
        tokens = tokenize("1 2\r3")
        self.assertEqual((tokens[2].line, tokens[2].column), (1, 1))

    def test_unknown_symbol(self):
        with self.assertRaises(UnknownTokenError) as ctx:
            tokenize(" ^")
        error = ctx.exception
        self.assertEqual((error.word, error.line, error.column), ("^", 1, 2))

    def test_unknown_symbol_position_on_later_line(self):
        with self.assertRaises(UnknownTokenError) as ctx:
            tokenize("2 3 +\n4 5 *\n    @ 7 -")
        self.assertEqual((ctx.exception.line, ctx.exception.column), (3, 5))

    def test_literal_out_of_range(self):
        with self.assertRaises(UnknownTokenError) as ctx:
            tokenize("2147483648")
        self.assertEqual(ctx.exception.word, "2147483648")
        self.assertEqual(tokenize("2147483647")[0].value, "2147483647")

    def test_very_long_literal(self):
        digits = "9" * 5000
        with self.assertRaises(UnknownTokenError) as ctx:
            tokenize("fun main " + digits + " print")
        self.assertEqual(ctx.exception.word, digits)
        self.assertEqual(ctx.exception.column, 10)

    def test_leading_zeros_do_not_count(self):
        self.assertEqual(tokenize("0" * 20 + "42")[0].value, "0" * 20 + "42")

    def test_unknown_token_is_a_parse_error(self):
        self.assertTrue(issubclass(UnknownTokenError, StackLangParseError))

    def test_error_message_names_file(self):
        with self.assertRaises(UnknownTokenError) as ctx:
            Lexer("1 $", "prog.sl").tokenize()
        self.assertIn("prog.sl:1:3", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
