from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


INT32_MAX = 2 ** 31 - 1


class StackLangError(Exception):
    """Base class for interpreter errors."""

    def __init__(
        self,
        message: str,
        *,
        word: str = "",
        line: int = 0,
        column: int = 0,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.word = word
        self.line = line
        self.column = column
        self.filename = filename

    @property
    def comment(self) -> str:
        return self.message

    def __str__(self) -> str:
        if self.line == 0 and self.column == 0:
            return f"{self.message} ('{self.word}')" if self.word else self.message
        where = f"{self.filename}:{self.line}:{self.column}" if self.filename else f"{self.line}:{self.column}"
        if self.word:
            return f"{self.message} ('{self.word}' at {where})"
        return f"{self.message} (at {where})"


class StackLangParseError(StackLangError):
    """Raised when tokenizing or parsing fails."""


class UnknownTokenError(StackLangParseError):
    """Raised for a character or literal the lexer cannot classify."""


class FunctionNotFoundError(StackLangError):
    """Raised when a called or entry function has not been declared."""


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


KEYWORDS = {
    "print": "PRINT",
    "pop": "POP",
    "dup": "DUP",
    "swap": "SWAP",
    "rot": "ROT",
    "over": "OVER",
    "nip": "NIP",
    "while": "WHILE",
    "end": "END",
    "if": "IF",
    "else": "ELSE",
    "fun": "FUN",
    "ret": "RET",
}

SYMBOLS = {
    "+": "PLUS",
    "-": "MINUS",
    "*": "STAR",
    "/": "SLASH",
}

_DIGITS = "0123456789"
_WORD_START = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_"
_WORD_PART = _WORD_START + _DIGITS


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t":
                _advance()
                continue
            if ch == "\r":
                # Carriage return rewinds the column, like a terminal would.
                self.index += 1
                self.column = 1
                continue
            if ch == "\n":
                _advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch in _DIGITS:
                tokens_append(self._consume_number())
                continue
            if ch in _WORD_START:
                tokens_append(self._consume_word())
                continue
            raise UnknownTokenError(
                "Unknown token",
                word=ch,
                line=self.line,
                column=self.column,
                filename=self.filename,
            )
        return tokens

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        digits = self._consume_while(_DIGITS)
        # Length check first: int() refuses very long digit strings.
        significant = digits.lstrip("0")
        if len(significant) > len(str(INT32_MAX)) or int(significant or "0") > INT32_MAX:
            raise UnknownTokenError(
                "Integer literal does not fit in 32 bits",
                word=digits,
                line=line,
                column=col,
                filename=self.filename,
            )
        return Token("NUMBER", digits, line, col)

    def _consume_word(self) -> Token:
        line, col = self.line, self.column
        value = self._consume_while(_WORD_PART)
        token_type: str = KEYWORDS.get(value, "IDENT")
        return Token(token_type, value, line, col)

    def _consume_while(self, allowed: str) -> str:
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] in allowed:
            chars.append(text[self.index])
            _advance()
        return "".join(chars)

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def tokenize(text: str, filename: str = "<string>") -> List[Token]:
    return Lexer(text, filename).tokenize()
