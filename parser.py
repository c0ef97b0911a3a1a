from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from lexer import FunctionNotFoundError, StackLangParseError, Token


PUSH = "PUSH"
POP = "POP"
ADD = "ADD"
SUB = "SUB"
MUL = "MUL"
DIV = "DIV"
PRINT = "PRINT"
DUP = "DUP"
SWAP = "SWAP"
ROT = "ROT"
OVER = "OVER"
NIP = "NIP"
WHILE = "WHILE"
END_WHILE = "END_WHILE"
IF = "IF"
ELSE = "ELSE"
END_IF = "END_IF"
CALL = "CALL"
RET = "RET"

OPCODES: Tuple[str, ...] = (
    PUSH,
    POP,
    ADD,
    SUB,
    MUL,
    DIV,
    PRINT,
    DUP,
    SWAP,
    ROT,
    OVER,
    NIP,
    WHILE,
    END_WHILE,
    IF,
    ELSE,
    END_IF,
    CALL,
    RET,
)

# Opcodes whose ``arg`` is meaningful.
PAYLOAD_OPCODES = frozenset({PUSH, WHILE, END_WHILE, IF, ELSE, CALL})
JUMP_OPCODES = frozenset({WHILE, END_WHILE, IF, ELSE})

# Token types that map one-to-one onto a payload-free instruction.
SIMPLE_TOKENS: Dict[str, str] = {
    "PLUS": ADD,
    "MINUS": SUB,
    "STAR": MUL,
    "SLASH": DIV,
    "PRINT": PRINT,
    "POP": POP,
    "DUP": DUP,
    "SWAP": SWAP,
    "ROT": ROT,
    "OVER": OVER,
    "NIP": NIP,
    "RET": RET,
}

# Source spelling of the block openers, for diagnostics.
OPENER_WORDS = {WHILE: "while", IF: "if", ELSE: "else"}


@dataclass(frozen=True)
class Instruction:
    kind: str
    arg: int = 0
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.kind in PAYLOAD_OPCODES:
            return f"{self.kind} {self.arg}"
        return self.kind


@dataclass(frozen=True)
class Program:
    instructions: Tuple[Instruction, ...]
    functions: Dict[str, int] = field(default_factory=dict)
    filename: str = "<string>"
    source_lines: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)

    def function_at(self, entry: int) -> Optional[str]:
        """Return the name declared at ``entry`` (last declaration wins)."""
        found: Optional[str] = None
        for name, index in self.functions.items():
            if index == entry:
                found = name
        return found

    def source_line(self, line: int) -> Optional[str]:
        if 1 <= line <= len(self.source_lines):
            return self.source_lines[line - 1].strip()
        return None


class Parser:
    """Single-pass resolver from tokens to a flat, jump-resolved program.

    Block openers (``while``/``if``/``else``) are emitted as placeholders and
    their indices kept on a resolution stack; when the partner token arrives
    the placeholder is overwritten with the now-known target index.
    """

    def __init__(
        self,
        tokens: Sequence[Token],
        filename: str = "<string>",
        source_lines: Optional[Sequence[str]] = None,
    ) -> None:
        self.tokens = tokens
        self.filename = filename
        self.source_lines = tuple(source_lines or ())
        self.index = 0
        self.instructions: List[Instruction] = []
        self.functions: Dict[str, int] = {}
        self.open_blocks: List[int] = []

    def parse(self) -> Program:
        while self.index < len(self.tokens):
            token = self._advance()
            simple = SIMPLE_TOKENS.get(token.type)
            if simple is not None:
                self._emit(simple, token)
            elif token.type == "NUMBER":
                self._emit(PUSH, token, int(token.value.lstrip("0") or "0"))
            elif token.type == "WHILE":
                self.open_blocks.append(len(self.instructions))
                self._emit(WHILE, token)
            elif token.type == "IF":
                self.open_blocks.append(len(self.instructions))
                self._emit(IF, token)
            elif token.type == "ELSE":
                self._parse_else(token)
            elif token.type == "END":
                self._parse_end(token)
            elif token.type == "FUN":
                self._parse_fun(token)
            elif token.type == "IDENT":
                self._parse_call(token)
            else:
                raise self._error(token, f"Unexpected token type {token.type}")

        if self.open_blocks:
            opener = self.instructions[self.open_blocks[0]]
            word = OPENER_WORDS[opener.kind]
            raise StackLangParseError(
                f"This `{word}` has no matching end",
                word=word,
                line=opener.line,
                column=opener.column,
                filename=self.filename,
            )
        return Program(
            instructions=tuple(self.instructions),
            functions=dict(self.functions),
            filename=self.filename,
            source_lines=self.source_lines,
        )

    def _parse_else(self, token: Token) -> None:
        if not self.open_blocks or self.instructions[self.open_blocks[-1]].kind != IF:
            raise self._error(token, "This `else` has no matching if")
        opener = self.open_blocks.pop()
        here = len(self.instructions)
        self._patch(opener, here)
        self.open_blocks.append(here)
        self._emit(ELSE, token)

    def _parse_end(self, token: Token) -> None:
        if not self.open_blocks:
            raise self._error(token, "Unexpected end")
        opener = self.open_blocks.pop()
        kind = self.instructions[opener].kind
        here = len(self.instructions)
        if kind == WHILE:
            self._emit(END_WHILE, token, opener)
        elif kind in (IF, ELSE):
            self._emit(END_IF, token)
        else:
            raise StackLangParseError(
                f"Impossible block opener {kind} at index {opener}",
                filename=self.filename,
            )
        self._patch(opener, here)

    def _parse_fun(self, token: Token) -> None:
        if self.index >= len(self.tokens) or self.tokens[self.index].type != "IDENT":
            raise self._error(token, "Expected a function name after `fun`")
        name = self._advance().value
        self.functions[name] = len(self.instructions)

    def _parse_call(self, token: Token) -> None:
        entry = self.functions.get(token.value)
        if entry is None:
            raise FunctionNotFoundError(
                "Function not found",
                word=token.value,
                line=token.line,
                column=token.column,
                filename=self.filename,
            )
        self._emit(CALL, token, entry)

    def _emit(self, kind: str, token: Token, arg: int = 0) -> None:
        self.instructions.append(Instruction(kind, arg, token.line, token.column))

    def _patch(self, index: int, target: int) -> None:
        self.instructions[index] = replace(self.instructions[index], arg=target)

    def _advance(self) -> Token:
        token = self.tokens[self.index]
        self.index += 1
        return token

    def _error(self, token: Token, message: str) -> StackLangParseError:
        return StackLangParseError(
            message,
            word=token.value,
            line=token.line,
            column=token.column,
            filename=self.filename,
        )


def parse(
    tokens: Sequence[Token],
    filename: str = "<string>",
    source_lines: Optional[Sequence[str]] = None,
) -> Program:
    return Parser(tokens, filename, source_lines).parse()


def format_listing(program: Program) -> str:
    entries: Dict[int, List[str]] = {}
    for name, entry in program.functions.items():
        entries.setdefault(entry, []).append(name)
    lines: List[str] = []
    for index, instruction in enumerate(program.instructions):
        for name in entries.get(index, []):
            lines.append(f"{name}:")
        lines.append(f"  {index:04d}  {str(instruction):<14} ; {instruction.line}:{instruction.column}")
    for name in entries.get(len(program.instructions), []):
        lines.append(f"{name}:")
    return "\n".join(lines)
