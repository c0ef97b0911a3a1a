"""Static stack-depth check for straight-line programs.

The checker walks the instructions once, tracking the depth the value stack
would have. It does not follow jumps or calls: any control-flow instruction
is rejected with ``UnsupportedInstructionError``.
"""

from __future__ import annotations
from typing import Dict, Sequence, Tuple

from lexer import StackLangError
from parser import (
    ADD,
    CALL,
    DIV,
    DUP,
    ELSE,
    END_IF,
    END_WHILE,
    IF,
    MUL,
    NIP,
    OVER,
    POP,
    PRINT,
    PUSH,
    RET,
    ROT,
    SUB,
    SWAP,
    WHILE,
    Instruction,
)


class StackLangCheckError(StackLangError):
    """Raised when the static check rejects a program."""


class UnsupportedInstructionError(StackLangCheckError):
    """Raised for instructions outside the straight-line depth model."""


# kind -> (minimum depth required, net depth change)
# SWAP/ROT/OVER/NIP are modelled as depth-neutral; OVER really adds one and
# NIP really removes one.
STACK_EFFECTS: Dict[str, Tuple[int, int]] = {
    PUSH: (0, 1),
    POP: (1, -1),
    PRINT: (1, -1),
    ADD: (2, -1),
    SUB: (2, -1),
    MUL: (2, -1),
    DIV: (2, -1),
    DUP: (1, 1),
    SWAP: (2, 0),
    ROT: (3, 0),
    OVER: (2, 0),
    NIP: (2, 0),
}

CONTROL_FLOW = frozenset({WHILE, END_WHILE, IF, ELSE, END_IF, CALL, RET})


def check(instructions: Sequence[Instruction], filename: str = "<string>") -> None:
    depth = 0
    for instruction in instructions:
        if instruction.kind in CONTROL_FLOW:
            raise UnsupportedInstructionError(
                "Stack check does not support control flow",
                word=instruction.kind.lower(),
                line=instruction.line,
                column=instruction.column,
                filename=filename,
            )
        effect = STACK_EFFECTS.get(instruction.kind)
        if effect is None:
            raise UnsupportedInstructionError(
                f"Unknown instruction {instruction.kind}",
                word=instruction.kind.lower(),
                line=instruction.line,
                column=instruction.column,
                filename=filename,
            )
        required, delta = effect
        if depth < required:
            raise StackLangCheckError(
                f"Stack would underflow: needs {required}, has {depth}",
                word=instruction.kind.lower(),
                line=instruction.line,
                column=instruction.column,
                filename=filename,
            )
        depth += delta
    if depth < 0:
        raise StackLangCheckError(f"Final stack depth is negative ({depth})", filename=filename)
