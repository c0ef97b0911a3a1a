from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Type

from extensions import HookRegistry, RuntimeServices, StepContext, build_default_services
from lexer import FunctionNotFoundError, StackLangError
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
    OPCODES,
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
    Program,
)
from stack import ValueStack


DEFAULT_ENTRY = "main"
DEFAULT_HISTORY = 1000


class StackLangRuntimeError(StackLangError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        instruction: Optional[Instruction] = None,
        rule: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            word=instruction.kind.lower() if instruction else "",
            line=instruction.line if instruction else 0,
            column=instruction.column if instruction else 0,
            filename=filename,
        )
        self.instruction = instruction
        self.rule = rule or (instruction.kind if instruction else None)
        self.step_index: Optional[int] = None


class StackEmptyError(StackLangRuntimeError):
    """Raised when an instruction pops or peeks an empty value stack."""


class DivisionByZeroError(StackLangRuntimeError):
    """Raised when DIV finds a zero divisor on top of the stack."""


class HaltSignal(Exception):
    """Raised by RET when the call stack is empty: the entry function returned."""


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    index: int
    rule: str
    line: int
    column: int
    depth: int
    stack_snapshot: Optional[List[int]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 1

    def reset(self) -> None:
        self.entries.clear()
        self.next_state_index = 1

    def record(
        self,
        *,
        index: int,
        instruction: Instruction,
        depth: int,
        stack_snapshot: Optional[List[int]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            index=index,
            rule=instruction.kind,
            line=instruction.line,
            column=instruction.column,
            depth=depth,
            stack_snapshot=stack_snapshot,
        )
        self.entries.append(entry)
        self.next_state_index += 1
        return entry

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


# A handler executes one instruction found at ``index`` and returns the
# index of the next instruction to run.
Handler = Callable[[Instruction, int], int]


class StackMachine:
    def __init__(
        self,
        stack: Optional[ValueStack] = None,
        *,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.stack = stack if stack is not None else ValueStack()
        self.verbose = verbose
        self.services = services or build_default_services()
        self.hook_registry: HookRegistry = self.services.hook_registry
        self.logger = StateLogger(verbose=verbose, history=history)
        self.call_stack: List[int] = []
        self.output: List[int] = []
        self.program: Optional[Program] = None
        self.entry = DEFAULT_ENTRY
        self.pc = 0
        self.handlers: Dict[str, Handler] = {
            PUSH: self._push,
            POP: self._pop_op,
            ADD: self._add,
            SUB: self._sub,
            MUL: self._mul,
            DIV: self._div,
            PRINT: self._print,
            DUP: self._dup,
            SWAP: self._swap,
            ROT: self._rot,
            OVER: self._over,
            NIP: self._nip,
            WHILE: self._while,
            END_WHILE: self._end_while,
            IF: self._if,
            ELSE: self._else,
            END_IF: self._end_if,
            CALL: self._call,
            RET: self._ret,
        }

    def missing_handlers(self) -> List[str]:
        return [kind for kind in OPCODES if kind not in self.handlers]

    def execute(self, program: Program, entry: str = DEFAULT_ENTRY) -> List[int]:
        """Run ``program`` from the function named ``entry``.

        Returns the printed values in execution order. The value stack, call
        stack and output are reset first, so a machine can be reused.
        """
        self.program = program
        self.entry = entry
        self.stack.clear()
        self.call_stack = []
        self.output = []
        self.logger.reset()
        self.pc = 0

        start = program.functions.get(entry)
        if start is None:
            raise FunctionNotFoundError("Function not found", word=entry, filename=program.filename)

        try:
            self._emit_event("program_start", self, program)
            self._run(start)
            output = list(self.output)
            self._emit_event("program_end", self, output)
        except StackLangRuntimeError as error:
            if error.step_index is None and self.logger.last_entry is not None:
                error.step_index = self.logger.last_entry.step_index
            self._emit_event("on_error", self, error)
            raise
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            instruction = None
            if 0 <= self.pc < len(program.instructions):
                instruction = program.instructions[self.pc]
            wrapped = StackLangRuntimeError(
                f"Internal interpreter error: {exc}",
                instruction=instruction,
                rule="internal",
                filename=program.filename,
            )
            if self.logger.last_entry is not None:
                wrapped.step_index = self.logger.last_entry.step_index
            raise wrapped from exc
        return output

    def _run(self, start: int) -> None:
        assert self.program is not None
        instructions = self.program.instructions
        handlers = self.handlers
        log_step = self._log_step
        hooks = self.hook_registry
        idx = start
        try:
            while idx < len(instructions):
                instruction = instructions[idx]
                self.pc = idx
                if hooks.has_handlers("before_instruction"):
                    self._emit_event("before_instruction", self, idx, instruction)
                entry = log_step(idx, instruction)
                handler = handlers.get(instruction.kind)
                if handler is None:
                    raise self._error(
                        StackLangRuntimeError,
                        f"No handler for instruction {instruction.kind}",
                        instruction,
                    )
                next_idx = handler(instruction, idx)
                if hooks.has_step_rules():
                    self._after_step(entry, idx, instruction)
                idx = next_idx
        except HaltSignal:
            return

    # ---- value stack access ----

    def _pop(self, instruction: Instruction) -> int:
        if self.stack.is_empty():
            raise self._error(StackEmptyError, "Stack empty", instruction)
        return self.stack.pop()

    def _peek(self, instruction: Instruction) -> int:
        if self.stack.is_empty():
            raise self._error(StackEmptyError, "Stack empty", instruction)
        return self.stack.peek()

    # ---- handlers ----

    def _push(self, instruction: Instruction, idx: int) -> int:
        self.stack.push(instruction.arg)
        return idx + 1

    def _pop_op(self, instruction: Instruction, idx: int) -> int:
        self._pop(instruction)
        return idx + 1

    def _add(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        self.stack.push(a + b)
        return idx + 1

    def _sub(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        self.stack.push(b - a)
        return idx + 1

    def _mul(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        self.stack.push(a * b)
        return idx + 1

    def _div(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        if a == 0:
            raise self._error(DivisionByZeroError, "Division by zero", instruction)
        # Truncate toward zero; Python's // floors.
        quotient = abs(b) // abs(a)
        if (a < 0) != (b < 0):
            quotient = -quotient
        self.stack.push(quotient)
        return idx + 1

    def _print(self, instruction: Instruction, idx: int) -> int:
        self.output.append(self._pop(instruction))
        return idx + 1

    def _dup(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        self.stack.push(a)
        self.stack.push(a)
        return idx + 1

    def _swap(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        self.stack.push(a)
        self.stack.push(b)
        return idx + 1

    def _rot(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        c = self._pop(instruction)
        self.stack.push(b)
        self.stack.push(a)
        self.stack.push(c)
        return idx + 1

    def _over(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        b = self._pop(instruction)
        self.stack.push(b)
        self.stack.push(a)
        self.stack.push(b)
        return idx + 1

    def _nip(self, instruction: Instruction, idx: int) -> int:
        a = self._pop(instruction)
        self._pop(instruction)
        self.stack.push(a)
        return idx + 1

    # Jumps land on their target; the instruction after it runs next.

    def _while(self, instruction: Instruction, idx: int) -> int:
        if self._peek(instruction) == 0:
            return instruction.arg + 1
        return idx + 1

    def _end_while(self, instruction: Instruction, idx: int) -> int:
        if self._peek(instruction) != 0:
            return instruction.arg + 1
        return idx + 1

    def _if(self, instruction: Instruction, idx: int) -> int:
        if self._peek(instruction) == 0:
            return instruction.arg + 1
        return idx + 1

    def _else(self, instruction: Instruction, idx: int) -> int:
        return instruction.arg + 1

    def _end_if(self, instruction: Instruction, idx: int) -> int:
        return idx + 1

    def _call(self, instruction: Instruction, idx: int) -> int:
        self.call_stack.append(idx)
        return instruction.arg

    def _ret(self, instruction: Instruction, idx: int) -> int:
        if not self.call_stack:
            raise HaltSignal()
        return self.call_stack.pop() + 1

    # ---- bookkeeping ----

    def _error(
        self,
        cls: Type[StackLangRuntimeError],
        message: str,
        instruction: Instruction,
        rule: Optional[str] = None,
    ) -> StackLangRuntimeError:
        filename = self.program.filename if self.program is not None else None
        return cls(message, instruction=instruction, rule=rule, filename=filename)

    def _emit_event(self, event: str, *args: Any, **kwargs: Any) -> None:
        try:
            self.hook_registry.emit(event, *args, **kwargs)
        except StackLangRuntimeError:
            raise
        except Exception as exc:
            instruction = None
            if self.program is not None and 0 <= self.pc < len(self.program.instructions):
                instruction = self.program.instructions[self.pc]
            raise StackLangRuntimeError(
                f"Extension hook '{event}' failed: {exc}",
                instruction=instruction,
                rule="EXT",
                filename=self.program.filename if self.program is not None else None,
            ) from exc

    def _log_step(self, index: int, instruction: Instruction) -> StateEntry:
        snapshot = self.stack.snapshot() if self.verbose else None
        return self.logger.record(
            index=index,
            instruction=instruction,
            depth=len(self.call_stack),
            stack_snapshot=snapshot,
        )

    def _after_step(self, entry: StateEntry, index: int, instruction: Instruction) -> None:
        try:
            self.hook_registry.after_step(
                self,
                StepContext(step_index=entry.step_index, rule=instruction.kind, index=index, instruction=instruction),
            )
        except StackLangRuntimeError:
            raise
        except Exception as exc:
            raise self._error(
                StackLangRuntimeError,
                f"Extension step rule failed: {exc}",
                instruction,
                rule="EXT",
            ) from exc


def execute(program: Program, entry: str = DEFAULT_ENTRY) -> List[int]:
    return StackMachine().execute(program, entry)


@dataclass
class TracebackFrame:
    name: str
    index: Optional[int]
    instruction: Optional[Instruction]
    statement: Optional[str]


class TracebackFormatter:
    def __init__(self, machine: StackMachine) -> None:
        self.machine = machine

    def build_frames(self, error: StackLangRuntimeError) -> List[TracebackFrame]:
        program = self.machine.program
        if program is None:
            return []
        frames: List[TracebackFrame] = []
        name = self.machine.entry
        for return_address in self.machine.call_stack:
            call = program.instructions[return_address]
            frames.append(
                TracebackFrame(
                    name=name,
                    index=return_address,
                    instruction=call,
                    statement=program.source_line(call.line),
                )
            )
            name = program.function_at(call.arg) or f"<entry {call.arg}>"
        failing = error.instruction
        frames.append(
            TracebackFrame(
                name=name,
                index=self.machine.pc if failing is not None else None,
                instruction=failing,
                statement=program.source_line(failing.line) if failing is not None else None,
            )
        )
        return frames

    def format_text(self, error: StackLangRuntimeError, verbose: bool) -> str:
        filename = self.machine.program.filename if self.machine.program else "<unknown>"
        last = self.machine.logger.last_entry
        lines = ["Traceback (most recent call last):"]
        frames = self.build_frames(error)
        for position, frame in enumerate(frames):
            if frame.instruction is not None:
                lines.append(
                    f"  File \"{filename}\", line {frame.instruction.line}, column {frame.instruction.column}, in {frame.name}"
                )
                if frame.statement:
                    lines.append(f"    {frame.statement}")
                lines.append(f"    Instruction {frame.index:04d}: {frame.instruction}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if position == len(frames) - 1 and last is not None:
                lines.append(f"    State log index: {last.step_index}  State id: {last.state_id}")
                if verbose and last.stack_snapshot is not None:
                    lines.append(f"    Stack: {last.stack_snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: StackLangRuntimeError) -> str:
        filename = self.machine.program.filename if self.machine.program else None
        last = self.machine.logger.last_entry
        frames_json: List[Dict[str, Any]] = []
        for position, frame in enumerate(self.build_frames(error)):
            entry: Dict[str, Any] = {"frame_index": position, "name": frame.name}
            if frame.instruction is not None:
                entry["instruction_index"] = frame.index
                entry["instruction"] = str(frame.instruction)
                entry["source_location"] = {
                    "file": filename,
                    "line": frame.instruction.line,
                    "column": frame.instruction.column,
                    "statement": frame.statement,
                }
            frames_json.append(entry)
        if frames_json and last is not None:
            frames_json[-1]["state_id"] = last.state_id
            frames_json[-1]["step_index"] = last.step_index
            if last.stack_snapshot is not None:
                frames_json[-1]["stack_snapshot"] = last.stack_snapshot
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
