"""StackLang entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional, Sequence

from checker import StackLangCheckError, check
from extensions import RuntimeServices, StackLangExtensionError, build_default_services, load_runtime_services
from lexer import FunctionNotFoundError, Lexer, StackLangParseError
from machine import DEFAULT_ENTRY, StackLangRuntimeError, StackMachine, TracebackFormatter
from parser import Parser, Program, format_listing


def _parse_program_from_source(text: str, filename: str) -> Program:
    lexer = Lexer(text, filename)
    tokens = lexer.tokenize()
    parser = Parser(tokens, filename, text.splitlines())
    return parser.parse()


def _print_values(values: Sequence[int]) -> None:
    for value in values:
        print(value)


def run_repl(verbose: bool, services: Optional[RuntimeServices] = None, entry: str = DEFAULT_ENTRY) -> int:
    print("\x1b[38;2;153;221;255mStackLang\033[0m REPL. Enter a program, blank line to run buffer.") # "StackLang" in light blue
    machine = StackMachine(verbose=verbose, services=services)
    buffer: List[str] = []

    while True:
        prompt = "\x1b[38;2;153;221;255m>>>\033[0m " if not buffer else "\x1b[38;2;153;221;255m..>\033[0m " # light blue
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        if line.strip() != "":
            buffer.append(line)
            continue
        if not buffer:
            continue

        source_text = "\n".join(buffer)
        buffer.clear()
        try:
            program = _parse_program_from_source(source_text, "<repl>")
            _print_values(machine.execute(program, entry))
        except StackLangParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
        except FunctionNotFoundError as error:
            print(f"FunctionNotFound: {error}", file=sys.stderr)
        except StackLangRuntimeError as error:
            formatter = TracebackFormatter(machine)
            print(formatter.format_text(error, verbose=machine.verbose), file=sys.stderr)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="StackLang reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record stack snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--check", action="store_true", help="Run the static stack check before executing")
    parser.add_argument("--listing", action="store_true", help="Print the resolved instruction listing instead of running")
    parser.add_argument("--entry", default=DEFAULT_ENTRY, help="Function to start execution from (default: main)")
    parser.add_argument("--ext", action="append", default=[], metavar="PATH", help="Load an extension (.py or .slx); may repeat")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.ext) if args.ext else build_default_services()
    except StackLangExtensionError as exc:
        print(f"ExtensionError: {exc}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services, entry=args.entry)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    machine = StackMachine(verbose=args.verbose, services=services)
    try:
        program = _parse_program_from_source(source_text, filename)
        if args.listing:
            print(format_listing(program))
            return 0
        if args.check:
            check(program.instructions, filename)
        output = machine.execute(program, args.entry)
    except StackLangParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except StackLangCheckError as error:
        print(f"CheckError: {error}", file=sys.stderr)
        return 1
    except FunctionNotFoundError as error:
        print(f"FunctionNotFound: {error}", file=sys.stderr)
        return 1
    except StackLangRuntimeError as error:
        formatter = TracebackFormatter(machine)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    _print_values(output)
    return 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
