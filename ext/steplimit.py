"""StackLang extension: abort runs that exceed a step budget.

The budget comes from the STACKLANG_STEP_LIMIT environment variable
(default 1_000_000 executed instructions). A program that runs exactly
the budgeted number of instructions still finishes; the run is stopped
just before the first instruction over budget.
"""

from __future__ import annotations

import os
from typing import Any

from extensions import ExtensionAPI, StackLangExtensionError

STACKLANG_EXTENSION_NAME = "steplimit"
STACKLANG_EXTENSION_API_VERSION = 1

DEFAULT_STEP_LIMIT = 1_000_000


def _read_limit() -> int:
    raw = os.environ.get("STACKLANG_STEP_LIMIT", "")
    if not raw.strip():
        return DEFAULT_STEP_LIMIT
    try:
        limit = int(raw)
    except ValueError:
        raise StackLangExtensionError(f"STACKLANG_STEP_LIMIT must be an integer, got {raw!r}") from None
    if limit <= 0:
        raise StackLangExtensionError(f"STACKLANG_STEP_LIMIT must be positive, got {limit}")
    return limit


def stacklang_register(ext: ExtensionAPI) -> None:
    ext.metadata(name=STACKLANG_EXTENSION_NAME, version="1.1.0")
    limit = _read_limit()
    counter = {"steps": 0}

    @ext.on_event("program_start")
    def _reset(machine: Any, program: Any) -> None:
        counter["steps"] = 0

    @ext.on_event("before_instruction")
    def _enforce(machine: Any, index: int, instruction: Any) -> None:
        from machine import StackLangRuntimeError

        counter["steps"] += 1
        if counter["steps"] <= limit:
            return
        error = StackLangRuntimeError(
            f"Step limit of {limit} reached",
            instruction=instruction,
            rule="STEPLIMIT",
            filename=machine.program.filename if machine.program is not None else None,
        )
        error.step_index = counter["steps"]
        raise error
