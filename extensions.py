from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple


EXTENSION_API_VERSION = 1

EVENTS = frozenset({"program_start", "before_instruction", "on_error", "program_end"})


class StackLangExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


@dataclass(frozen=True)
class StepContext:
    step_index: int
    rule: str
    index: int
    instruction: Any  # parser.Instruction


@dataclass
class HookRegistry:
    # event -> list[(priority, handler, ext_name)]
    _events: Dict[str, List[Tuple[int, Callable[..., None], str]]] = field(default_factory=dict)
    # list[(every_n, handler, ext_name, name)]
    _step_rules: List[Tuple[int, Callable[[Any, StepContext], None], str, str]] = field(default_factory=list)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int, ext_name: str) -> None:
        if event not in EVENTS:
            raise StackLangExtensionError(f"Unknown event '{event}'")
        self._events.setdefault(event, []).append((priority, handler, ext_name))
        self._events[event].sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for _priority, handler, _ext in self._events.get(event, []):
            handler(*args, **kwargs)

    def has_handlers(self, event: str) -> bool:
        return bool(self._events.get(event))

    def add_step_rule(self, *, name: str, every_n: int, handler: Callable[[Any, StepContext], None], ext_name: str) -> None:
        if every_n <= 0:
            raise StackLangExtensionError("every_n_steps must be >= 1")
        self._step_rules.append((every_n, handler, ext_name, name))

    def has_step_rules(self) -> bool:
        return bool(self._step_rules)

    def after_step(self, machine: Any, ctx: StepContext) -> None:
        for every_n, handler, _ext, _name in self._step_rules:
            if ctx.step_index % every_n == 0:
                handler(machine, ctx)


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    hook_registry: HookRegistry = field(default_factory=HookRegistry)


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- hooks ----
    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None, *, priority: int = 0):
        if handler is None:
            def deco(fn: Callable[..., None]) -> Callable[..., None]:
                self._services.hook_registry.on_event(event, fn, priority=priority, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.on_event(event, handler, priority=priority, ext_name=self._ext_name)
        return handler

    def every_n_steps(self, every_n: int, handler: Optional[Callable[[Any, StepContext], None]] = None, *, name: str = ""):
        if handler is None:
            def deco(fn: Callable[[Any, StepContext], None]) -> Callable[[Any, StepContext], None]:
                self._services.hook_registry.add_step_rule(name=name or fn.__name__, every_n=every_n, handler=fn, ext_name=self._ext_name)
                return fn
            return deco
        self._services.hook_registry.add_step_rule(name=name or handler.__name__, every_n=every_n, handler=handler, ext_name=self._ext_name)
        return handler


def _unique_module_name(path: str) -> str:
    base = os.path.basename(path)
    digest = hashlib.sha256(os.path.abspath(path).encode("utf-8")).hexdigest()[:12]
    safe = "".join(ch if ch.isalnum() else "_" for ch in base)
    return f"stacklang_ext_{safe}_{digest}"


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise StackLangExtensionError(f"Extension not found: {path}")
    mod_name = _unique_module_name(path)
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise StackLangExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_slx(pointer_file: str) -> List[str]:
    if not os.path.exists(pointer_file):
        raise StackLangExtensionError(f".slx file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    expanded: List[str] = []
    for p in paths:
        if p.lower().endswith(".slx"):
            expanded.extend(read_slx(p))
        else:
            expanded.append(p)
    return [os.path.abspath(p) for p in expanded]


def build_default_services() -> RuntimeServices:
    return RuntimeServices()


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in gather_extension_paths(paths):
        module = load_extension_module(path)
        api_version = getattr(module, "STACKLANG_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise StackLangExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "stacklang_register", None)
        if register is None or not callable(register):
            raise StackLangExtensionError(f"Extension {path} must define callable stacklang_register(ext)")
        ext_name = getattr(module, "STACKLANG_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        declared_before = len(services.metadata)
        try:
            register(ext)
        except StackLangExtensionError:
            raise
        except Exception as exc:
            raise StackLangExtensionError(f"Extension {path} failed to register: {exc}") from exc
        _validate_metadata(path, services.metadata[:declared_before], services.metadata[declared_before:])
    return services


def _validate_metadata(path: str, loaded: Sequence[ExtensionMetadata], declared: Sequence[ExtensionMetadata]) -> None:
    seen = {meta.name for meta in loaded}
    for meta in declared:
        if meta.requires_api != EXTENSION_API_VERSION:
            raise StackLangExtensionError(
                f"Extension {meta.name} ({path}) requires API {meta.requires_api}, host supports {EXTENSION_API_VERSION}"
            )
        if meta.name in seen:
            raise StackLangExtensionError(f"Extension {meta.name} is already loaded ({path})")
        seen.add(meta.name)
