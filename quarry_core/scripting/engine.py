import ast
import builtins
import ctypes
import logging
import operator
import threading
import time
from typing import Any, Dict, List, Mapping, Optional, Set

from RestrictedPython import PrintCollector, RestrictingNodeTransformer, compile_restricted_exec, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from ..errors import EngineBusyError, ScriptRuntimeError, ScriptSyntaxError, ScriptTimeout
from .normalizer import STATE_RECORD, normalize_script
from .render import render_value

SCRIPT_FUNCTION = "__quarry_script__"

# Catching these would let a script outlive its budget.
UNCATCHABLE = frozenset({"BaseException", "GeneratorExit", "KeyboardInterrupt", "SystemExit"})

SAFE_BUILTINS: Dict[str, Any] = {name: value for name, value in safe_builtins.items() if name not in UNCATCHABLE}
SAFE_BUILTINS.update(
    {
        name: getattr(builtins, name)
        for name in (
            "all", "any", "dict", "enumerate", "filter", "frozenset", "iter", "list",
            "map", "max", "min", "next", "reversed", "set", "sum",
        )
    }
)
SAFE_BUILTINS["getattr"] = safer_getattr
SAFE_BUILTINS["__build_class__"] = builtins.__build_class__

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "@=": operator.imatmul,
    "<<=": operator.ilshift,
    ">>=": operator.irshift,
    "&=": operator.iand,
    "^=": operator.ixor,
    "|=": operator.ior,
}


def _inplace(op: str, target: Any, value: Any) -> Any:
    return _INPLACE_OPERATORS[op](target, value)


def _apply(function: Any, *args: Any, **kwargs: Any) -> Any:
    return function(*args, **kwargs)


# Helpers RestrictedPython's compiled code calls in place of raw attribute, item and iteration access.
GUARDS: Dict[str, Any] = {
    "__metaclass__": type,
    "_getattr_": safer_getattr,
    "_getitem_": default_guarded_getitem,
    "_getiter_": default_guarded_getiter,
    "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
    "_unpack_sequence_": guarded_unpack_sequence,
    "_write_": full_write_guard,
    "_print_": PrintCollector,
    "_inplacevar_": _inplace,
    "_apply_": _apply,
}


class ScriptPolicy(RestrictingNodeTransformer):
    """RestrictedPython's default policy, aware of the engine's own names."""

    def check_name(self, node, name, allow_magic_methods=False):
        if name in (STATE_RECORD, SCRIPT_FUNCTION):
            return
        super().check_name(node, name, allow_magic_methods=allow_magic_methods)

    def visit_ExceptHandler(self, node):
        if node.type is None:
            self.error(node, "Bare 'except:' is not allowed; catch Exception instead.")
        elif any(isinstance(child, ast.Name) and child.id in UNCATCHABLE for child in ast.walk(node.type)):
            self.error(node, "Only Exception and its subclasses may be caught.")
        return super().visit_ExceptHandler(node)


class _Interrupt(BaseException):
    """Raised inside a worker thread whose script ran past its budget."""


class StateRecord:
    """Attribute view over the execution context; what ``__state__`` resolves to."""

    __slots__ = ("_namespace", "_protected")

    # Tells RestrictedPython's write guard that this object checks its own writes.
    _guarded_writes = True

    def __init__(self, namespace: Dict[str, Any], protected: Set[str]):
        object.__setattr__(self, "_namespace", namespace)
        object.__setattr__(self, "_protected", protected)

    def __getattr__(self, name: str) -> Any:
        try:
            return self._namespace[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: Any) -> None:
        self._check_writable(name)
        self._namespace[name] = value

    def __delattr__(self, name: str) -> None:
        self._check_writable(name)
        try:
            del self._namespace[name]
        except KeyError:
            raise AttributeError(name) from None

    def _check_writable(self, name: str) -> None:
        if name == STATE_RECORD or name in self._protected:
            raise AttributeError(f"'{name}' is read-only")

    def __dir__(self) -> List[str]:
        return [key for key in self._namespace if not key.startswith("_")]

    def __repr__(self) -> str:
        return f"<state {', '.join(self.__dir__())}>"


def _raise_in_thread(thread: threading.Thread, exc_type: type) -> bool:
    ident = thread.ident
    if ident is None:
        return False
    modified = ctypes.pythonapi.PyThreadState_SetAsyncExc(ctypes.c_ulong(ident), ctypes.py_object(exc_type))
    if modified > 1:
        ctypes.pythonapi.PyThreadState_SetAsyncExc(ctypes.c_ulong(ident), None)
        return False
    return modified == 1


def _describe_errors(errors) -> str:
    return "; ".join(str(error) for error in errors)


class ScriptEngine:
    """
    Runs scripts against one persistent context with a wall-clock budget.

    Scripts are compiled with RestrictedPython, so imports, underscore names
    and unguarded attribute writes are unavailable. Every call sees the
    bindings left by earlier calls. A script that overruns is interrupted from
    outside its thread, so tight loops stop too. Calls must not overlap; a call
    made while another script (or an abandoned, still-running one) is in
    flight raises ``EngineBusyError``.
    """

    def __init__(
        self,
        timeout_ms: float = 250.0,
        builtins_table: Optional[Mapping[str, Any]] = None,
        bindings: Optional[Mapping[str, Any]] = None,
        interrupt_grace_ms: float = 1000.0,
        render_max_depth: int = 2,
        render_max_length: int = 2000,
    ):
        self.timeout_ms = timeout_ms
        self.interrupt_grace_ms = interrupt_grace_ms
        self.render_max_depth = render_max_depth
        self.render_max_length = render_max_length
        self.logger = logging.getLogger("quarry.engine")
        self._lock = threading.Lock()
        self._abandoned: Optional[threading.Thread] = None
        self._protected: Set[str] = set()
        self.context: Dict[str, Any] = {
            "__builtins__": dict(SAFE_BUILTINS if builtins_table is None else builtins_table),
            "__name__": "__script__",
        }
        self.context.update(GUARDS)
        self.context[STATE_RECORD] = StateRecord(self.context, self._protected)
        self.stuck_workers = 0
        for name, value in (bindings or {}).items():
            self.bind(name, value)

    @classmethod
    def from_config(cls, config, **kwargs) -> "ScriptEngine":
        return cls(
            timeout_ms=config.script_timeout_ms,
            interrupt_grace_ms=config.script_interrupt_grace_ms,
            render_max_depth=config.render_max_depth,
            render_max_length=config.render_max_length,
            **kwargs,
        )

    def bind(self, name: str, value: Any, overwrite: bool = False) -> bool:
        """
        Expose ``value`` to scripts under ``name``. Bound names are protected:
        scripts cannot assign them, and later binds are ignored unless
        ``overwrite`` is set.
        """
        if name in self._protected and not overwrite:
            return False
        self.context[name] = value
        self._protected.add(name)
        return True

    def get(self, name: str, default: Any = None) -> Any:
        return self.context.get(name, default)

    def names(self) -> List[str]:
        return [key for key in self.context if not key.startswith("_")]

    @property
    def busy(self) -> bool:
        return self._lock.locked() or self._abandoned_alive()

    def compile(self, script: str):
        normalized = normalize_script(script)
        try:
            module = ast.parse(normalized, filename="<script>", mode="exec")
        except (SyntaxError, ValueError) as exc:
            raise ScriptSyntaxError(str(exc), getattr(exc, "lineno", None)) from exc
        wrapper = ast.parse(f"def {SCRIPT_FUNCTION}():\n    pass\n", mode="exec")
        wrapper.body[0].body = module.body or [ast.Pass()]
        ast.fix_missing_locations(wrapper)
        try:
            result = compile_restricted_exec(wrapper, filename="<script>", policy=ScriptPolicy)
        except SyntaxError as exc:
            raise ScriptSyntaxError(str(exc), exc.lineno) from exc
        if result.errors:
            raise ScriptSyntaxError(_describe_errors(result.errors))
        for warning in result.warnings:
            self.logger.debug("Script compile warning: %s", warning)
        return result.code

    def run(self, script: str) -> Any:
        """Run ``script`` and return its raw value."""
        if not self._lock.acquire(blocking=False):
            raise EngineBusyError("Another script is already running on this engine")
        try:
            if self._abandoned_alive():
                raise EngineBusyError("A timed-out script has not stopped yet")
            self._abandoned = None
            code = self.compile(script)
            exec(code, self.context)
            function = self.context.pop(SCRIPT_FUNCTION)
            return self._call_with_budget(function)
        finally:
            self._lock.release()

    def evaluate(self, script: str) -> str:
        """Run ``script`` and render its value for display."""
        value = self.run(script)
        return render_value(value, self.render_max_depth, self.render_max_length)

    def _abandoned_alive(self) -> bool:
        return self._abandoned is not None and self._abandoned.is_alive()

    def _call_with_budget(self, function) -> Any:
        outcome: Dict[str, Any] = {}

        def _target() -> None:
            try:
                outcome["value"] = function()
            except _Interrupt:
                outcome["interrupted"] = True
            except BaseException as exc:
                outcome["error"] = exc

        worker = threading.Thread(target=_target, name="quarry-script", daemon=True)
        started = time.monotonic()
        worker.start()
        worker.join(self.timeout_ms / 1000.0)

        if worker.is_alive():
            self._interrupt(worker)
            elapsed_ms = (time.monotonic() - started) * 1000.0
            self.logger.warning("Script exceeded %.0fms budget (stopped after %.0fms)", self.timeout_ms, elapsed_ms)
            raise ScriptTimeout(self.timeout_ms)

        if outcome.get("interrupted"):
            raise ScriptTimeout(self.timeout_ms)
        if "error" in outcome:
            error = outcome["error"]
            raise ScriptRuntimeError(error) from error
        return outcome.get("value")

    def _interrupt(self, worker: threading.Thread) -> None:
        deadline = time.monotonic() + self.interrupt_grace_ms / 1000.0
        # Re-deliver until the worker exits: host code it calls may catch the first one.
        while worker.is_alive() and time.monotonic() < deadline:
            _raise_in_thread(worker, _Interrupt)
            worker.join(0.005)
        if worker.is_alive():
            self.stuck_workers += 1
            self._abandoned = worker
            self.logger.error(
                "Script worker did not stop within %.0fms of interruption; engine stays busy until it exits",
                self.interrupt_grace_ms,
            )
