"""
Source rewrite applied to planner scripts before they run.

Scripts execute as the body of a function so they may ``return`` a value.
Without help, their top-level bindings would then be locals that vanish when
the call returns. The normalizer rewrites the script so that

* every simple-name target of a top-level assignment is written through the
  durable state record (``x = 1`` becomes ``__state__.x = 1``);
* names updated in place (``x += 1``) and promoted names that nested blocks
  rebind are declared ``global`` on a leading line, since both must resolve
  to the context rather than to a local;
* a trailing bare expression becomes ``return (<expr>)`` when the script has no
  top-level ``return`` of its own.

Unpacking targets (``a, b = ...``), functions and classes stay local to the
script.

Edits are spliced into the script text by offset, so formatting, comments
and string contents outside the edited spans are preserved. Unparseable input
is returned unchanged.
"""

import ast
import re
from dataclasses import dataclass
from typing import Iterator, List, Set

STATE_RECORD = "__state__"

_NEWLINE = re.compile(r"\r\n|\r|\n")


@dataclass
class _Splice:
    start: int
    end: int
    value: str


class _SourceIndex:
    """Maps the AST's (line, UTF-8 byte column) positions to string offsets."""

    def __init__(self, source: str):
        self.lines: List[str] = []
        self.starts: List[int] = []
        position = 0
        for match in _NEWLINE.finditer(source):
            self.lines.append(source[position:match.end()])
            self.starts.append(position)
            position = match.end()
        self.lines.append(source[position:])
        self.starts.append(position)

    def offset(self, lineno: int, col_offset: int) -> int:
        line = self.lines[lineno - 1]
        prefix = line.encode("utf-8")[:col_offset].decode("utf-8", errors="ignore")
        return self.starts[lineno - 1] + len(prefix)

    def span(self, node: ast.AST) -> tuple[int, int]:
        return (
            self.offset(node.lineno, node.col_offset),
            self.offset(node.end_lineno, node.end_col_offset),
        )


def _promotable_targets(statement: ast.stmt) -> List[ast.Name]:
    if isinstance(statement, ast.Assign):
        return [target for target in statement.targets if isinstance(target, ast.Name)]
    if isinstance(statement, ast.AnnAssign):
        if statement.value is not None and isinstance(statement.target, ast.Name):
            return [statement.target]
        return []
    return []


def _script_scope_nodes(node: ast.AST) -> Iterator[ast.AST]:
    """Walk the script's own scope without entering nested functions, classes or comprehensions."""
    for child in ast.iter_child_nodes(node):
        yield child
        if isinstance(
            child,
            (
                ast.FunctionDef,
                ast.AsyncFunctionDef,
                ast.ClassDef,
                ast.Lambda,
                ast.ListComp,
                ast.SetComp,
                ast.DictComp,
                ast.GeneratorExp,
            ),
        ):
            continue
        yield from _script_scope_nodes(child)


def _rebound_names(module: ast.Module, promoted_nodes: Set[int]) -> Set[str]:
    names: Set[str] = set()
    for node in _script_scope_nodes(module):
        if (
            isinstance(node, ast.Name)
            and isinstance(node.ctx, (ast.Store, ast.Del))
            and id(node) not in promoted_nodes
        ):
            names.add(node.id)
    return names


def _augmented_names(module: ast.Module) -> Set[str]:
    return {
        node.target.id
        for node in _script_scope_nodes(module)
        if isinstance(node, ast.AugAssign) and isinstance(node.target, ast.Name)
    }


def _global_names(module: ast.Module) -> Set[str]:
    names: Set[str] = set()
    for node in _script_scope_nodes(module):
        if isinstance(node, ast.Global):
            names.update(node.names)
    return names


def _apply(code: str, splices: List[_Splice]) -> str:
    output = code
    for splice in sorted(splices, key=lambda item: (item.start, item.end), reverse=True):
        output = output[: splice.start] + splice.value + output[splice.end :]
    return output


def normalize_script(code: str) -> str:
    try:
        module = ast.parse(code, filename="<script>", mode="exec")
    except (SyntaxError, ValueError):
        return code
    if not module.body:
        return code

    index = _SourceIndex(code)
    splices: List[_Splice] = []
    promoted: Set[str] = set()
    promoted_nodes: Set[int] = set()

    for statement in module.body:
        for target in _promotable_targets(statement):
            start, end = index.span(target)
            splices.append(_Splice(start, end, f"{STATE_RECORD}.{target.id}"))
            promoted.add(target.id)
            promoted_nodes.add(id(target))

    needs_global = _augmented_names(module)
    if promoted:
        needs_global |= promoted & _rebound_names(module, promoted_nodes)
    declared = sorted(needs_global - _global_names(module))

    has_return = any(isinstance(statement, ast.Return) for statement in module.body)
    last = module.body[-1]
    if not has_return and isinstance(last, ast.Expr):
        start, end = index.span(last)
        value_start, value_end = index.span(last.value)
        splices.append(_Splice(start, end, f"return ({code[value_start:value_end]})"))

    if declared:
        splices.append(_Splice(0, 0, f"global {', '.join(declared)}\n"))

    return _apply(code, splices)
