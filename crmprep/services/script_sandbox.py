"""
Restricted expression interpreter for custom_script rules.

A script is a single Python expression over three names:
    value  the cell being processed
    field  the canonical field id (or header) of that cell
    row    the row as {field id or header: value}

The source is parsed with ast, checked against a whitelist of node types,
names, functions and methods, then interpreted node by node. Nothing is
passed to eval/exec. Evaluation is bounded in steps and in the size of any
string or collection it produces.

    compile_expression("value.strip().title()").evaluate(value=" ann ", field="firstname", row={})
"""

from __future__ import annotations

import ast
import operator
import re
from typing import Any, Callable, Mapping

from crmprep.config import settings


class SandboxError(ValueError):
    """Script rejected by the whitelist or stopped by a limit."""


ALLOWED_NAMES = {"value", "field", "row"}

SAFE_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}

SAFE_METHODS: dict[type, set[str]] = {
    str: {
        "lower", "upper", "strip", "lstrip", "rstrip", "title", "capitalize",
        "startswith", "endswith", "replace", "split", "join", "isdigit",
        "isalpha", "isalnum", "zfill", "count", "find",
    },
    dict: {"get", "keys", "values", "items"},
    list: {"count", "index"},
    tuple: {"count", "index"},
}
_ALL_METHOD_NAMES = set().union(*SAFE_METHODS.values())

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

UNARY_OPERATORS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

COMPARE_OPERATORS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
}

ALLOWED_NODES = (
    ast.Expression, ast.BoolOp, ast.BinOp, ast.UnaryOp, ast.Compare, ast.IfExp,
    ast.Call, ast.Attribute, ast.Subscript, ast.Slice, ast.Name, ast.Load,
    ast.Constant, ast.List, ast.Tuple, ast.Dict, ast.Set, ast.keyword,
    ast.JoinedStr, ast.FormattedValue, ast.And, ast.Or,
) + tuple(BINARY_OPERATORS) + tuple(UNARY_OPERATORS) + tuple(COMPARE_OPERATORS)

MAX_RESULT_SIZE = 10_000


# ============================================================================
# VALIDATION
# ============================================================================

def _check_tree(tree: ast.Expression) -> None:
    call_targets = {id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)}

    for node in ast.walk(tree):
        if not isinstance(node, ALLOWED_NODES):
            raise SandboxError(f"{type(node).__name__} is not allowed in scripts")
        if isinstance(node, ast.Name) and node.id not in ALLOWED_NAMES and id(node) not in call_targets:
            raise SandboxError(f"Unknown name: {node.id}")
        if isinstance(node, ast.Attribute):
            if id(node) not in call_targets:
                raise SandboxError("Attribute access is only allowed for method calls")
            if node.attr.startswith("_") or node.attr not in _ALL_METHOD_NAMES:
                raise SandboxError(f"Method not allowed: {node.attr}")
        if isinstance(node, ast.Call):
            if isinstance(node.func, ast.Name) and node.func.id not in SAFE_FUNCTIONS:
                raise SandboxError(f"Function not allowed: {node.func.id}")
            if not isinstance(node.func, (ast.Name, ast.Attribute)):
                raise SandboxError("Only named functions and methods can be called")
            if any(kw.arg is None for kw in node.keywords):
                raise SandboxError("Keyword unpacking is not allowed")


def parse_expression(source: str, max_length: int | None = None) -> ast.Expression:
    """Parse and whitelist-check a script. Raises SandboxError."""
    if max_length is None:
        max_length = settings.CUSTOM_SCRIPT_MAX_LENGTH
    if not isinstance(source, str) or not source.strip():
        raise SandboxError("Script is empty")
    if len(source) > max_length:
        raise SandboxError(f"Script is longer than {max_length} characters")
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError as exc:
        raise SandboxError(f"Invalid script syntax: {exc.msg}") from exc
    _check_tree(tree)
    return tree


# ============================================================================
# INTERPRETER
# ============================================================================

def _check_size(result: Any, limit: int) -> Any:
    if isinstance(result, (str, list, tuple, dict, set)) and len(result) > limit:
        raise SandboxError(f"Script produced a value larger than {limit} items")
    return result


def _expected_length(target: str, method: str, args: list) -> int:
    """Length a growing str method would produce, worked out before calling it."""
    if method == "zfill" and args and isinstance(args[0], int):
        return args[0]
    if method == "replace" and len(args) >= 2 and isinstance(args[0], str) and isinstance(args[1], str):
        old, new = args[0], args[1]
        count = target.count(old) if old else len(target) + 1
        if len(args) > 2 and isinstance(args[2], int) and args[2] >= 0:
            count = min(count, args[2])
        return len(target) + count * (len(new) - len(old))
    if method == "join" and args and isinstance(args[0], (list, tuple, set, dict)):
        parts = [p for p in args[0] if isinstance(p, str)]
        return len(target) * max(len(args[0]) - 1, 0) + sum(len(p) for p in parts)
    return 0


def _check_format_spec(spec: str, limit: int) -> None:
    # width and precision are the only numbers a format spec carries
    if any(int(number) > limit for number in re.findall(r"\d+", spec)):
        raise SandboxError(f"Format width or precision larger than {limit}")


class _Interpreter(ast.NodeVisitor):
    def __init__(self, names: Mapping[str, Any], max_steps: int, max_size: int):
        self.names = names
        self.max_steps = max_steps
        self.max_size = max_size
        self.steps = 0

    def visit(self, node: ast.AST) -> Any:
        self.steps += 1
        if self.steps > self.max_steps:
            raise SandboxError(f"Script exceeded {self.max_steps} evaluation steps")
        return super().visit(node)

    def generic_visit(self, node: ast.AST) -> Any:
        raise SandboxError(f"{type(node).__name__} is not allowed in scripts")

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        return self.names.get(node.id)

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        result: Any = isinstance(node.op, ast.And)
        for operand in node.values:
            result = self.visit(operand)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Mult):
            for seq, count in ((left, right), (right, left)):
                if isinstance(seq, (str, list, tuple)) and isinstance(count, int) and len(seq) * count > self.max_size:
                    raise SandboxError(f"Script produced a value larger than {self.max_size} items")
        return _check_size(BINARY_OPERATORS[type(node.op)](left, right), self.max_size)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return UNARY_OPERATORS[type(node.op)](self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not COMPARE_OPERATORS[type(op)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        return target[self.visit(node.slice)]

    def visit_Slice(self, node: ast.Slice) -> slice:
        lower = self.visit(node.lower) if node.lower else None
        upper = self.visit(node.upper) if node.upper else None
        step = self.visit(node.step) if node.step else None
        return slice(lower, upper, step)

    def visit_List(self, node: ast.List) -> list:
        return _check_size([self.visit(e) for e in node.elts], self.max_size)

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return _check_size(tuple(self.visit(e) for e in node.elts), self.max_size)

    def visit_Set(self, node: ast.Set) -> set:
        return _check_size({self.visit(e) for e in node.elts}, self.max_size)

    def visit_Dict(self, node: ast.Dict) -> dict:
        if any(k is None for k in node.keys):
            raise SandboxError("Dict unpacking is not allowed")
        return _check_size(
            {self.visit(k): self.visit(v) for k, v in zip(node.keys, node.values)},
            self.max_size,
        )

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return _check_size("".join(str(self.visit(part)) for part in node.values), self.max_size)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        result = self.visit(node.value)
        if node.conversion == ord("r"):
            result = repr(result)
        elif node.conversion == ord("a"):
            result = ascii(result)
        elif node.conversion == ord("s"):
            result = str(result)
        spec = self.visit(node.format_spec) if node.format_spec else ""
        _check_format_spec(spec, self.max_size)
        return format(result, spec)

    def visit_Call(self, node: ast.Call) -> Any:
        args = [self.visit(a) for a in node.args]
        kwargs = {kw.arg: self.visit(kw.value) for kw in node.keywords}

        if isinstance(node.func, ast.Name):
            func = SAFE_FUNCTIONS[node.func.id]
        else:
            target = self.visit(node.func.value)
            allowed = next(
                (names for kind, names in SAFE_METHODS.items() if isinstance(target, kind)),
                set(),
            )
            if node.func.attr not in allowed:
                raise SandboxError(f"{type(target).__name__}.{node.func.attr} is not allowed")
            func = getattr(target, node.func.attr)
            if isinstance(target, str) and _expected_length(target, node.func.attr, args) > self.max_size:
                raise SandboxError(f"Script produced a value larger than {self.max_size} items")
        return _check_size(func(*args, **kwargs), self.max_size)


class SandboxedExpression:
    """A parsed, whitelisted script ready to evaluate many times."""

    def __init__(self, source: str, max_steps: int | None = None, max_size: int = MAX_RESULT_SIZE):
        self.source = source
        self.tree = parse_expression(source)
        self.max_steps = max_steps if max_steps is not None else settings.CUSTOM_SCRIPT_MAX_STEPS
        self.max_size = max_size

    def evaluate(self, value: Any = None, field: str | None = None, row: Mapping[str, Any] | None = None) -> Any:
        names = {"value": value, "field": field, "row": dict(row or {})}
        return _Interpreter(names, self.max_steps, self.max_size).visit(self.tree)


def compile_expression(source: str) -> SandboxedExpression:
    return SandboxedExpression(source)
