# FILE: services/expressions.py
"""
Restricted expression evaluation for pipeline formulas/conditions and
template {#if} conditions.

Expressions are parsed with `ast` and only a small whitelist of node types is
walked; nothing is ever passed to eval().
"""

import ast
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

_STRING_LITERAL_RE = re.compile(r"""('(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")""")
_REFERENCE_RE = re.compile(
    r"(?<![\w.])([A-Za-z_][A-Za-z0-9_]*(?:\.(?:[A-Za-z_][A-Za-z0-9_]*|\d+))*)(?![\w.]|\s*\()"
)

KEYWORDS = frozenset({
    "and", "or", "not", "in", "is", "if", "else",
    "true", "false", "null", "none", "undefined",
    "True", "False", "None",
})

_ALIASES = {"true": True, "false": False, "null": None, "undefined": None}


class ExpressionError(Exception):
    pass


class _Unresolved(ExpressionError):
    pass


def _avg(*args):
    values = _flatten(args)
    return sum(values) / len(values) if values else None


def _flatten(args) -> List[Any]:
    if len(args) == 1 and isinstance(args[0], (list, tuple)):
        return [v for v in args[0] if v is not None]
    return [v for v in args if v is not None]


FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "sum": lambda *a: sum(_flatten(a)),
    "min": lambda *a: min(_flatten(a)) if _flatten(a) else None,
    "max": lambda *a: max(_flatten(a)) if _flatten(a) else None,
    "avg": _avg,
    "mean": _avg,
    "len": lambda v: len(v) if v is not None else 0,
    "count": lambda v: len(v) if v is not None else 0,
    "abs": abs,
    "round": lambda v, n=0: round(v, int(n)),
}


# -----------------------------
# Source translation
# -----------------------------
def _translate(expr: str) -> str:
    """JS-flavoured operators to Python, outside string literals."""
    parts = _STRING_LITERAL_RE.split(expr)
    out = []
    for i, part in enumerate(parts):
        if i % 2 == 1:
            out.append(part)
            continue
        part = part.replace("===", "==").replace("!==", "!=")
        part = part.replace("&&", " and ").replace("||", " or ")
        part = re.sub(r"!(?!=)", " not ", part)
        out.append(part)
    return "".join(out)


def extract_references(expr: Optional[str]) -> List[str]:
    """
    Identifiers (possibly dotted) an expression reads, in order of appearance.
    String literals, numbers, keywords and function names are skipped.
    """
    if not expr:
        return []
    stripped = _STRING_LITERAL_RE.sub(" ", str(expr))
    refs: List[str] = []
    for match in _REFERENCE_RE.finditer(stripped):
        ref = match.group(1)
        if ref.split(".")[0] in KEYWORDS:
            continue
        if ref not in refs:
            refs.append(ref)
    return refs


def root_name(reference: str) -> str:
    return reference.split(".", 1)[0]


# -----------------------------
# Lookup
# -----------------------------
def lookup_path(scope: Mapping[str, Any], path: str) -> Tuple[bool, Any]:
    """
    Dotted lookup through mappings and list indices.
    Returns (found, value).
    """
    current: Any = scope
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return False, None
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return False, None
            current = current[index]
        else:
            return False, None
    return True, current


def _get_attr(value: Any, attr: str) -> Any:
    if isinstance(value, Mapping):
        if attr not in value:
            raise _Unresolved(attr)
        return value[attr]
    if isinstance(value, (list, tuple)):
        # pluck: invoices.amount -> [amount, ...]
        return [item.get(attr) for item in value if isinstance(item, Mapping)]
    raise _Unresolved(attr)


def _coerce_pair(left: Any, right: Any) -> Tuple[Any, Any]:
    if isinstance(left, (int, float)) and isinstance(right, str):
        try:
            return left, float(right)
        except ValueError:
            return left, right
    if isinstance(left, str) and isinstance(right, (int, float)):
        try:
            return float(left), right
        except ValueError:
            return left, right
    return left, right


_COMPARE = {
    ast.Eq: lambda a, b: a == b,
    ast.NotEq: lambda a, b: a != b,
    ast.Gt: lambda a, b: a > b,
    ast.GtE: lambda a, b: a >= b,
    ast.Lt: lambda a, b: a < b,
    ast.LtE: lambda a, b: a <= b,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BINARY = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
    ast.FloorDiv: lambda a, b: a // b,
    ast.Mod: lambda a, b: a % b,
}


class _Evaluator:
    def __init__(self, scope: Mapping[str, Any]):
        self.scope = scope

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.visit(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float, str, bool)) or node.value is None:
                return node.value
            raise ExpressionError("unsupported literal")

        if isinstance(node, ast.Name):
            if node.id in self.scope:
                return self.scope[node.id]
            if node.id in _ALIASES:
                return _ALIASES[node.id]
            raise _Unresolved(node.id)

        if isinstance(node, ast.Attribute):
            return _get_attr(self.visit(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            container = self.visit(node.value)
            key = self.visit(node.slice)
            try:
                return container[key]
            except (KeyError, IndexError, TypeError):
                raise _Unresolved(str(key))

        if isinstance(node, ast.UnaryOp):
            operand = self.visit(node.operand)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub):
                return -operand
            if isinstance(node.op, ast.UAdd):
                return +operand
            raise ExpressionError("unsupported unary operator")

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self.visit(value)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self.visit(value)
                if result:
                    return result
            return result

        if isinstance(node, ast.BinOp):
            op = _BINARY.get(type(node.op))
            if op is None:
                raise ExpressionError("unsupported operator")
            left, right = _coerce_pair(self.visit(node.left), self.visit(node.right))
            return op(left, right)

        if isinstance(node, ast.Compare):
            left = self.visit(node.left)
            for op_node, comparator in zip(node.ops, node.comparators):
                op = _COMPARE.get(type(op_node))
                if op is None:
                    raise ExpressionError("unsupported comparison")
                right = self.visit(comparator)
                a, b = _coerce_pair(left, right)
                if not op(a, b):
                    return False
                left = right
            return True

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id.lower() not in FUNCTIONS:
                raise ExpressionError("unsupported function")
            if node.keywords:
                raise ExpressionError("keyword arguments not supported")
            args = [self.visit(arg) for arg in node.args]
            return FUNCTIONS[node.func.id.lower()](*args)

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self.visit(elt) for elt in node.elts]

        if isinstance(node, ast.IfExp):
            return self.visit(node.body) if self.visit(node.test) else self.visit(node.orelse)

        raise ExpressionError(f"unsupported syntax: {type(node).__name__}")


def evaluate(expr: Optional[str], scope: Mapping[str, Any]) -> Tuple[Any, Optional[str]]:
    """
    Evaluate an expression against a scope.
    Returns (value, error); error is None on success. Never raises.
    """
    if expr is None or not str(expr).strip():
        return None, "empty expression"
    try:
        tree = ast.parse(_translate(str(expr)).strip(), mode="eval")
        return _Evaluator(scope).visit(tree), None
    except _Unresolved as e:
        return None, f"unresolved reference: {e}"
    except ExpressionError as e:
        return None, str(e)
    except (SyntaxError, ValueError, TypeError, KeyError, IndexError, AttributeError,
            ArithmeticError, RecursionError) as e:
        return None, f"{type(e).__name__}: {e}"


def evaluate_condition(expr: Optional[str], scope: Mapping[str, Any]) -> bool:
    value, error = evaluate(expr, scope)
    if error:
        return False
    return bool(value)


def is_well_formed(expr: Optional[str]) -> bool:
    if expr is None or not str(expr).strip():
        return False
    try:
        ast.parse(_translate(str(expr)).strip(), mode="eval")
        return True
    except (SyntaxError, ValueError, RecursionError):
        return False
