# FILE: services/template_renderer.py
"""
Response Template Renderer (template DSL v1)

Grammar:
    {name}                      value of data[name]; dotted paths allowed
    {name | filter}             filtered value (currency, number:N, date, ...)
    {name | filter:arg}
    {#if cond}...{#elseif cond}...{#else}...{/if}
    {#each items}...{/each}     body per element; scope adds `this`, `index`
                                (1-based) and the element's keys

Rules:
- render() is pure and total: it never raises and identical inputs give
  identical output
- unresolved variables render as [name]
- unknown or failing filters fall back to the unfiltered value
- unmatched close tags and stray {#else}/{#elseif} render literally
- unclosed blocks are closed at the end of the template
- malformed conditions are false
- braces that are not tags are left untouched
"""

import json
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from models.pipeline import ValidationFinding
from services.expressions import evaluate_condition, is_well_formed, lookup_path
from services.template_filters import get_filter

DSL_VERSION = "1"

_TOKEN_RE = re.compile(
    r"\{(?P<open>#if|#elseif|#each)(?:\s+(?P<expr>[^{}]*?))?\s*\}"
    r"|\{(?P<close>#else|/if|/each)\s*\}"
    r"|\{\s*(?P<var>[A-Za-z_]\w*(?:\.\w+)*)\s*"
    r"(?:\|\s*(?P<filter>[A-Za-z_]\w*)\s*(?::\s*(?P<arg>[^{}]*?))?)?\s*\}"
)


# -----------------------------
# Tree
# -----------------------------
class _Text:
    def __init__(self, text: str):
        self.text = text


class _Var:
    def __init__(self, path: str, filter_name: Optional[str], arg: Optional[str]):
        self.path = path
        self.filter_name = filter_name
        self.arg = _unquote(arg) if arg is not None else None


class _If:
    def __init__(self, condition: str):
        self.branches: List[Tuple[str, List[Any]]] = [(condition, [])]
        self.else_children: Optional[List[Any]] = None

    @property
    def children(self) -> List[Any]:
        if self.else_children is not None:
            return self.else_children
        return self.branches[-1][1]


class _Each:
    def __init__(self, path: str):
        self.path = path
        self.children: List[Any] = []


class _Root:
    def __init__(self):
        self.children: List[Any] = []


def _unquote(arg: str) -> str:
    arg = arg.strip()
    if len(arg) >= 2 and arg[0] == arg[-1] and arg[0] in ("'", '"'):
        return arg[1:-1]
    return arg


def _parse(template: str) -> Tuple[_Root, List[ValidationFinding]]:
    root = _Root()
    stack: List[Any] = [root]
    findings: List[ValidationFinding] = []

    def emit(node: Any) -> None:
        stack[-1].children.append(node)

    position = 0
    for match in _TOKEN_RE.finditer(template):
        if match.start() > position:
            emit(_Text(template[position:match.start()]))
        position = match.end()
        raw = match.group(0)

        if match.group("var"):
            emit(_Var(match.group("var"), match.group("filter"), match.group("arg")))
            continue

        opener = match.group("open")
        expr = (match.group("expr") or "").strip()
        top = stack[-1]

        if opener == "#if":
            if not is_well_formed(expr):
                findings.append(ValidationFinding(
                    code="malformed_condition", message=f"Malformed condition in {raw}", reference=expr,
                ))
            node = _If(expr)
            emit(node)
            stack.append(node)
        elif opener == "#each":
            if not expr:
                findings.append(ValidationFinding(
                    code="malformed_condition", message=f"{raw} needs a list variable",
                ))
            node = _Each(expr)
            emit(node)
            stack.append(node)
        elif opener == "#elseif":
            if isinstance(top, _If) and top.else_children is None:
                if not is_well_formed(expr):
                    findings.append(ValidationFinding(
                        code="malformed_condition", message=f"Malformed condition in {raw}", reference=expr,
                    ))
                top.branches.append((expr, []))
            else:
                findings.append(ValidationFinding(
                    code="stray_branch_tag", message=f"{raw} outside an open {{#if}}",
                ))
                emit(_Text(raw))
        else:
            closer = match.group("close")
            if closer == "#else":
                if isinstance(top, _If) and top.else_children is None:
                    top.else_children = []
                else:
                    findings.append(ValidationFinding(
                        code="stray_branch_tag", message=f"{raw} outside an open {{#if}}",
                    ))
                    emit(_Text(raw))
            elif (closer == "/if" and isinstance(top, _If)) or (closer == "/each" and isinstance(top, _Each)):
                stack.pop()
            else:
                findings.append(ValidationFinding(
                    code="unmatched_close_tag", message=f"{raw} has no matching opening tag",
                ))
                emit(_Text(raw))

    if position < len(template):
        emit(_Text(template[position:]))

    for open_node in stack[1:]:
        tag = "{#if}" if isinstance(open_node, _If) else "{#each}"
        findings.append(ValidationFinding(
            code="unclosed_block", message=f"{tag} is never closed; closed at end of template",
        ))

    return root, findings


# -----------------------------
# Rendering
# -----------------------------
def to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, Decimal):
        return to_text(float(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _render_var(node: _Var, scope: Mapping[str, Any]) -> str:
    found, value = lookup_path(scope, node.path)
    missing = not found or value is None

    if node.filter_name and node.filter_name.lower() == "default":
        return to_text(value) if not missing else (node.arg or "")
    if missing:
        return f"[{node.path}]"

    if node.filter_name:
        filter_fn = get_filter(node.filter_name)
        if filter_fn is not None:
            try:
                return filter_fn(value, node.arg)
            except (ValueError, TypeError, OverflowError, ArithmeticError):
                pass
    return to_text(value)


def _render_nodes(nodes: List[Any], scope: Mapping[str, Any], out: List[str]) -> None:
    for node in nodes:
        if isinstance(node, _Text):
            out.append(node.text)
        elif isinstance(node, _Var):
            out.append(_render_var(node, scope))
        elif isinstance(node, _If):
            for condition, children in node.branches:
                if evaluate_condition(condition, scope):
                    _render_nodes(children, scope, out)
                    break
            else:
                if node.else_children is not None:
                    _render_nodes(node.else_children, scope, out)
        elif isinstance(node, _Each):
            found, items = lookup_path(scope, node.path) if node.path else (False, None)
            if not found or not isinstance(items, (list, tuple)):
                continue
            for index, item in enumerate(items, start=1):
                item_scope: Dict[str, Any] = dict(scope)
                if isinstance(item, Mapping):
                    item_scope.update(item)
                item_scope["this"] = item
                item_scope["index"] = index
                _render_nodes(node.children, item_scope, out)


def render(template: Optional[str], data: Optional[Mapping[str, Any]]) -> str:
    """
    Render a response template against a flat variable bag.
    """
    if not template:
        return ""
    scope: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
    root, _ = _parse(str(template))
    out: List[str] = []
    try:
        _render_nodes(root.children, scope, out)
    except RecursionError:
        return str(template)
    return "".join(out)


def lint_template(template: Optional[str]) -> List[ValidationFinding]:
    """Syntax findings for a template; never raises."""
    if not template:
        return []
    _, findings = _parse(str(template))
    return findings


def template_variables(template: Optional[str]) -> List[str]:
    """Root variable names a template reads through {name} placeholders."""
    if not template:
        return []
    names: List[str] = []
    for match in _TOKEN_RE.finditer(str(template)):
        var = match.group("var")
        if var:
            root_name = var.split(".", 1)[0]
            if root_name not in names:
                names.append(root_name)
    return names
