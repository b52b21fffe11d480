# FILE: services/pipeline_simulator.py
"""
Pipeline Simulator (dry run)

- Walks nodes in ascending sequence and produces a stand-in result per
  outputVariable; no external API is ever called
- api_call: resolves the tool, builds params from their sources, returns
  fixture data for that tool (or an empty object)
- computation / conditional: restricted expression evaluation
- Never raises for well-typed input; problems land in SimResult.error
"""

import copy
import logging
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from core.intent import PipelineNode
from models.pipeline import SimResult
from services import tool_resolver
from services.expressions import evaluate, lookup_path
from services.period_resolver import resolve_expression

logger = logging.getLogger("pipeline_simulator")

PERIOD_ENTITY_TYPES = ("period", "date_range")


# -----------------------------
# Helper: parameter sourcing
# -----------------------------
def _expand_entity_value(value: Any, today: Optional[date]) -> Any:
    """Period-like strings become {start_date, end_date}; anything else passes through."""
    if isinstance(value, str):
        expanded = resolve_expression(value, today)
        if expanded:
            return expanded
    return value


def _resolve_param(
    param,
    entity_values: Mapping[str, Any],
    context: Mapping[str, Any],
    scope: Mapping[str, Any],
    period_entities: Sequence[str],
    today: Optional[date],
) -> Tuple[Any, Optional[str]]:
    if param.source == "static":
        return param.value, None

    key = str(param.value) if param.value is not None else ""

    if param.source == "entity":
        if key not in entity_values:
            return None, f"entity '{key}' has no value"
        value = entity_values[key]
        if key in period_entities or not period_entities:
            value = _expand_entity_value(value, today)
        return value, None

    if param.source == "context":
        found, value = lookup_path(context, key)
        return (value, None) if found else (None, f"context '{key}' is not set")

    # previous_node
    found, value = lookup_path(scope, key)
    return (value, None) if found else (None, f"'{key}' is not produced by an earlier node")


# -----------------------------
# Node runners
# -----------------------------
def _run_api_call(node, catalog, fixtures, params, notes) -> SimResult:
    tool = tool_resolver.resolve(node.mcpTool, catalog or [])
    resolved = bool(tool)
    if not resolved:
        logger.warning("[SIMULATE] node %s: tool '%s' did not resolve", node.nodeId, node.mcpTool)

    data: Any = {}
    if resolved and tool in fixtures:
        data = copy.deepcopy(fixtures[tool])

    return SimResult(
        nodeId=node.nodeId,
        nodeType=node.nodeType,
        sequence=node.sequence,
        status="success" if resolved else "unresolved",
        tool=tool or node.mcpTool,
        resolved=resolved,
        params=params,
        data=data,
        error="; ".join(notes) if notes else None,
    )


def _run_expression(node, scope) -> SimResult:
    if node.nodeType == "computation":
        value, error = evaluate(node.formula, scope)
        return SimResult(
            nodeId=node.nodeId, nodeType=node.nodeType, sequence=node.sequence,
            formula=node.formula, result=value, error=error,
        )

    value, error = evaluate(node.condition, scope)
    return SimResult(
        nodeId=node.nodeId, nodeType=node.nodeType, sequence=node.sequence,
        condition=node.condition, result=bool(value) if error is None else None, error=error,
    )


# -----------------------------
# Public API
# -----------------------------
def simulate(
    pipeline: Sequence[PipelineNode],
    entity_values: Optional[Mapping[str, Any]] = None,
    catalog=None,
    fixtures: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    period_entities: Sequence[str] = (),
    today: Optional[date] = None,
) -> Dict[str, SimResult]:
    """
    Simulate a pipeline. Returns {outputVariable: SimResult} in execution order.

    `period_entities` names the entities whose values should be expanded into a
    date range; when empty, any entity value that reads as a period is expanded.
    """
    entity_values = dict(entity_values or {})
    fixtures = fixtures or {}
    context = context or {}

    # Entities are visible to formulas; outputs shadow them as they are produced
    scope: Dict[str, Any] = dict(entity_values)
    results: Dict[str, SimResult] = {}

    for node in sorted(pipeline or [], key=lambda n: n.sequence):
        if node.nodeType == "api_call":
            params: Dict[str, Any] = {}
            notes: List[str] = []
            for param in node.parameters:
                value, note = _resolve_param(param, entity_values, context, scope, period_entities, today)
                params[param.name] = value
                if note:
                    notes.append(note)
            result = _run_api_call(node, catalog, fixtures, params, notes)
        else:
            result = _run_expression(node, scope)

        results[node.outputVariable] = result
        scope[node.outputVariable] = result.value()
        logger.debug("[SIMULATE] %s -> %s", node.nodeId, result.status or result.result)

    return results


def build_render_context(
    results: Mapping[str, SimResult],
    entity_values: Optional[Mapping[str, Any]] = None,
    enrichment_outputs: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Flatten simulation results into the renderer's variable bag.
    Precedence: enrichment outputs > node outputs > entity values.
    """
    bag: Dict[str, Any] = dict(entity_values or {})
    for name, result in results.items():
        bag[name] = result.value()
    bag.update(enrichment_outputs or {})
    return bag


def merge_suggested_steps(
    pipeline: Sequence[PipelineNode],
    steps: Sequence[Mapping[str, Any]],
    catalog=None,
) -> List[PipelineNode]:
    """
    Append suggested api_call steps ({tool, outputVariable?, description?,
    parameters?}) whose tool and outputVariable are not already present.
    New nodes are numbered after the existing ones.
    """
    merged = list(pipeline or [])
    tools = {tool_resolver.normalize_reference(n.mcpTool) for n in merged if n.mcpTool}
    outputs = {n.outputVariable for n in merged}
    node_ids = {n.nodeId for n in merged}
    next_sequence = max((n.sequence for n in merged), default=0) + 1

    for step in steps or []:
        reference = step.get("tool") or step.get("mcpTool")
        if not reference:
            continue
        tool = tool_resolver.resolve(reference, catalog or []) or tool_resolver.normalize_reference(reference)
        output = step.get("outputVariable") or _default_output_name(tool)
        if tool in tools or output in outputs:
            continue

        node_id = f"node_{next_sequence}"
        while node_id in node_ids:
            node_id += "_suggested"
        node_ids.add(node_id)

        merged.append(PipelineNode(
            nodeId=node_id,
            nodeType="api_call",
            sequence=next_sequence,
            outputVariable=output,
            description=step.get("description") or step.get("purpose") or "",
            mcpTool=tool,
            parameters=step.get("parameters") or [],
        ))
        tools.add(tool)
        outputs.add(output)
        next_sequence += 1

    return merged


def _default_output_name(tool: str) -> str:
    # get_all_vendors -> vendorsData
    parts = [p for p in tool.split("_") if p and p not in ("get", "all", "list", "fetch")]
    if not parts:
        return "resultData"
    head, *rest = parts
    return head + "".join(p.capitalize() for p in rest) + "Data"
