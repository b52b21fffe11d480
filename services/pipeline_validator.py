# FILE: services/pipeline_validator.py
"""
Structural validation of intent pipelines

- Sequence numbers must be exactly 1..N in array order
- outputVariable and nodeId must be unique
- Every reference in a formula, condition or previous_node parameter must be
  produced by an earlier node or be a known entity name
- Findings are collected, never raised; the editor decides what to block on
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from core.intent import Intent, PipelineNode
from models.pipeline import ValidationFinding, ValidationResult
from services import tool_resolver
from services.expressions import extract_references, root_name
from services.template_renderer import lint_template

logger = logging.getLogger("pipeline_validator")


# -----------------------------
# Sequence / uniqueness
# -----------------------------
def _check_sequences(pipeline: Sequence[PipelineNode]) -> List[ValidationFinding]:
    findings: List[ValidationFinding] = []
    seen: Dict[int, str] = {}

    for node in pipeline:
        if node.sequence in seen:
            findings.append(ValidationFinding(
                code="duplicate_sequence",
                message=f"Sequence {node.sequence} is used by both '{seen[node.sequence]}' and '{node.nodeId}'",
                nodeId=node.nodeId,
            ))
        else:
            seen[node.sequence] = node.nodeId

    expected = set(range(1, len(pipeline) + 1))
    if set(seen) != expected:
        missing = sorted(expected - set(seen))
        extra = sorted(set(seen) - expected)
        findings.append(ValidationFinding(
            code="sequence_not_contiguous",
            message=f"Sequences must be 1..{len(pipeline)}; missing {missing}, unexpected {extra}",
        ))

    for position, node in enumerate(pipeline, start=1):
        if node.sequence != position:
            findings.append(ValidationFinding(
                code="sequence_order_mismatch",
                message=f"Node '{node.nodeId}' is at position {position} but declares sequence {node.sequence}",
                nodeId=node.nodeId,
            ))

    return findings


def _check_uniqueness(pipeline: Sequence[PipelineNode]) -> List[ValidationFinding]:
    findings: List[ValidationFinding] = []
    node_ids: Dict[str, int] = {}
    outputs: Dict[str, str] = {}

    for node in pipeline:
        if node.nodeId in node_ids:
            findings.append(ValidationFinding(
                code="duplicate_node_id",
                message=f"nodeId '{node.nodeId}' appears more than once",
                nodeId=node.nodeId,
            ))
        node_ids[node.nodeId] = node.sequence

        if node.outputVariable in outputs:
            findings.append(ValidationFinding(
                code="duplicate_output_variable",
                message=f"outputVariable '{node.outputVariable}' is produced by both "
                        f"'{outputs[node.outputVariable]}' and '{node.nodeId}'",
                nodeId=node.nodeId,
                reference=node.outputVariable,
            ))
        else:
            outputs[node.outputVariable] = node.nodeId

    return findings


# -----------------------------
# Per-node content
# -----------------------------
def _node_references(node: PipelineNode) -> List[str]:
    refs: List[str] = []
    if node.nodeType == "computation":
        refs.extend(extract_references(node.formula))
    elif node.nodeType == "conditional":
        refs.extend(extract_references(node.condition))
    for param in node.parameters:
        if param.source == "previous_node" and isinstance(param.value, str) and param.value.strip():
            refs.append(param.value.strip())
    return refs


def _check_node_content(node: PipelineNode, catalog) -> List[ValidationFinding]:
    findings: List[ValidationFinding] = []

    if node.nodeType == "api_call":
        if not node.mcpTool or not node.mcpTool.strip():
            findings.append(ValidationFinding(
                code="missing_tool",
                message=f"api_call node '{node.nodeId}' has no mcpTool",
                nodeId=node.nodeId,
            ))
        elif catalog and not tool_resolver.resolve(node.mcpTool, catalog):
            findings.append(ValidationFinding(
                code="unresolved_tool",
                severity="warning",
                message=f"Tool '{node.mcpTool}' does not match anything in the catalog",
                nodeId=node.nodeId,
                reference=node.mcpTool,
            ))
    elif node.nodeType == "computation" and not (node.formula or "").strip():
        findings.append(ValidationFinding(
            code="empty_formula",
            message=f"computation node '{node.nodeId}' has no formula",
            nodeId=node.nodeId,
        ))
    elif node.nodeType == "conditional" and not (node.condition or "").strip():
        findings.append(ValidationFinding(
            code="empty_condition",
            message=f"conditional node '{node.nodeId}' has no condition",
            nodeId=node.nodeId,
        ))

    return findings


def _check_references(
    pipeline: Sequence[PipelineNode],
    entity_names: Iterable[str],
) -> List[ValidationFinding]:
    findings: List[ValidationFinding] = []
    entities = set(entity_names)
    all_outputs = {node.outputVariable for node in pipeline}
    available = set(entities)

    for node in pipeline:
        for ref in _node_references(node):
            name = root_name(ref)
            if name in available:
                continue
            if name in all_outputs:
                message = f"'{ref}' in node '{node.nodeId}' is only produced by a later node"
            else:
                message = f"'{ref}' in node '{node.nodeId}' is not an output variable or entity"
            findings.append(ValidationFinding(
                code="undefined_reference",
                message=message,
                nodeId=node.nodeId,
                reference=ref,
            ))
        available.add(node.outputVariable)

    return findings


# -----------------------------
# Public API
# -----------------------------
def validate(
    pipeline: Sequence[PipelineNode],
    entity_names: Iterable[str] = (),
    catalog=None,
) -> ValidationResult:
    """
    Validate a pipeline's structure. Never raises for well-typed input.
    `catalog` (optional) enables the unresolved_tool warning.
    """
    pipeline = list(pipeline or [])
    findings: List[ValidationFinding] = []
    findings.extend(_check_sequences(pipeline))
    findings.extend(_check_uniqueness(pipeline))
    for node in pipeline:
        findings.extend(_check_node_content(node, catalog))
    findings.extend(_check_references(pipeline, entity_names))

    result = ValidationResult(findings=findings)
    if not result.valid:
        logger.info("[VALIDATION] %d finding(s): %s", len(findings), ", ".join(result.codes()))
    return result


def validate_intent(intent: Intent, catalog=None) -> ValidationResult:
    """Pipeline checks plus entity rules and response template syntax."""
    findings: List[ValidationFinding] = []

    seen: set = set()
    for entity in intent.entities:
        if entity.name in seen:
            findings.append(ValidationFinding(
                code="duplicate_entity",
                message=f"Entity '{entity.name}' is declared more than once",
                reference=entity.name,
            ))
        seen.add(entity.name)

        if entity.type == "enum" and not entity.enumValues:
            findings.append(ValidationFinding(
                code="enum_without_values",
                message=f"Enum entity '{entity.name}' has no enumValues",
                reference=entity.name,
            ))
        elif entity.type != "enum" and entity.enumValues:
            findings.append(ValidationFinding(
                code="enum_values_on_non_enum",
                severity="warning",
                message=f"Entity '{entity.name}' of type {entity.type} declares enumValues",
                reference=entity.name,
            ))

    flow = intent.resolutionFlow
    if flow is not None:
        findings.extend(validate(flow.dataPipeline, intent.entity_names(), catalog).findings)
        findings.extend(lint_template(flow.responseConfig.template))

    return ValidationResult(findings=findings)


def first_error(result: ValidationResult) -> Optional[ValidationFinding]:
    errors = result.errors()
    return errors[0] if errors else None
