# FILE: services/understanding_reducer.py
"""
Phase-event reducer

reduce(understanding, phase, event) -> (understanding, phase)

Pure: the input understanding is never mutated; every event is one local
merge. Events that only concern the chat transcript (response_chunk,
mcq_prompt) do not change the understanding; the orchestrator handles them.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from models.understanding import (
    AgentUnderstanding,
    CompleteEventData,
    EnrichmentPlan,
    MatchedIntent,
    PhaseEvent,
    PipelineStep,
    RouteClassification,
    ToolResult,
    ToolsFilteredInfo,
)

logger = logging.getLogger("understanding_reducer")

# -----------------------------
# Phases
# -----------------------------
PHASE_IDLE = ""
PHASE_ROUTING = "routing"
PHASE_DETECTING = "detecting"
PHASE_TOOLS = "tools"
PHASE_INTENT = "intent"
PHASE_ENTITIES = "entities"
PHASE_PIPELINE = "pipeline"
PHASE_EXECUTING = "executing"
PHASE_ENRICHMENTS = "enrichments"
PHASE_RESPONSE = "response"
PHASE_COMPLETE = "complete"
PHASE_FAILED = "failed"

# events whose only effect is moving the phase indicator
PHASE_ONLY_EVENTS: Dict[str, str] = {
    "route_started": PHASE_ROUTING,
    "intent_detecting": PHASE_DETECTING,
    "pipeline_executing": PHASE_EXECUTING,
    "executing_tool": PHASE_EXECUTING,
    "response_generating": PHASE_RESPONSE,
}

KNOWN_EVENTS = frozenset({
    "connected", "understanding_started", "route_started", "route_classified",
    "tools_filtered", "intent_detecting", "intent_detected", "entities_extracted",
    "pipeline_planned", "pipeline_executing", "enrichments_planned",
    "enrichments_applying", "executing_tool", "tool_result", "mode_switch",
    "mcq_prompt", "response_generating", "response_chunk", "complete", "error",
})


def _models(model, items: Any) -> List[Any]:
    """Validate a list payload item by item, dropping malformed entries."""
    out = []
    for item in items if isinstance(items, list) else []:
        try:
            out.append(model.model_validate(item))
        except ValidationError:
            logger.warning("dropping malformed %s: %r", model.__name__, item)
    return out


def _optional_model(model, value: Any):
    if not isinstance(value, Mapping):
        return None
    try:
        return model.model_validate(value)
    except ValidationError:
        logger.warning("dropping malformed %s: %r", model.__name__, value)
        return None


def _merge_complete(current: AgentUnderstanding, data: Dict[str, Any]) -> AgentUnderstanding:
    try:
        done = CompleteEventData.model_validate(data)
    except ValidationError:
        logger.warning("malformed complete payload; keeping streamed understanding")
        return current.model_copy(update={"isComplete": True})

    route = current.route.model_copy() if current.route else RouteClassification()
    if done.path is not None:
        route = route.model_copy(update={"path": done.path})
    if done.category is not None:
        route = RouteClassification.model_validate({**route.model_dump(), "category": done.category})

    tool_results = current.toolResults
    if done.mcpToolResults:
        tool_results = _models(ToolResult, done.mcpToolResults)

    return current.model_copy(update={
        "intent": done.matchedIntent or current.intent,
        "reasoning": done.reasoning or current.reasoning,
        "entities": done.extractedEntities or current.entities,
        "pipelineSteps": done.pipelineSteps or current.pipelineSteps,
        "enrichments": done.enrichments or current.enrichments,
        "responseFormat": done.responseFormat or current.responseFormat,
        "toolResults": tool_results,
        "route": route,
        "isComplete": True,
    })


def reduce(
    understanding: AgentUnderstanding,
    phase: str,
    event: PhaseEvent,
) -> Tuple[AgentUnderstanding, str]:
    """Apply one phase event. Unknown event types are ignored."""
    kind = event.type
    data = event.data

    if kind in PHASE_ONLY_EVENTS:
        return understanding, PHASE_ONLY_EVENTS[kind]

    if kind == "understanding_started":
        return AgentUnderstanding(), PHASE_ROUTING

    if kind == "route_classified":
        route = _optional_model(RouteClassification, data) or RouteClassification()
        return understanding.model_copy(update={"route": route}), PHASE_DETECTING

    if kind == "tools_filtered":
        info = _optional_model(ToolsFilteredInfo, data)
        return understanding.model_copy(update={"toolsFiltered": info}), PHASE_TOOLS

    if kind == "intent_detected":
        return understanding.model_copy(update={
            "intent": _optional_model(MatchedIntent, data.get("intent")),
            "reasoning": data.get("reasoning") if isinstance(data.get("reasoning"), str) else None,
        }), PHASE_INTENT

    if kind == "entities_extracted":
        entities = data.get("entities")
        return understanding.model_copy(update={
            "entities": dict(entities) if isinstance(entities, Mapping) else {},
        }), PHASE_ENTITIES

    if kind == "pipeline_planned":
        steps = _models(PipelineStep, data.get("steps"))
        return understanding.model_copy(update={"pipelineSteps": steps}), PHASE_PIPELINE

    if kind == "enrichments_planned":
        fmt = data.get("responseFormat")
        return understanding.model_copy(update={
            "enrichments": _models(EnrichmentPlan, data.get("enrichments")),
            "responseFormat": fmt if isinstance(fmt, str) else understanding.responseFormat,
        }), PHASE_ENRICHMENTS

    if kind == "enrichments_applying":
        if "enrichments" not in data:
            return understanding, PHASE_ENRICHMENTS
        return understanding.model_copy(update={
            "enrichments": _models(EnrichmentPlan, data.get("enrichments")),
        }), PHASE_ENRICHMENTS

    if kind == "tool_result":
        results = list(understanding.toolResults) + _models(ToolResult, [data])
        return understanding.model_copy(update={"toolResults": results}), phase

    if kind == "mode_switch":
        if understanding.route is None:
            return understanding, phase
        route = understanding.route.model_copy(update={"crossOver": True})
        return understanding.model_copy(update={"route": route}), phase

    if kind == "complete":
        return _merge_complete(understanding, data), PHASE_COMPLETE

    if kind == "error":
        return understanding, PHASE_FAILED

    if kind not in KNOWN_EVENTS:
        logger.debug("ignoring unknown phase event %s", kind)
    return understanding, phase


def apply_all(events, understanding: Optional[AgentUnderstanding] = None) -> Tuple[AgentUnderstanding, str]:
    """Fold a finite list of events; handy for replays and tests."""
    state = understanding or AgentUnderstanding()
    phase = PHASE_IDLE
    for event in events:
        state, phase = reduce(state, phase, event if isinstance(event, PhaseEvent) else PhaseEvent.model_validate(event))
    return state, phase
