# FILE: services/fast_path.py
"""
Local phase-event source

Answers a turn without the remote reasoning service when the query matches an
intent confidently: the intent's pipeline is simulated against fixtures and
its response template rendered. Anything else is routed to the LLM path,
which this source cannot serve; it reports an error event instead.
"""

import logging
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from core.collaborators import CancellationToken, PhaseEventSource
from core.intent import Intent, ToolCatalogEntry, utcnow
from models.understanding import PhaseEvent
from services.intent_matcher import match_intent, route_query
from services.pipeline_simulator import build_render_context, simulate
from services.query_classifier import detect_cross_over
from services.template_renderer import render

logger = logging.getLogger("fast_path")


def _event(kind: str, data: Optional[Dict[str, Any]] = None) -> PhaseEvent:
    return PhaseEvent(type=kind, data=data or {}, timestamp=utcnow().isoformat())


def default_entity_values(intent: Intent) -> Dict[str, Any]:
    return {e.name: e.defaultValue for e in intent.entities if e.defaultValue is not None}


def fast_path_events(
    query: str,
    intents: Sequence[Intent],
    catalog: Sequence[ToolCatalogEntry] = (),
    fixtures: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
    current_category: Optional[str] = None,
) -> List[PhaseEvent]:
    """
    The full event sequence for one query, as the server would emit it.
    `current_category` is the previous turn's category; a write request made
    from a cfo conversation is flagged as a cross-over.
    """
    events = [_event("understanding_started"), _event("route_started", {"query": query, "intentCount": len(intents)})]

    route = route_query(query, intents)
    cross_over = detect_cross_over(query, current_category)
    if cross_over:
        route = route.model_copy(update={"crossOver": True})
    events.append(_event("route_classified", route.model_dump(mode="json", exclude_none=True)))
    if cross_over:
        logger.info("[MODE_SWITCH] %s -> bookkeeper", current_category)
        events.append(_event("mode_switch", {"from": current_category, "to": "bookkeeper"}))

    match = match_intent(query, intents) if route.path.is_fast() else None
    if match is None:
        events.append(_event("error", {
            "phase": "llm",
            "message": "No confident intent match and the reasoning service is not configured",
        }))
        return events

    intent = match.intent
    flow = intent.resolutionFlow
    events.append(_event("intent_detected", {
        "intent": {
            "id": intent.id,
            "name": intent.name,
            "moduleId": intent.moduleId,
            "confidence": match.confidence,
            "description": intent.description,
        },
        "reasoning": f"Matched training phrase with {match.confidence * 100:.0f}% confidence",
    }))

    entity_values = default_entity_values(intent)
    events.append(_event("entities_extracted", {"entities": entity_values}))

    if flow is None:
        response = f"I recognised '{intent.name}' but it has no resolution flow yet."
        events.append(_event("response_generating"))
        events.append(_event("response_chunk", {"text": response}))
        events.append(_event("complete", {"response": response, "path": "fast", "category": route.category.value if route.category else None}))
        return events

    events.append(_event("pipeline_planned", {"steps": [
        {"tool": n.mcpTool or n.nodeType, "description": n.description}
        for n in flow.dataPipeline
    ]}))
    if flow.enrichments:
        events.append(_event("enrichments_planned", {
            "enrichments": [{"type": e.type, "description": e.description} for e in flow.enrichments],
            "responseFormat": flow.responseConfig.type,
        }))

    events.append(_event("pipeline_executing", {"stepCount": len(flow.dataPipeline)}))
    results = simulate(flow.dataPipeline, entity_values, catalog, fixtures, today=today)
    for result in results.values():
        if result.nodeType != "api_call":
            continue
        events.append(_event("executing_tool", {"tool": result.tool}))
        data = result.data
        events.append(_event("tool_result", {
            "tool": result.tool,
            "success": bool(result.resolved),
            "recordCount": len(data) if isinstance(data, list) else None,
            "error": None if result.resolved else "tool did not resolve",
        }))

    events.append(_event("response_generating"))
    response = render(flow.responseConfig.template, build_render_context(results, entity_values))
    events.append(_event("response_chunk", {"text": response}))
    events.append(_event("complete", {
        "response": response,
        "matchedIntent": {"id": intent.id, "name": intent.name, "confidence": match.confidence},
        "extractedEntities": entity_values,
        "responseFormat": flow.responseConfig.type,
        "mcpToolResults": [
            {"tool": r.tool, "success": bool(r.resolved)}
            for r in results.values() if r.nodeType == "api_call"
        ],
        "path": "fast",
        "category": route.category.value if route.category else None,
    }))
    return events


class LocalPhaseEventSource(PhaseEventSource):
    def __init__(
        self,
        intents: Sequence[Intent],
        catalog: Sequence[ToolCatalogEntry] = (),
        fixtures: Optional[Mapping[str, Any]] = None,
    ):
        self.intents = list(intents)
        self.catalog = list(catalog)
        self.fixtures = dict(fixtures or {})

    async def stream(self, request: Dict[str, Any], token: CancellationToken) -> AsyncIterator[PhaseEvent]:
        events = fast_path_events(
            request.get("query", ""),
            self.intents,
            self.catalog,
            self.fixtures,
            current_category=request.get("currentCategory"),
        )
        for event in events:
            if token.cancelled:
                return
            yield event
