# FILE: services/intent_generation.py
"""
Intent (re)generation

- Asks the reasoning service for one section (or all) of an intent's config
- Merges the answer into the intent the way the editor expects:
    training     phrases appended, de-duplicated case-insensitively;
                 downstream sections that came back are applied too
    entities     replaces entities (plus downstream sections, if any)
    pipeline     replaces dataPipeline (plus downstream sections, if any)
    enrichments  replaces enrichments
    response     replaces responseConfig
    all          replaces everything
- api_call tool references are passed through the tool resolver
- Bounded by GENERATION_TIMEOUT_SECONDS; a failed training regeneration falls
  back to canned phrases, every other failure propagates
- Bulk regeneration is strictly sequential with a running progress counter
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from config import GENERATION_TIMEOUT_SECONDS
from core.collaborators import CancellationToken, ReasoningService, RecordStore, ToolCatalogProvider
from core.errors import ReasoningServiceError, ReasoningTimeout, TurnCancelled
from core.intent import Intent, ResolutionFlow, ResponseConfig, ToolCatalogEntry, utcnow
from services import tool_resolver

logger = logging.getLogger("intent_generation")

SECTIONS = ("all", "training", "entities", "pipeline", "enrichments", "response")
CASCADING_SECTIONS = ("training", "entities", "pipeline")
DEFAULT_PHRASE_COUNT = 10


class BulkProgress(BaseModel):
    current: int = 0
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    failures: List[Dict[str, str]] = Field(default_factory=list)


# -----------------------------
# Helpers
# -----------------------------
def fallback_training_phrases(name: str, count: int = DEFAULT_PHRASE_COUNT) -> List[str]:
    lowered = name.lower()
    phrases = [
        f"What is our {lowered}?",
        f"Show me the {lowered}",
        f"Tell me about {lowered}",
        f"{name} analysis",
        f"Current {lowered} status",
    ]
    return phrases[:max(count, 0)]


def merge_phrases(existing: Sequence[str], new: Sequence[str]) -> List[str]:
    """Append, keeping the first spelling of every case-insensitive duplicate."""
    seen = set()
    merged: List[str] = []
    for phrase in list(existing) + list(new):
        key = phrase.lower().strip()
        if not key or key in seen:
            continue
        seen.add(key)
        merged.append(phrase)
    return merged


def _resolve_pipeline_tools(nodes: Sequence[Dict[str, Any]], catalog: Sequence[ToolCatalogEntry]) -> List[Dict[str, Any]]:
    resolved_nodes = []
    for node in nodes or []:
        node = dict(node)
        if node.get("nodeType") == "api_call" and node.get("mcpTool"):
            resolved = tool_resolver.resolve(node["mcpTool"], catalog)
            node["mcpTool"] = resolved or node["mcpTool"]
        node["parameters"] = node.get("parameters") or []
        resolved_nodes.append(node)
    return resolved_nodes


def build_intent_context(
    intent: Intent,
    section: str,
    catalog: Sequence[ToolCatalogEntry],
    phrase_count: int = DEFAULT_PHRASE_COUNT,
    business_context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Request body for the reasoning service."""
    flow = intent.resolutionFlow or ResolutionFlow()
    return {
        "intentId": intent.id,
        "intentName": intent.name,
        "moduleName": intent.moduleId,
        "subModuleName": intent.subModuleId,
        "description": intent.description,
        "section": section,
        "phraseCount": phrase_count,
        "existingPhrases": list(intent.trainingPhrases),
        "existingEntities": [e.model_dump() for e in intent.entities],
        "existingPipeline": [n.model_dump() for n in flow.dataPipeline],
        "existingEnrichments": [e.model_dump() for e in flow.enrichments],
        "mcpTools": [
            {
                "name": tool.id,
                "description": tool.description,
                "inputSchema": {
                    "properties": {p.name: {"type": p.type} for p in tool.parameters},
                    "required": [p.name for p in tool.parameters if p.required],
                },
            }
            for tool in catalog
        ],
        "businessContext": business_context,
    }


def merge_generated(
    intent: Intent,
    data: Dict[str, Any],
    section: str,
    catalog: Sequence[ToolCatalogEntry] = (),
) -> Dict[str, Any]:
    """
    Changes to apply to `intent` for a generation answer. Returns a dict
    suitable for RecordStore.update().
    """
    changes: Dict[str, Any] = {
        "lastGeneratedAt": data.get("generatedAt") or utcnow(),
        "generatedBy": "ai",
        "aiConfidence": data.get("aiConfidence"),
        "updatedAt": utcnow(),
    }
    current = (intent.resolutionFlow or ResolutionFlow()).model_dump()
    default_response = ResponseConfig().model_dump()

    if section == "all":
        changes["trainingPhrases"] = data.get("trainingPhrases") or []
        changes["entities"] = data.get("entities") or []
        changes["resolutionFlow"] = {
            "dataPipeline": _resolve_pipeline_tools(data.get("dataPipeline") or [], catalog),
            "enrichments": data.get("enrichments") or [],
            "responseConfig": data.get("responseConfig") or default_response,
        }
        return changes

    if section == "training" and data.get("trainingPhrases"):
        changes["trainingPhrases"] = merge_phrases(intent.trainingPhrases, data["trainingPhrases"])

    downstream = any(data.get(k) for k in ("entities", "dataPipeline", "enrichments", "responseConfig"))
    if section in CASCADING_SECTIONS and downstream:
        if data.get("entities"):
            changes["entities"] = data["entities"]
        flow = dict(current)
        if data.get("dataPipeline"):
            flow["dataPipeline"] = _resolve_pipeline_tools(data["dataPipeline"], catalog)
        flow["enrichments"] = data.get("enrichments") or current.get("enrichments") or []
        flow["responseConfig"] = data.get("responseConfig") or current.get("responseConfig") or default_response
        changes["resolutionFlow"] = flow
    elif section == "enrichments" and data.get("enrichments"):
        changes["resolutionFlow"] = {**current, "enrichments": data["enrichments"]}
    elif section == "response" and data.get("responseConfig"):
        changes["resolutionFlow"] = {**current, "responseConfig": data["responseConfig"]}

    return changes


# -----------------------------
# Service
# -----------------------------
class IntentGenerationService:
    def __init__(
        self,
        store: RecordStore,
        reasoning: ReasoningService,
        catalog: Optional[ToolCatalogProvider] = None,
        timeout: float = GENERATION_TIMEOUT_SECONDS,
        business_context: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.reasoning = reasoning
        self.catalog = catalog
        self.timeout = timeout
        self.business_context = business_context

    async def _catalog(self) -> List[ToolCatalogEntry]:
        return await self.catalog.list() if self.catalog is not None else []

    async def _call(self, context: Dict[str, Any], token: Optional[CancellationToken]) -> Dict[str, Any]:
        if token is not None and token.cancelled:
            raise TurnCancelled("Generation was cancelled")
        try:
            data = await asyncio.wait_for(self.reasoning.generate(context), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ReasoningTimeout(f"Generation timed out after {int(self.timeout)} seconds. Please try again.")
        if token is not None and token.cancelled:
            raise TurnCancelled("Generation was cancelled")
        if not isinstance(data, dict):
            raise ReasoningServiceError("Reasoning service returned a non-object payload")
        if data.get("error"):
            raise ReasoningServiceError(str(data["error"]))
        return data

    async def regenerate(
        self,
        intent_id: str,
        section: str = "all",
        phrase_count: int = DEFAULT_PHRASE_COUNT,
        token: Optional[CancellationToken] = None,
    ) -> Intent:
        """Regenerate one section of a stored intent and persist the result."""
        if section not in SECTIONS:
            raise ValueError(f"Unknown section: {section}")

        intent = await self.store.get(intent_id)
        if intent is None:
            raise LookupError(f"Intent not found: {intent_id}")

        catalog = await self._catalog()
        context = build_intent_context(intent, section, catalog, phrase_count, self.business_context)
        logger.info("Regenerating %s for intent %s", section, intent.name)

        try:
            data = await self._call(context, token)
            changes = merge_generated(intent, data, section, catalog)
        except ReasoningServiceError as e:
            if section != "training":
                raise
            logger.warning("Generation failed (%s); using fallback training phrases", e)
            changes = {
                "trainingPhrases": merge_phrases(
                    intent.trainingPhrases, fallback_training_phrases(intent.name, phrase_count)
                ),
                "lastGeneratedAt": utcnow(),
                "updatedAt": utcnow(),
            }

        updated = await self.store.update(intent_id, changes)
        if updated is None:
            raise LookupError(f"Intent disappeared during generation: {intent_id}")
        return updated

    async def regenerate_many(
        self,
        intent_ids: Sequence[str],
        section: str = "all",
        phrase_count: int = DEFAULT_PHRASE_COUNT,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[Callable[[BulkProgress], None]] = None,
    ) -> BulkProgress:
        """One intent at a time; a failure is counted and the run continues."""
        progress = BulkProgress(total=len(intent_ids))

        for index, intent_id in enumerate(intent_ids, start=1):
            if token is not None and token.cancelled:
                progress.cancelled = True
                logger.info("Bulk generation cancelled at %d/%d", index - 1, progress.total)
                break

            progress.current = index
            try:
                await self.regenerate(intent_id, section, phrase_count, token)
                progress.succeeded += 1
            except TurnCancelled:
                progress.cancelled = True
                break
            except (ReasoningServiceError, LookupError, ValueError) as e:
                progress.failed += 1
                progress.failures.append({"intentId": intent_id, "error": str(e)})
                logger.warning("Bulk generation failed for %s: %s", intent_id, e)

            if on_progress is not None:
                on_progress(progress.model_copy())

        logger.info(
            "Bulk generation complete: %d succeeded, %d failed", progress.succeeded, progress.failed
        )
        return progress
