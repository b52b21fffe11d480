from datetime import date
from typing import Any, Dict, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from core.collaborators import ToolCatalogProvider
from core.intent import Intent, ResolutionFlow
from executors.base import BaseExecutor
from services import tool_resolver
from services.fast_path import default_entity_values
from services.pipeline_simulator import build_render_context, simulate
from services.pipeline_validator import validate_intent
from services.template_renderer import render
from services.utils import deep_serialize


class DryRunRequest(BaseModel):
    intent: Intent
    entityValues: Dict[str, Any] = Field(default_factory=dict)
    fixtures: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    enrichmentOutputs: Dict[str, Any] = Field(default_factory=dict)
    today: Optional[date] = None


def run_dry_run(request: DryRunRequest, catalog) -> Dict[str, Any]:
    """
    Validate, re-resolve tools, simulate and render one intent.
    Pure apart from logging; never calls an external tool.
    """
    intent = request.intent
    flow = intent.resolutionFlow or ResolutionFlow()

    pipeline, reresolved = tool_resolver.reresolve_pipeline(flow.dataPipeline, catalog)
    intent = intent.model_copy(update={"resolutionFlow": flow.model_copy(update={"dataPipeline": pipeline})})
    validation = validate_intent(intent, catalog)

    entity_values = {**default_entity_values(intent), **request.entityValues}
    period_entities = [e.name for e in intent.entities if e.type in ("period", "date_range")]
    results = simulate(
        pipeline,
        entity_values,
        catalog,
        request.fixtures,
        request.context,
        period_entities=period_entities,
        today=request.today,
    )
    bag = build_render_context(results, entity_values, request.enrichmentOutputs)

    return {
        "valid": validation.valid,
        "findings": deep_serialize(validation.findings),
        "reresolved": deep_serialize(reresolved),
        "toolChecks": deep_serialize(tool_resolver.check_pipeline_tools(pipeline, catalog)),
        "simulation": deep_serialize(results),
        "context": deep_serialize(bag),
        "response": render(flow.responseConfig.template, bag),
        "responseType": flow.responseConfig.type,
        "followUpQuestions": list(flow.responseConfig.followUpQuestions),
    }


class DryRunExecutor(BaseExecutor):
    """
    Executes an intent's resolution flow against fixture data.
    """

    def __init__(self, catalog_provider: ToolCatalogProvider):
        self.catalog_provider = catalog_provider

    async def execute(self, request: DryRunRequest) -> Dict[str, Any]:
        try:
            catalog = await self.catalog_provider.list()
            data = run_dry_run(request, catalog)
            return {
                "type": "dry_run",
                "data": data,
                "message": data["response"],
            }
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(
                status_code=500,
                detail=str(e),
            )
