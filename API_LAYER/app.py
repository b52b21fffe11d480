# API_LAYER/app.py
import json
import logging
import os
from asyncio import Lock
from pathlib import Path
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import DEBUG, REASONING_SERVICE_KEY, REASONING_SERVICE_URL, SEED_DATA_PATH, TURN_TIMEOUT_SECONDS
from core.collaborators import InMemoryRecordStore, StaticToolCatalog
from core.intent import Intent, PipelineNode, ToolCatalogEntry
from executors.chat import ChatExecutor, ChatRequest, MCQAnswerRequest
from executors.dry_run import DryRunExecutor, DryRunRequest
from executors.generation import GenerationExecutor, RegenerateRequest
from services import tool_resolver
from services.event_stream import HttpPhaseEventSource
from services.fast_path import LocalPhaseEventSource
from services.intent_generation import IntentGenerationService
from services.intent_matcher import rank_intents, route_query
from services.pipeline_simulator import build_render_context, simulate
from services.pipeline_validator import validate
from services.template_renderer import lint_template, render
from services.utils import deep_serialize


# -----------------------------
# Structured Logging Setup
# -----------------------------
class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "time": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
                "exception": record.exc_text,
            }
        )


logger = logging.getLogger("intent_engine_api")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
if not logger.handlers:
    logger.addHandler(handler)

# -----------------------------
# FastAPI App
# -----------------------------
app = FastAPI(title="Intent Resolution Engine API", version="1.0")


# -----------------------------
# Seed data (intents, tool catalog, tool fixtures)
# -----------------------------
def load_seed(path: str) -> Dict[str, Any]:
    if not path:
        return {"intents": [], "tools": [], "fixtures": {}}
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return {
        "intents": [Intent.model_validate(i) for i in raw.get("intents", [])],
        "tools": [ToolCatalogEntry.model_validate(t) for t in raw.get("tools", [])],
        "fixtures": raw.get("fixtures", {}),
    }


seed = load_seed(SEED_DATA_PATH)
record_store = InMemoryRecordStore(seed["intents"])
catalog_provider = StaticToolCatalog(seed["tools"])


def phase_event_source():
    if REASONING_SERVICE_URL:
        return HttpPhaseEventSource(REASONING_SERVICE_URL, REASONING_SERVICE_KEY, timeout=TURN_TIMEOUT_SECONDS)
    return LocalPhaseEventSource(seed["intents"], seed["tools"], seed["fixtures"])


def build_generation_service() -> IntentGenerationService:
    # imported here so the API starts without the LLM provider configured
    from agents.intent_generator_agent import PydanticAIReasoningService, get_intent_generator_agent

    # raises RuntimeError when GOOGLE_API_KEY is missing
    agent = get_intent_generator_agent()
    return IntentGenerationService(record_store, PydanticAIReasoningService(agent), catalog_provider)


dry_run_executor = DryRunExecutor(catalog_provider)
chat_executor = ChatExecutor(phase_event_source)
generation_executor: Optional[GenerationExecutor] = None

# -----------------------------
# Metrics
# -----------------------------
metrics_lock = Lock()
request_counters = {
    "resolve": 0,
    "validate": 0,
    "simulate": 0,
    "render": 0,
    "dry_run": 0,
    "match": 0,
    "chat": 0,
    "mcq": 0,
    "generation": 0,
    "total": 0,
    "errors": 0,
}


async def count(name: str) -> None:
    async with metrics_lock:
        request_counters[name] += 1
        request_counters["total"] += 1


async def count_error() -> None:
    async with metrics_lock:
        request_counters["errors"] += 1


# -----------------------------
# Failure envelope
# -----------------------------
ERROR_TYPES = {
    400: "bad_request",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    502: "upstream_error",
    503: "unavailable",
    504: "timeout",
}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"type": ERROR_TYPES.get(exc.status_code, "internal_error"), "message": str(exc.detail)}},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": {"type": "validation_error", "message": str(exc.errors()[:3])}},
    )


# -----------------------------
# Pydantic Models
# -----------------------------
class ResolveRequest(BaseModel):
    reference: str
    catalog: Optional[List[ToolCatalogEntry]] = None


class ValidateRequest(BaseModel):
    pipeline: List[PipelineNode]
    entityNames: List[str] = Field(default_factory=list)
    catalog: Optional[List[ToolCatalogEntry]] = None


class SimulateRequest(BaseModel):
    pipeline: List[PipelineNode]
    entityValues: Dict[str, Any] = Field(default_factory=dict)
    catalog: Optional[List[ToolCatalogEntry]] = None
    fixtures: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)


class RenderRequest(BaseModel):
    template: str
    data: Dict[str, Any] = Field(default_factory=dict)


class MatchRequest(BaseModel):
    query: str
    intents: Optional[List[Intent]] = None


class UserMessage(BaseModel):
    text: str


class MCQSelection(BaseModel):
    mcqId: str
    value: str


async def _catalog(inline: Optional[List[ToolCatalogEntry]]) -> List[ToolCatalogEntry]:
    return inline if inline is not None else await catalog_provider.list()


# -----------------------------
# API Endpoints
# -----------------------------
@app.get("/")
async def root():
    return {"message": "Intent Resolution Engine API is running."}


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "reasoning_service": "remote" if REASONING_SERVICE_URL else "local",
        "alias_table_version": tool_resolver.TOOL_ALIAS_TABLE_VERSION,
        "intents": len(seed["intents"]),
        "tools": len(seed["tools"]),
    }


@app.get("/metrics")
async def metrics() -> Dict[str, Any]:
    async with metrics_lock:
        return request_counters.copy()


@app.post("/tools/resolve")
async def resolve_tool(request: ResolveRequest):
    await count("resolve")
    catalog = await _catalog(request.catalog)
    resolved = tool_resolver.resolve(request.reference, catalog)
    return {
        "reference": request.reference,
        "resolved": resolved,
        "matched": bool(resolved),
        # no catalog yet: the normalized reference is returned for later re-resolution
        "deferred": not catalog,
        "aliasTableVersion": tool_resolver.TOOL_ALIAS_TABLE_VERSION,
    }


@app.post("/pipelines/validate")
async def validate_pipeline(request: ValidateRequest):
    await count("validate")
    catalog = await _catalog(request.catalog)
    result = validate(request.pipeline, request.entityNames, catalog)
    return {"valid": result.valid, "findings": deep_serialize(result.findings)}


@app.post("/pipelines/simulate")
async def simulate_pipeline(request: SimulateRequest):
    await count("simulate")
    catalog = await _catalog(request.catalog)
    results = simulate(request.pipeline, request.entityValues, catalog, request.fixtures, request.context)
    return {
        "results": deep_serialize(results),
        "context": deep_serialize(build_render_context(results, request.entityValues)),
    }


@app.post("/templates/render")
async def render_template(request: RenderRequest):
    await count("render")
    return {
        "rendered": render(request.template, request.data),
        "findings": deep_serialize(lint_template(request.template)),
    }


@app.post("/intents/dry-run")
async def dry_run(request: DryRunRequest):
    await count("dry_run")
    try:
        return await dry_run_executor.execute(request)
    except HTTPException:
        await count_error()
        logger.exception("[ERROR] dry run failed for intent=%s", request.intent.id)
        raise


@app.post("/intents/match")
async def match(request: MatchRequest):
    await count("match")
    intents = request.intents if request.intents is not None else await record_store.list()
    route = route_query(request.query, intents)
    return {
        "route": deep_serialize(route),
        "candidates": [
            {"intentId": m.intent.id, "name": m.intent.name, "confidence": m.confidence, "phrase": m.phrase}
            for m in rank_intents(request.query, intents)
        ],
    }


@app.post("/chat/{conversation_id}")
async def chat(conversation_id: str, message: UserMessage):
    await count("chat")
    logger.info(f"[REQUEST_START] conversation_id={conversation_id}, text_length={len(message.text)}")
    try:
        return await chat_executor.execute(ChatRequest(conversation_id=conversation_id, text=message.text))
    except HTTPException:
        await count_error()
        logger.exception(f"[ERROR] conversation_id={conversation_id}")
        raise


@app.post("/chat/{conversation_id}/mcq")
async def answer_mcq(conversation_id: str, selection: MCQSelection):
    await count("mcq")
    try:
        return await chat_executor.answer(
            MCQAnswerRequest(conversation_id=conversation_id, mcq_id=selection.mcqId, value=selection.value)
        )
    except HTTPException:
        await count_error()
        raise


@app.delete("/chat/{conversation_id}")
async def end_chat(conversation_id: str):
    if not chat_executor.end(conversation_id):
        await count_error()
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"type": "chat_ended", "conversationId": conversation_id}


@app.post("/intents/regenerate")
async def regenerate(request: RegenerateRequest):
    global generation_executor
    await count("generation")
    try:
        if generation_executor is None:
            generation_executor = GenerationExecutor(build_generation_service())
        return await generation_executor.execute(request)
    except HTTPException:
        await count_error()
        raise
    except RuntimeError as e:
        # missing GOOGLE_API_KEY and similar configuration problems
        await count_error()
        logger.exception(f"[ERROR] generation unavailable: {e}")
        raise HTTPException(status_code=503, detail=str(e) if DEBUG else "Intent generation is not configured")


# -----------------------------
# Entrypoint
# -----------------------------
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("API_LAYER.app:app", host="0.0.0.0", port=port, workers=1)
