# FILE: agents/intent_generator_agent.py
"""
LLM generator for intent configuration (training phrases, entities,
data pipeline, enrichments, response template).

The Gemini provider is built on first use so that importing this module never
needs GOOGLE_API_KEY.
"""

import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from config import GEMINI_MODEL_NAME, get_env_var
from core.collaborators import ReasoningService
from core.errors import ReasoningServiceError
from core.intent import Entity, Enrichment, PipelineNode, ResponseConfig

logger = logging.getLogger("intent_generator_agent")


# -----------------------------
# Output schema
# -----------------------------
class GeneratedIntentConfig(BaseModel):
    trainingPhrases: List[str] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    dataPipeline: List[PipelineNode] = Field(default_factory=list)
    enrichments: List[Enrichment] = Field(default_factory=list)
    responseConfig: Optional[ResponseConfig] = None
    aiConfidence: Optional[float] = Field(None, ge=0, le=1)


# -----------------------------
# API rate limiting
# -----------------------------
class APIRateLimiter:
    def __init__(self, max_requests_per_minute: int = 15):
        self.max_requests = max_requests_per_minute
        self.requests: List[float] = []
        self.lock = asyncio.Lock()

    async def acquire(self):
        async with self.lock:
            now = time.time()
            self.requests = [t for t in self.requests if now - t < 60]
            if len(self.requests) >= self.max_requests:
                wait_time = 60 - (now - min(self.requests)) + 1
                logger.warning(f"Rate limit reached, waiting {wait_time:.2f} seconds")
                await asyncio.sleep(wait_time)
                now = time.time()
                self.requests = [t for t in self.requests if now - t < 60]
            self.requests.append(now)


rate_limiter = APIRateLimiter(max_requests_per_minute=15)


# -----------------------------
# System prompt
# -----------------------------
SYSTEM_PROMPT = """
You are an Intent Configuration Agent for a financial assistant (CFO / bookkeeping).
You receive one intent (name, module, description), the section to generate and
the list of available MCP tools. Output strictly JSON matching the schema.

Sections:
- training: `phraseCount` natural user questions; do not repeat `existingPhrases`.
  Use {{entityName}} placeholders where an entity value would appear.
- entities: what must be extracted from the question (name, type, required,
  defaultValue, prompt, enumValues only for type "enum").
- pipeline: ordered dataPipeline nodes. sequence starts at 1 and is contiguous.
  nodeType is api_call (mcpTool MUST be one of the provided tool names),
  computation (formula over earlier outputVariables) or conditional (condition).
  Parameters: {name, value, source: static|entity|context|previous_node}.
- enrichments: {id, type, config, description}.
- response: responseConfig {type, template, followUpQuestions}. Templates use
  {var}, {var | currency}, {#if cond}...{/if} and {#each list}...{/each}.
- all: every section above.

Rules:
1. Only reference outputVariables produced by EARLIER nodes.
2. Never invent tool names; pick the closest provided tool.
3. Set aiConfidence (0..1) to how well the tools cover the intent.
"""


_agent: Optional[Agent] = None


def get_intent_generator_agent() -> Agent:
    global _agent
    if _agent is None:
        provider = GoogleProvider(api_key=get_env_var("GOOGLE_API_KEY"))
        model = GoogleModel(GEMINI_MODEL_NAME, provider=provider)
        _agent = Agent(model, system_prompt=SYSTEM_PROMPT, output_type=GeneratedIntentConfig)
    return _agent


class PydanticAIReasoningService(ReasoningService):
    """ReasoningService backed by the Gemini intent generator agent."""

    def __init__(self, agent: Optional[Agent] = None):
        self._agent = agent

    async def generate(self, intent_context: Dict[str, Any]) -> Dict[str, Any]:
        agent = self._agent or get_intent_generator_agent()
        await rate_limiter.acquire()
        try:
            result = await agent.run(json.dumps(intent_context, default=str))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # provider/network/validation failures all surface as one error type
            logger.exception(f"Intent generation failed: {e}")
            raise ReasoningServiceError(f"Intent generation failed: {e}") from e

        config: GeneratedIntentConfig = result.output
        return config.model_dump(exclude_none=True)
