# FILE: models/understanding.py
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional
import uuid

from core.intent import utcnow
from core.route import RouteCategory, RoutePath
from models.mcq import MCQData


# -----------------------------
# Phase events (server → orchestrator)
# -----------------------------
class PhaseEvent(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[str] = None

    @field_validator("data", mode="before")
    @classmethod
    def data_must_be_mapping(cls, v):
        return v if isinstance(v, dict) else {}


# -----------------------------
# Routing
# -----------------------------
class IntentAttempt(BaseModel):
    name: str
    confidence: float = 0.0


class RouteIntent(BaseModel):
    name: str
    confidence: float = 0.0
    description: Optional[str] = None


class RouteClassification(BaseModel):
    path: RoutePath = RoutePath.LLM
    category: Optional[RouteCategory] = None
    confidence: Optional[float] = None
    subCategory: Optional[str] = None
    matchedKeywords: List[str] = Field(default_factory=list)
    crossOver: bool = False
    intentAttempted: Optional[IntentAttempt] = None
    reason: Optional[str] = None
    intent: Optional[RouteIntent] = None

    @field_validator("path", mode="before")
    @classmethod
    def known_path(cls, v):
        return v if v in {p.value for p in RoutePath} or isinstance(v, RoutePath) else RoutePath.LLM

    @field_validator("category", mode="before")
    @classmethod
    def known_category(cls, v):
        if isinstance(v, RouteCategory):
            return v
        return v if v in {c.value for c in RouteCategory} else None

    @field_validator("crossOver", mode="before")
    @classmethod
    def cross_over_flag(cls, v):
        return bool(v)


class ToolsFilteredInfo(BaseModel):
    category: Optional[str] = None
    toolCount: int = 0
    totalMcpTools: Optional[int] = None
    tools: Optional[List[str]] = None
    reason: Optional[str] = None


# -----------------------------
# Understanding record (per turn)
# -----------------------------
class MatchedIntent(BaseModel):
    id: Optional[str] = None
    name: str
    moduleId: Optional[str] = None
    confidence: float = 0.0
    description: Optional[str] = None


class PipelineStep(BaseModel):
    tool: str = ""
    description: str = ""
    purpose: Optional[str] = None


class EnrichmentPlan(BaseModel):
    type: str = ""
    description: str = ""


class ToolResult(BaseModel):
    tool: str
    success: bool = False
    recordCount: Optional[int] = None
    error: Optional[str] = None


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class AgentUnderstanding(BaseModel):
    """
    Everything the orchestrator has learnt about the current turn.
    Replaced, never mutated, by services/understanding_reducer.
    """

    intent: Optional[MatchedIntent] = None
    reasoning: Optional[str] = None
    entities: Dict[str, Any] = Field(default_factory=dict)
    pipelineSteps: List[PipelineStep] = Field(default_factory=list)
    enrichments: List[EnrichmentPlan] = Field(default_factory=list)
    responseFormat: Optional[str] = None
    toolResults: List[ToolResult] = Field(default_factory=list)
    isComplete: bool = False
    route: Optional[RouteClassification] = None
    toolsFiltered: Optional[ToolsFilteredInfo] = None


# -----------------------------
# Conversation messages
# -----------------------------
class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: str  # "user" | "agent"
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    understanding: Optional[AgentUnderstanding] = None
    isStreaming: bool = False
    mcqData: Optional[MCQData] = None
    usage: Optional[Usage] = None
    executionTime: Optional[str] = None
    llmModel: Optional[str] = None


class CompleteEventData(BaseModel):
    response: str = ""
    matchedIntent: Optional[MatchedIntent] = None
    extractedEntities: Dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    pipelineSteps: List[PipelineStep] = Field(default_factory=list)
    enrichments: List[EnrichmentPlan] = Field(default_factory=list)
    responseFormat: str = ""
    mcpToolResults: List[Dict[str, Any]] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    llmModel: str = ""
    path: Optional[RoutePath] = None
    category: Optional[str] = None


# -----------------------------
# Turn outcome (Orchestrator → API)
# -----------------------------
class TurnOutcome(str, Enum):
    COMPLETE = "complete"
    SUSPENDED = "suspended_for_clarification"
    ERROR = "error"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


class TurnResult(BaseModel):
    outcome: TurnOutcome
    message: Optional[ChatMessage] = None
    understanding: AgentUnderstanding = Field(default_factory=AgentUnderstanding)
    phases: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    mcqSuppressed: bool = False
