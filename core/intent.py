# core/intent.py
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Literal, Optional


EntityType = Literal[
    "project", "vendor", "customer", "date", "date_range", "number",
    "amount", "percentage", "period", "enum", "string",
]
NodeType = Literal["api_call", "computation", "conditional"]
ParameterSource = Literal["static", "entity", "context", "previous_node"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Entity(BaseModel):
    """
    Extraction parameter an intent needs from the user's query.
    """

    name: str
    type: EntityType = "string"
    required: bool = False
    defaultValue: Optional[Any] = None
    prompt: Optional[str] = Field(None, description="Follow-up question when missing")
    enumValues: Optional[List[str]] = None


class Parameter(BaseModel):
    name: str
    value: Any = ""
    source: ParameterSource = "static"


class PipelineNode(BaseModel):
    """
    One step of an intent's data-fetch plan.
    Nodes are executed by ascending `sequence`; authors place dependencies earlier.
    """

    nodeId: str
    nodeType: NodeType
    sequence: int
    outputVariable: str
    description: str = ""

    # api_call
    mcpTool: Optional[str] = Field(None, description="Tool reference, not guaranteed canonical")
    parameters: List[Parameter] = Field(default_factory=list)

    # computation
    formula: Optional[str] = None

    # conditional
    condition: Optional[str] = None

    @field_validator("parameters", mode="before")
    @classmethod
    def default_parameters(cls, v):
        return v or []


class Enrichment(BaseModel):
    id: str
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class ResponseConfig(BaseModel):
    type: str = "metric_with_trend"
    template: str = "📊 Result: {data}"
    followUpQuestions: List[str] = Field(default_factory=list)


class ResolutionFlow(BaseModel):
    dataPipeline: List[PipelineNode] = Field(default_factory=list)
    enrichments: List[Enrichment] = Field(default_factory=list)
    responseConfig: ResponseConfig = Field(default_factory=ResponseConfig)


class Intent(BaseModel):
    """
    A passive container for a named query category.
    This does NOT execute logic.
    The record store owns it; the core only reads and transforms copies.
    """

    id: str
    name: str
    moduleId: str = ""
    subModuleId: str = ""
    description: Optional[str] = None
    isActive: bool = True

    # Display order only; matching treats these as a set
    trainingPhrases: List[str] = Field(default_factory=list)
    entities: List[Entity] = Field(default_factory=list)
    resolutionFlow: Optional[ResolutionFlow] = None

    generatedBy: Literal["ai", "manual", "pending"] = "pending"
    aiConfidence: Optional[float] = Field(None, ge=0, le=1)

    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)
    lastGeneratedAt: Optional[datetime] = None

    def entity_names(self) -> List[str]:
        return [e.name for e in self.entities]


class ToolParameter(BaseModel):
    name: str
    type: str = "string"
    required: bool = False


class ToolCatalogEntry(BaseModel):
    """
    One canonical tool as listed by the tool catalog provider.
    """

    id: str
    name: Optional[str] = None
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)
