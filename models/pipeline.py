# FILE: models/pipeline.py
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Literal


# -----------------------------
# Validation findings (Validator → Editor / API)
# -----------------------------
class ValidationFinding(BaseModel):
    code: str = Field(..., description="Stable machine-readable finding code")
    severity: Literal["error", "warning"] = "error"
    message: str
    nodeId: Optional[str] = None
    reference: Optional[str] = None


class ValidationResult(BaseModel):
    findings: List[ValidationFinding] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(f.severity == "error" for f in self.findings)

    def codes(self) -> List[str]:
        return [f.code for f in self.findings]

    def errors(self) -> List[ValidationFinding]:
        return [f for f in self.findings if f.severity == "error"]


# -----------------------------
# Simulation output (Simulator → Renderer)
# -----------------------------
class SimResult(BaseModel):
    """
    Stand-in result for one node. Only the fields of the node's type are set:
    api_call → status/tool/params/data, computation → formula/result,
    conditional → condition/result.
    """

    nodeId: str
    nodeType: Literal["api_call", "computation", "conditional"]
    sequence: int

    status: Optional[str] = None
    tool: Optional[str] = None
    resolved: Optional[bool] = None
    params: Optional[Dict[str, Any]] = None
    data: Optional[Any] = None

    formula: Optional[str] = None
    condition: Optional[str] = None
    result: Optional[Any] = None

    error: Optional[str] = None

    def value(self) -> Any:
        """What later nodes and templates see for this node's outputVariable."""
        if self.nodeType == "api_call":
            return self.data
        return self.result


# -----------------------------
# Tool audit records
# -----------------------------
class ToolReresolution(BaseModel):
    nodeId: str
    sequence: int
    previous: Optional[str]
    resolved: str


class ToolCheck(BaseModel):
    nodeId: str
    reference: str
    status: Literal["found", "missing"]
