# models/mcq.py
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

from core.intent import utcnow


MCQType = Literal[
    "entity_resolution",
    "parameter_resolution",
    "write_confirmation",
    "disambiguation",
]

CANCEL_VALUE = "cancel"


class MCQStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    EXPIRED = "expired"
    OVERRIDDEN = "overridden"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self is not MCQStatus.ACTIVE


class MCQOption(BaseModel):
    label: str
    value: str
    description: Optional[str] = None


class MCQData(BaseModel):
    """
    A clarification card. Only services/mcq_engine changes its status.
    """

    mcqId: Optional[str] = None
    mcqType: MCQType = "disambiguation"
    question: str
    options: List[MCQOption] = Field(default_factory=list)
    selectedValue: Optional[str] = None
    createdAt: datetime = Field(default_factory=utcnow)
    status: MCQStatus = MCQStatus.ACTIVE

    # What the server would run once the card is answered
    pendingTool: Optional[str] = None
    pendingArgs: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)

    def option_for(self, value: str) -> Optional[MCQOption]:
        for option in self.options:
            if option.value == value:
                return option
        return None
