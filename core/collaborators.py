# core/collaborators.py
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from core.intent import Intent, ToolCatalogEntry


class RecordStore(ABC):
    """
    Persistence for intents (and modules, business context, ...).
    Implemented elsewhere; the core only reads and writes copies through this.
    """

    @abstractmethod
    async def get(self, intent_id: str) -> Optional[Intent]:
        pass

    @abstractmethod
    async def list(self) -> List[Intent]:
        pass

    @abstractmethod
    async def create(self, intent: Intent) -> Intent:
        pass

    @abstractmethod
    async def update(self, intent_id: str, changes: Dict[str, Any]) -> Optional[Intent]:
        pass

    @abstractmethod
    async def delete(self, intent_id: str) -> bool:
        pass


class ReasoningService(ABC):
    """
    LLM-backed generator of intent configuration.
    Returns a dict with any of: trainingPhrases, entities, dataPipeline,
    enrichments, responseConfig, aiConfidence.
    """

    @abstractmethod
    async def generate(self, intent_context: Dict[str, Any]) -> Dict[str, Any]:
        pass


class ToolCatalogProvider(ABC):
    @abstractmethod
    async def list(self) -> List[ToolCatalogEntry]:
        pass


class PhaseEventSource(ABC):
    """
    Opens the server-sent phase-event stream for one chat turn.
    """

    @abstractmethod
    def stream(self, request: Dict[str, Any], token: "CancellationToken") -> AsyncIterator[Any]:
        pass


class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store used for local runs and tests.
    """

    def __init__(self, intents: Optional[List[Intent]] = None):
        self._intents: Dict[str, Intent] = {i.id: i for i in (intents or [])}

    async def get(self, intent_id: str) -> Optional[Intent]:
        intent = self._intents.get(intent_id)
        return intent.model_copy(deep=True) if intent else None

    async def list(self) -> List[Intent]:
        return [i.model_copy(deep=True) for i in self._intents.values()]

    async def create(self, intent: Intent) -> Intent:
        self._intents[intent.id] = intent.model_copy(deep=True)
        return intent

    async def update(self, intent_id: str, changes: Dict[str, Any]) -> Optional[Intent]:
        current = self._intents.get(intent_id)
        if current is None:
            return None
        merged = {**current.model_dump(), **changes}
        updated = Intent.model_validate(merged)
        self._intents[intent_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, intent_id: str) -> bool:
        return self._intents.pop(intent_id, None) is not None


class StaticToolCatalog(ToolCatalogProvider):
    def __init__(self, tools: List[ToolCatalogEntry]):
        self._tools = list(tools)

    async def list(self) -> List[ToolCatalogEntry]:
        return list(self._tools)


class CancellationToken:
    """
    Set when a newer query supersedes the turn that holds this token.
    Event sources and the orchestrator check it before handling each event.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
