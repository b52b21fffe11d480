import logging
from collections import OrderedDict
from typing import Callable, Dict, Optional

from fastapi import HTTPException
from pydantic import BaseModel

from config import MAX_CONVERSATIONS
from core.collaborators import PhaseEventSource
from executors.base import BaseExecutor
from models.understanding import TurnResult
from services.orchestrator import ConversationOrchestrator
from services.utils import deep_serialize

logger = logging.getLogger("chat_executor")


class ChatRequest(BaseModel):
    conversation_id: str
    text: str


class MCQAnswerRequest(BaseModel):
    conversation_id: str
    mcq_id: str
    value: str


def _turn_payload(result: TurnResult) -> Dict:
    return {
        "type": "chat",
        "outcome": result.outcome.value,
        "data": deep_serialize(result),
        "message": result.message.content if result.message else "",
    }


class ChatExecutor(BaseExecutor):
    """
    Runs chat turns. Keeps exactly one orchestrator per conversation id, at
    most `max_conversations` of them; the least recently used one is dropped
    when a new conversation would exceed the bound.
    """

    def __init__(
        self,
        source_factory: Callable[[], PhaseEventSource],
        turn_timeout: Optional[float] = None,
        max_conversations: int = MAX_CONVERSATIONS,
    ):
        self.source_factory = source_factory
        self.turn_timeout = turn_timeout
        self.max_conversations = max_conversations
        self.conversations: "OrderedDict[str, ConversationOrchestrator]" = OrderedDict()

    def orchestrator_for(self, conversation_id: str) -> ConversationOrchestrator:
        orchestrator = self.conversations.get(conversation_id)
        if orchestrator is not None:
            self.conversations.move_to_end(conversation_id)
            return orchestrator

        while len(self.conversations) >= self.max_conversations:
            evicted_id, evicted = self.conversations.popitem(last=False)
            evicted.clear()
            logger.info("[CONVERSATION_EVICTED] %s", evicted_id)

        kwargs = {} if self.turn_timeout is None else {"turn_timeout": self.turn_timeout}
        orchestrator = ConversationOrchestrator(self.source_factory(), conversation_id=conversation_id, **kwargs)
        self.conversations[conversation_id] = orchestrator
        return orchestrator

    def end(self, conversation_id: str) -> bool:
        """Drop a conversation, cancelling its in-flight turn. False when unknown."""
        orchestrator = self.conversations.pop(conversation_id, None)
        if orchestrator is None:
            return False
        orchestrator.clear()
        logger.info("[CONVERSATION_END] %s", conversation_id)
        return True

    async def execute(self, request: ChatRequest) -> Dict:
        try:
            orchestrator = self.orchestrator_for(request.conversation_id)
            result = await orchestrator.run_turn(request.text)
            return _turn_payload(result)
        except HTTPException:
            raise
        except Exception as e:
            raise HTTPException(
                status_code=500,
                detail=str(e),
            )

    async def answer(self, request: MCQAnswerRequest) -> Dict:
        orchestrator = self.conversations.get(request.conversation_id)
        if orchestrator is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        self.conversations.move_to_end(request.conversation_id)

        try:
            card, result = await orchestrator.answer_mcq(request.mcq_id, request.value)
        except Exception as e:
            raise HTTPException(
                status_code=500,
                detail=str(e),
            )

        if card is None:
            raise HTTPException(status_code=404, detail="MCQ not found")

        payload = {
            "type": "mcq",
            "mcq": deep_serialize(card),
            "turn": _turn_payload(result) if result is not None else None,
        }
        logger.info("[MCQ] %s -> %s", card.mcqId, card.status.value)
        return payload
