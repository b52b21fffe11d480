# FILE: services/orchestrator.py
"""
Conversational Orchestrator

One instance per conversation. Owns the transcript, the current turn's
understanding, the phase indicator and the MCQ chain counter.

Turn lifecycle:
    run_turn(query)
      -> overrides any active clarification card (free text wins)
      -> cancels the in-flight turn, if any
      -> consumes phase events in arrival order, one reducer step each
      -> ends as complete | suspended_for_clarification | error |
         cancelled | incomplete
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from config import MAX_MCQ_CHAIN, TURN_TIMEOUT_SECONDS
from core.collaborators import CancellationToken, PhaseEventSource
from core.errors import ReasoningServiceError, TurnCancelled
from core.intent import utcnow
from models.mcq import MCQData, MCQStatus
from models.understanding import (
    AgentUnderstanding,
    ChatMessage,
    PhaseEvent,
    TurnOutcome,
    TurnResult,
    Usage,
)
from services import mcq_engine
from services import understanding_reducer as reducer

logger = logging.getLogger("orchestrator")

FAILURE_MESSAGE = "Sorry, I encountered an error processing your request. Please try again."
TIMEOUT_MESSAGE = "The request took too long to answer. Please try again."
INCOMPLETE_MESSAGE = "The response ended before it was complete. Please try again."


class _Turn:
    """Mutable bookkeeping for a single in-flight turn."""

    def __init__(self, token: CancellationToken, agent_message: ChatMessage):
        self.token = token
        self.message = agent_message
        self.understanding = AgentUnderstanding()
        self.phase = reducer.PHASE_DETECTING
        self.phases: List[str] = [reducer.PHASE_DETECTING]
        self.started = time.monotonic()
        self.suppressed_card: Optional[MCQData] = None

    def move_to(self, phase: str) -> None:
        if phase and phase != self.phase:
            self.phases.append(phase)
        self.phase = phase

    def elapsed(self) -> str:
        return f"{time.monotonic() - self.started:.2f}s"


class ConversationOrchestrator:
    def __init__(
        self,
        event_source: PhaseEventSource,
        conversation_id: str = "",
        request_context: Optional[Dict[str, Any]] = None,
        turn_timeout: float = TURN_TIMEOUT_SECONDS,
        max_mcq_chain: int = MAX_MCQ_CHAIN,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.event_source = event_source
        self.conversation_id = conversation_id
        self.request_context = dict(request_context or {})
        self.turn_timeout = turn_timeout
        self.clock = clock

        self.messages: List[ChatMessage] = []
        self.understanding = AgentUnderstanding()
        self.phase = reducer.PHASE_IDLE
        self.chain = mcq_engine.MCQChainPolicy(max_mcq_chain)
        self._current: Optional[_Turn] = None

    # -----------------------------
    # Public API
    # -----------------------------
    async def run_turn(self, query: str, continuation: bool = False) -> TurnResult:
        """
        Send a user message and drive the phase-event stream for it.
        `continuation` marks a message sent by answering a card; it keeps the
        MCQ chain counter, a fresh top-level query resets it.
        """
        query = (query or "").strip()
        if not query:
            return TurnResult(outcome=TurnOutcome.ERROR, error="empty query")

        if self._current is not None:
            logger.info("[TURN_CANCEL] superseded by a new query")
            self._current.token.cancel()

        self._override_active_cards()
        if not continuation:
            self.chain.reset()

        self.messages.append(ChatMessage(role="user", content=query))
        agent_message = ChatMessage(role="agent", content="", isStreaming=True)
        self.messages.append(agent_message)

        request = self._build_request(query)
        turn = _Turn(CancellationToken(), agent_message)
        self._current = turn
        self.understanding = AgentUnderstanding()
        self.phase = turn.phase

        logger.info("[TURN_START] conversation=%s continuation=%s", self.conversation_id, continuation)

        try:
            result = await asyncio.wait_for(self._consume(turn, request), timeout=self.turn_timeout)
        except asyncio.TimeoutError:
            logger.warning("[TURN_TIMEOUT] after %ss", self.turn_timeout)
            # publish the failure first; a cancelled turn no longer writes shared state
            result = self._fail(turn, TIMEOUT_MESSAGE, "timeout")
            turn.token.cancel()
        except TurnCancelled:
            logger.info("[TURN_CANCELLED] conversation=%s", self.conversation_id)
            turn.message.isStreaming = False
            result = self._result(turn, TurnOutcome.CANCELLED)
        except ReasoningServiceError as e:
            logger.error("[ERROR] reasoning service: %s", e)
            result = self._fail(turn, FAILURE_MESSAGE, str(e))
        except Exception as e:
            logger.exception("[ERROR] turn failed: %s", e)
            result = self._fail(turn, FAILURE_MESSAGE, str(e))
        finally:
            if self._current is turn:
                self._current = None

        logger.info("[TURN_END] outcome=%s phases=%s", result.outcome.value, ",".join(result.phases))
        return result

    async def answer_mcq(self, mcq_id: str, value: str) -> Tuple[Optional[MCQData], Optional[TurnResult]]:
        """
        Apply the user's choice to a card. A resolved card continues the flow
        with the chosen option's label as the next user message; a cancelled,
        expired or unknown card does not start a turn.
        """
        message = self._message_for_card(mcq_id)
        if message is None:
            return None, None

        before = message.mcqData
        card = mcq_engine.select_option(before, value, self.clock())
        message.mcqData = card

        if card.status is not MCQStatus.RESOLVED or before.status is MCQStatus.RESOLVED:
            return card, None

        option = card.option_for(value)
        return card, await self.run_turn(option.label, continuation=True)

    def poll_mcqs(self) -> List[MCQData]:
        """Apply lazy expiry to every card in the transcript; returns all cards."""
        now = self.clock()
        cards = []
        for message in self.messages:
            if message.mcqData is not None:
                message.mcqData = mcq_engine.check_expiry(message.mcqData, now)
                cards.append(message.mcqData)
        return cards

    def active_mcq(self) -> Optional[MCQData]:
        for card in reversed(self.poll_mcqs()):
            if card.status is MCQStatus.ACTIVE:
                return card
        return None

    def cancel(self) -> None:
        if self._current is not None:
            self._current.token.cancel()

    def clear(self) -> None:
        self.cancel()
        self.messages = []
        self.understanding = AgentUnderstanding()
        self.phase = reducer.PHASE_IDLE
        self.chain.reset()

    # -----------------------------
    # Event loop
    # -----------------------------
    async def _consume(self, turn: _Turn, request: Dict[str, Any]) -> TurnResult:
        async for raw in self.event_source.stream(request, turn.token):
            if turn.token.cancelled:
                raise TurnCancelled()
            event = raw if isinstance(raw, PhaseEvent) else PhaseEvent.model_validate(raw)
            outcome = self._handle(turn, event)
            if outcome is not None:
                return outcome

        if turn.token.cancelled:
            raise TurnCancelled()
        return self._end_of_stream(turn)

    def _handle(self, turn: _Turn, event: PhaseEvent) -> Optional[TurnResult]:
        understanding, phase = reducer.reduce(turn.understanding, turn.phase, event)
        turn.understanding = understanding
        turn.move_to(phase)
        self._publish(turn)

        kind = event.type
        if kind == "connected":
            logger.debug("connected: %s", event.data)

        elif kind == "response_chunk":
            text = event.data.get("text")
            if isinstance(text, str):
                turn.message.content += text

        elif kind == "mcq_prompt":
            return self._on_mcq_prompt(turn, event)

        elif kind == "complete":
            return self._complete(turn, event.data)

        elif kind == "error":
            message = event.data.get("message") or "An error occurred"
            logger.error("[ERROR] server reported: %s", message)
            return self._fail(turn, str(message), str(message))

        return None

    def _on_mcq_prompt(self, turn: _Turn, event: PhaseEvent) -> Optional[TurnResult]:
        try:
            card = mcq_engine.from_event(event.data, self.clock())
        except ValueError as e:
            logger.error("[ERROR] unusable mcq_prompt: %s", e)
            return self._fail(turn, FAILURE_MESSAGE, "malformed mcq_prompt")

        if not self.chain.allow():
            # too many clarifications in a row: answer directly instead
            turn.suppressed_card = card
            turn.move_to(reducer.PHASE_RESPONSE)
            self._publish(turn)
            return None

        logger.info("[MCQ] prompt %s (%s), chain=%d", card.mcqId, card.mcqType, self.chain.count)
        turn.message.content = card.question
        turn.message.mcqData = card
        turn.message.isStreaming = False
        turn.move_to(reducer.PHASE_IDLE)
        self._publish(turn)
        return self._result(turn, TurnOutcome.SUSPENDED)

    def _complete(self, turn: _Turn, data: Dict[str, Any]) -> TurnResult:
        response = data.get("response")
        if isinstance(response, str) and response:
            turn.message.content = response
        elif not turn.message.content and turn.suppressed_card is not None:
            turn.message.content = self._direct_answer(turn.suppressed_card)

        turn.message.usage = self._usage(data.get("usage"))
        turn.message.llmModel = data.get("llmModel") or None
        return self._finish(turn)

    def _end_of_stream(self, turn: _Turn) -> TurnResult:
        if turn.suppressed_card is not None:
            if not turn.message.content:
                turn.message.content = self._direct_answer(turn.suppressed_card)
            turn.understanding = turn.understanding.model_copy(update={"isComplete": True})
            turn.move_to(reducer.PHASE_COMPLETE)
            return self._finish(turn)

        logger.warning("[TURN_INCOMPLETE] stream ended in phase %s", turn.phase)
        turn.message.isStreaming = False
        if not turn.message.content:
            turn.message.content = INCOMPLETE_MESSAGE
        return self._result(turn, TurnOutcome.INCOMPLETE)

    # -----------------------------
    # Helpers
    # -----------------------------
    def _finish(self, turn: _Turn) -> TurnResult:
        turn.message.isStreaming = False
        turn.message.understanding = turn.understanding
        turn.message.executionTime = turn.elapsed()
        turn.move_to(reducer.PHASE_COMPLETE)
        self.chain.reset()
        self._publish(turn)
        return self._result(turn, TurnOutcome.COMPLETE)

    def _fail(self, turn: _Turn, content: str, error: str) -> TurnResult:
        turn.message.content = content
        turn.message.isStreaming = False
        turn.move_to(reducer.PHASE_FAILED)
        self._publish(turn)
        return self._result(turn, TurnOutcome.ERROR, error=error)

    def _result(self, turn: _Turn, outcome: TurnOutcome, error: Optional[str] = None) -> TurnResult:
        return TurnResult(
            outcome=outcome,
            message=turn.message,
            understanding=turn.understanding,
            phases=list(turn.phases),
            error=error,
            mcqSuppressed=turn.suppressed_card is not None,
        )

    def _publish(self, turn: _Turn) -> None:
        # a superseded turn never writes shared state
        if self._current is turn and not turn.token.cancelled:
            self.understanding = turn.understanding
            self.phase = turn.phase

    @staticmethod
    def _usage(value: Any) -> Optional[Usage]:
        if not isinstance(value, dict):
            return None
        try:
            return Usage.model_validate(value)
        except ValidationError:
            logger.warning("dropping malformed usage: %r", value)
            return None

    @staticmethod
    def _direct_answer(card: MCQData) -> str:
        if card.options and card.mcqType != "write_confirmation":
            choice = card.options[0]
            return f"{card.question.rstrip('?')}: going with \"{choice.label}\"."
        return "I couldn't settle this without another question, so nothing was changed."

    def _override_active_cards(self) -> None:
        for message in self.messages:
            card = message.mcqData
            if card is not None and card.status is MCQStatus.ACTIVE:
                message.mcqData = mcq_engine.override(mcq_engine.check_expiry(card, self.clock()))

    def _message_for_card(self, mcq_id: str) -> Optional[ChatMessage]:
        for message in self.messages:
            if message.mcqData is not None and mcq_id in (message.mcqData.mcqId, message.id):
                return message
        return None

    def _build_request(self, query: str) -> Dict[str, Any]:
        # called before the new turn resets the understanding
        previous = self.understanding.route
        history = [
            {
                "role": "user" if m.role == "user" else "assistant",
                "content": m.content,
                "timestamp": m.timestamp.isoformat(),
            }
            for m in self.messages[:-2]
            if not m.isStreaming
        ]
        return {
            **self.request_context,
            "query": query,
            "conversationId": self.conversation_id,
            "conversationHistory": history,
            "currentCategory": previous.category.value if previous and previous.category else None,
        }
