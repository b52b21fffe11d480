import asyncio
from datetime import datetime, timedelta, timezone

from core.collaborators import PhaseEventSource
from core.errors import EventStreamError
from models.mcq import MCQStatus
from models.understanding import TurnOutcome
from services import orchestrator as orchestrator_module
from services.event_stream import ReplayPhaseEventSource
from services.orchestrator import ConversationOrchestrator


class ScriptedSource(PhaseEventSource):
    """Plays one scripted event list per turn and records the requests."""

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests = []

    async def stream(self, request, token):
        self.requests.append(request)
        for event in self.scripts.pop(0):
            if token.cancelled:
                return
            yield event


class GatedSource(PhaseEventSource):
    """First turn blocks on `gate`; later turns complete at once."""

    def __init__(self):
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.calls = 0

    async def stream(self, request, token):
        self.calls += 1
        if self.calls == 1:
            yield {"type": "understanding_started", "data": {}}
            self.started.set()
            await self.gate.wait()
            yield {"type": "complete", "data": {"response": "stale answer"}}
        else:
            yield {"type": "intent_detected", "data": {"intent": {"name": "Second"}}}
            yield {"type": "complete", "data": {"response": "fresh answer"}}


class SlowSource(PhaseEventSource):
    async def stream(self, request, token):
        yield {"type": "understanding_started", "data": {}}
        await asyncio.sleep(5)
        yield {"type": "complete", "data": {}}


class BrokenSource(PhaseEventSource):
    async def stream(self, request, token):
        yield {"type": "connected", "data": {}}
        raise EventStreamError("HTTP error! status: 502", status_code=502)


def _prompt(mcq_id, mcq_type="entity_resolution"):
    return {
        "type": "mcq_prompt",
        "data": {
            "mcqId": mcq_id,
            "mcqType": mcq_type,
            "question": "Which vendor did you mean?",
            "options": [
                {"label": "Acme Corp", "value": "v-1"},
                {"label": "Acme Ltd", "value": "v-2"},
            ],
        },
    }


COMPLETE_TURN = [
    {"type": "connected", "data": {}},
    {"type": "understanding_started", "data": {}},
    {"type": "route_classified", "data": {"path": "fast", "category": "cfo"}},
    {"type": "intent_detected", "data": {"intent": {"name": "Cash Balance", "confidence": 0.95}}},
    {"type": "response_generating", "data": {}},
    {"type": "response_chunk", "data": {"text": "Balance: "}},
    {"type": "response_chunk", "data": {"text": "₹1,250,000.00"}},
    {"type": "complete", "data": {"usage": {"input_tokens": 10, "output_tokens": 5, "total_tokens": 15}}},
]


# ---------------------------------------------------------------------
# Basic outcomes
# ---------------------------------------------------------------------

def test_complete_turn_streams_answer():
    orchestrator = ConversationOrchestrator(ReplayPhaseEventSource(COMPLETE_TURN), conversation_id="c1")

    result = asyncio.run(orchestrator.run_turn("What is our cash balance?"))

    assert result.outcome is TurnOutcome.COMPLETE
    assert result.message.content == "Balance: ₹1,250,000.00"
    assert result.message.isStreaming is False
    assert result.message.usage.total_tokens == 15
    assert result.understanding.isComplete
    assert result.understanding.intent.name == "Cash Balance"
    assert result.phases == ["detecting", "routing", "detecting", "intent", "response", "complete"]
    assert [m.role for m in orchestrator.messages] == ["user", "agent"]
    assert orchestrator.phase == "complete"


def test_complete_response_replaces_streamed_text():
    source = ReplayPhaseEventSource([
        {"type": "response_chunk", "data": {"text": "partial"}},
        {"type": "complete", "data": {"response": "Final answer"}},
    ])
    result = asyncio.run(ConversationOrchestrator(source).run_turn("q"))
    assert result.message.content == "Final answer"


def test_empty_query_is_rejected():
    orchestrator = ConversationOrchestrator(ReplayPhaseEventSource([]))
    result = asyncio.run(orchestrator.run_turn("   "))
    assert result.outcome is TurnOutcome.ERROR
    assert orchestrator.messages == []


def test_stream_without_complete_is_incomplete():
    source = ReplayPhaseEventSource([{"type": "understanding_started"}, {"type": "pipeline_executing"}])
    result = asyncio.run(ConversationOrchestrator(source).run_turn("q"))
    assert result.outcome is TurnOutcome.INCOMPLETE
    assert result.message.content == orchestrator_module.INCOMPLETE_MESSAGE


def test_server_error_event_fails_turn():
    source = ReplayPhaseEventSource([
        {"type": "understanding_started"},
        {"type": "error", "data": {"message": "Tool catalog unavailable"}},
    ])
    result = asyncio.run(ConversationOrchestrator(source).run_turn("q"))
    assert result.outcome is TurnOutcome.ERROR
    assert result.message.content == "Tool catalog unavailable"
    assert result.phases[-1] == "failed"


def test_broken_stream_shows_generic_failure():
    result = asyncio.run(ConversationOrchestrator(BrokenSource()).run_turn("q"))
    assert result.outcome is TurnOutcome.ERROR
    assert result.message.content == orchestrator_module.FAILURE_MESSAGE
    assert "502" in result.error


def test_card_with_string_options_fails_turn():
    source = ReplayPhaseEventSource([
        {"type": "mcq_prompt", "data": {"question": "Which?", "options": ["A", "B"]}},
    ])
    orchestrator = ConversationOrchestrator(source)
    result = asyncio.run(orchestrator.run_turn("q"))

    assert result.outcome is TurnOutcome.ERROR
    assert result.message.content == orchestrator_module.FAILURE_MESSAGE
    assert result.message.isStreaming is False
    assert result.message.mcqData is None
    assert orchestrator.phase == "failed"
    assert orchestrator._current is None


def test_card_with_unknown_type_fails_turn():
    prompt = _prompt("m-x")
    prompt["data"]["mcqType"] = "confirm"
    orchestrator = ConversationOrchestrator(ReplayPhaseEventSource([prompt]))

    result = asyncio.run(orchestrator.run_turn("q"))

    assert result.outcome is TurnOutcome.ERROR
    assert orchestrator.active_mcq() is None
    assert orchestrator.chain.count == 0


def test_malformed_usage_is_dropped():
    source = ReplayPhaseEventSource([
        {"type": "complete", "data": {"response": "done", "usage": {"input_tokens": "n/a"}}},
    ])
    result = asyncio.run(ConversationOrchestrator(source).run_turn("q"))

    assert result.outcome is TurnOutcome.COMPLETE
    assert result.message.content == "done"
    assert result.message.usage is None


def test_unexpected_source_failure_ends_turn():
    class RaisingSource(PhaseEventSource):
        async def stream(self, request, token):
            yield {"type": "understanding_started", "data": {}}
            raise KeyError("data")

    orchestrator = ConversationOrchestrator(RaisingSource())
    result = asyncio.run(orchestrator.run_turn("q"))

    assert result.outcome is TurnOutcome.ERROR
    assert result.message.isStreaming is False
    assert orchestrator._current is None


def test_turn_timeout():
    orchestrator = ConversationOrchestrator(SlowSource(), turn_timeout=0.05)
    result = asyncio.run(orchestrator.run_turn("q"))
    assert result.outcome is TurnOutcome.ERROR
    assert result.error == "timeout"
    assert result.message.content == orchestrator_module.TIMEOUT_MESSAGE
    assert result.message.isStreaming is False
    assert result.phases[-1] == "failed"
    assert orchestrator.phase == "failed"
    assert orchestrator.understanding == result.understanding


# ---------------------------------------------------------------------
# Supersession
# ---------------------------------------------------------------------

def test_new_query_cancels_in_flight_turn():
    async def scenario():
        source = GatedSource()
        orchestrator = ConversationOrchestrator(source)

        first = asyncio.create_task(orchestrator.run_turn("first"))
        await source.started.wait()
        second = await orchestrator.run_turn("second")
        source.gate.set()
        return orchestrator, await first, second

    orchestrator, first, second = asyncio.run(scenario())

    assert first.outcome is TurnOutcome.CANCELLED
    assert second.outcome is TurnOutcome.COMPLETE
    assert second.message.content == "fresh answer"
    # the stale turn never wrote shared state
    assert orchestrator.understanding.intent.name == "Second"
    assert orchestrator.phase == "complete"


# ---------------------------------------------------------------------
# Clarification cards
# ---------------------------------------------------------------------

def test_mcq_prompt_suspends_turn():
    source = ScriptedSource([{"type": "understanding_started", "data": {}}, _prompt("m1")])
    orchestrator = ConversationOrchestrator(source)

    result = asyncio.run(orchestrator.run_turn("bills for acme"))

    assert result.outcome is TurnOutcome.SUSPENDED
    assert result.message.mcqData.mcqId == "m1"
    assert result.message.content == "Which vendor did you mean?"
    assert orchestrator.active_mcq().mcqId == "m1"
    assert orchestrator.chain.count == 1


def test_answering_card_continues_with_option_label():
    source = ScriptedSource(
        [_prompt("m1")],
        [{"type": "complete", "data": {"response": "Acme Corp has 3 open bills"}}],
    )
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        await orchestrator.run_turn("bills for acme")
        return await orchestrator.answer_mcq("m1", "v-1")

    card, result = asyncio.run(scenario())

    assert card.status is MCQStatus.RESOLVED
    assert card.selectedValue == "v-1"
    assert result.outcome is TurnOutcome.COMPLETE
    assert source.requests[1]["query"] == "Acme Corp"
    assert orchestrator.chain.count == 0


def test_free_text_overrides_active_card():
    source = ScriptedSource([_prompt("m1")], [{"type": "complete", "data": {"response": "ok"}}])
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        await orchestrator.run_turn("bills for acme")
        await orchestrator.run_turn("never mind, show cash")
        return await orchestrator.answer_mcq("m1", "v-1")

    card, result = asyncio.run(scenario())

    assert card.status is MCQStatus.OVERRIDDEN
    assert result is None
    assert len(source.requests) == 2


def test_cancel_option_does_not_start_a_turn():
    source = ScriptedSource([{
        "type": "mcq_prompt",
        "data": {
            "mcqId": "w1",
            "mcqType": "write_confirmation",
            "question": "Are you sure you want to delete bill #42?",
            "options": [{"label": "Yes, delete", "value": "confirm"}],
        },
    }])
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        await orchestrator.run_turn("delete bill 42")
        return await orchestrator.answer_mcq("w1", "cancel")

    card, result = asyncio.run(scenario())
    assert card.status is MCQStatus.CANCELLED
    assert result is None


def test_expired_card_cannot_be_answered():
    now = [datetime(2024, 6, 1, tzinfo=timezone.utc)]
    orchestrator = ConversationOrchestrator(ScriptedSource([_prompt("m1")]), clock=lambda: now[0])

    async def scenario():
        await orchestrator.run_turn("bills for acme")
        now[0] += timedelta(minutes=3)
        return await orchestrator.answer_mcq("m1", "v-1")

    card, result = asyncio.run(scenario())
    assert card.status is MCQStatus.EXPIRED
    assert result is None
    assert orchestrator.active_mcq() is None


def test_unknown_card_id():
    orchestrator = ConversationOrchestrator(ReplayPhaseEventSource([]))
    assert asyncio.run(orchestrator.answer_mcq("nope", "v-1")) == (None, None)


def test_third_consecutive_prompt_is_suppressed():
    source = ScriptedSource(
        [{"type": "understanding_started", "data": {}}, _prompt("m1")],
        [_prompt("m2", "parameter_resolution")],
        [
            _prompt("m3"),
            {"type": "response_chunk", "data": {"text": "Acme Corp: 3 open bills"}},
            {"type": "complete", "data": {}},
        ],
    )
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        first = await orchestrator.run_turn("bills for acme")
        _, second = await orchestrator.answer_mcq("m1", "v-1")
        _, third = await orchestrator.answer_mcq("m2", "v-2")
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first.outcome is TurnOutcome.SUSPENDED
    assert second.outcome is TurnOutcome.SUSPENDED
    assert third.outcome is TurnOutcome.COMPLETE
    assert third.mcqSuppressed is True
    assert third.message.mcqData is None
    assert "response" in third.phases
    assert third.message.content == "Acme Corp: 3 open bills"
    assert orchestrator.chain.count == 0


def test_suppressed_prompt_without_answer_falls_back_to_first_option():
    source = ScriptedSource(
        [_prompt("m1")],
        [_prompt("m2")],
        [_prompt("m3")],
    )
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        await orchestrator.run_turn("bills for acme")
        await orchestrator.answer_mcq("m1", "v-1")
        _, third = await orchestrator.answer_mcq("m2", "v-1")
        return third

    third = asyncio.run(scenario())
    assert third.outcome is TurnOutcome.COMPLETE
    assert third.mcqSuppressed
    assert "Acme Corp" in third.message.content


def test_new_top_level_query_resets_chain():
    source = ScriptedSource([_prompt("m1")], [_prompt("m2")], [_prompt("m3")])
    orchestrator = ConversationOrchestrator(source)

    async def scenario():
        await orchestrator.run_turn("bills for acme")
        await orchestrator.answer_mcq("m1", "v-1")
        return await orchestrator.run_turn("bills for globex")

    result = asyncio.run(scenario())
    assert result.outcome is TurnOutcome.SUSPENDED
    assert orchestrator.chain.count == 1


# ---------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------

def test_request_carries_history_and_context():
    source = ScriptedSource(
        [{"type": "complete", "data": {"response": "first answer"}}],
        [{"type": "complete", "data": {"response": "second answer"}}],
    )
    orchestrator = ConversationOrchestrator(source, conversation_id="c9", request_context={"orgId": "org-1"})

    async def scenario():
        await orchestrator.run_turn("one")
        await orchestrator.run_turn("two")

    asyncio.run(scenario())

    request = source.requests[1]
    assert request["query"] == "two"
    assert request["conversationId"] == "c9"
    assert request["orgId"] == "org-1"
    assert [(h["role"], h["content"]) for h in request["conversationHistory"]] == [
        ("user", "one"),
        ("assistant", "first answer"),
    ]


def test_clear_resets_conversation():
    orchestrator = ConversationOrchestrator(ReplayPhaseEventSource(COMPLETE_TURN))
    asyncio.run(orchestrator.run_turn("q"))
    orchestrator.clear()
    assert orchestrator.messages == []
    assert orchestrator.phase == ""
