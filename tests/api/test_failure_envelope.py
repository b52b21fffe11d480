from unittest.mock import AsyncMock, MagicMock, patch

from fastapi import HTTPException

from API_LAYER.app import request_counters
from core.errors import ReasoningTimeout
from executors.generation import GenerationExecutor


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def assert_failure_envelope(body: dict, error_type: str):
    """
    Enforces the minimal failure response contract.
    """
    assert isinstance(body, dict), "Failure response must be a JSON object"
    assert "error" in body, "Missing 'error' key in failure response"

    error = body["error"]
    assert isinstance(error, dict), "'error' must be an object"
    assert error["type"] == error_type
    assert isinstance(error["message"], str), "'error.message' must be a string"


# ------------------------------------------------------------
# Tests
# ------------------------------------------------------------

def test_invalid_body_returns_validation_envelope(client):
    response = client.post("/tools/resolve", json={})
    assert response.status_code == 422
    assert_failure_envelope(response.json(), "validation_error")


def test_unknown_conversation_mcq_returns_not_found(client):
    response = client.post("/chat/never-started/mcq", json={"mcqId": "m-1", "value": "v-1"})
    assert response.status_code == 404
    assert_failure_envelope(response.json(), "not_found")


def test_empty_intent_list_is_rejected(client):
    response = client.post("/intents/regenerate", json={"intentIds": []})
    assert response.status_code == 422
    assert_failure_envelope(response.json(), "validation_error")


def test_generation_without_llm_configuration_is_unavailable(client):
    with patch("API_LAYER.app.generation_executor", None), \
         patch("API_LAYER.app.build_generation_service", side_effect=RuntimeError("Missing GOOGLE_API_KEY")):
        response = client.post("/intents/regenerate", json={"intentIds": ["intent-cash"]})

    assert response.status_code == 503
    assert_failure_envelope(response.json(), "unavailable")


def test_generation_timeout_maps_to_504(client):
    service = MagicMock()
    service.regenerate = AsyncMock(side_effect=ReasoningTimeout("Generation timed out after 120 seconds."))

    with patch("API_LAYER.app.generation_executor", GenerationExecutor(service)):
        response = client.post("/intents/regenerate", json={"intentIds": ["intent-cash"], "section": "training"})

    assert response.status_code == 504
    assert_failure_envelope(response.json(), "timeout")
    assert "timed out" in response.json()["error"]["message"]


def test_missing_intent_maps_to_404(client):
    service = MagicMock()
    service.regenerate = AsyncMock(side_effect=LookupError("Intent not found: nope"))

    with patch("API_LAYER.app.generation_executor", GenerationExecutor(service)):
        response = client.post("/intents/regenerate", json={"intentIds": ["nope"]})

    assert response.status_code == 404
    assert_failure_envelope(response.json(), "not_found")


def test_executor_failure_counts_error(client):
    before = request_counters.copy()
    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=HTTPException(status_code=500, detail="boom"))

    with patch("API_LAYER.app.dry_run_executor", executor):
        response = client.post("/intents/dry-run", json={"intent": {"id": "i1", "name": "Broken"}})

    assert response.status_code == 500
    assert_failure_envelope(response.json(), "internal_error")

    after = request_counters.copy()
    assert after["errors"] == before["errors"] + 1
    assert after["dry_run"] == before["dry_run"] + 1


def test_chat_with_broken_source_still_answers(client):
    from executors.chat import ChatExecutor
    from services.event_stream import HttpPhaseEventSource

    executor = ChatExecutor(lambda: HttpPhaseEventSource(""))
    with patch("API_LAYER.app.chat_executor", executor):
        response = client.post("/chat/c-broken", json={"text": "What is our cash balance?"})

    # stream failures end the turn, they are not HTTP errors
    assert response.status_code == 200
    assert response.json()["outcome"] == "error"
