import pytest

from core.intent import Intent
from core.route import RouteCategory, RoutePath
from services.intent_matcher import match_intent, rank_intents, route_query


def _intent(intent_id, name, phrases, active=True):
    return Intent(id=intent_id, name=name, trainingPhrases=phrases, isActive=active)


def test_exact_phrase_scores_095(cash_balance_intent):
    match = match_intent("  what is our CASH balance? ", [cash_balance_intent])
    assert match.confidence == 0.95
    assert match.phrase == "What is our cash balance?"


def test_containment_scales_with_length_ratio(cash_balance_intent):
    match = match_intent("cash balance", [cash_balance_intent])
    assert match.confidence == pytest.approx(0.7 + 0.25 * len("cash balance") / len("what is our cash balance?"))


def test_name_containment_scores_06():
    intent = _intent("i1", "Vendor Aging", ["which vendors are overdue"])
    match = match_intent("give me the vendor aging report", [intent])
    assert match.confidence == 0.6
    assert match.phrase is None


def test_placeholders_match_any_text():
    intent = _intent("i1", "Vendor Bills", ["bills for {{vendor}}"])
    assert match_intent("Bills for Acme Corp", [intent]).confidence == 0.95
    partial = match_intent("show me bills for acme", [intent])
    assert 0.7 < partial.confidence < 0.95


def test_inactive_intents_never_match():
    intent = _intent("i1", "Cash", ["cash"], active=False)
    assert match_intent("cash", [intent]) is None


def test_no_match_and_empty_query(cash_balance_intent):
    assert match_intent("profit and loss statement", [cash_balance_intent]) is None
    assert match_intent("", [cash_balance_intent]) is None


def test_first_seen_wins_ties():
    first = _intent("a", "First", ["show cash"])
    second = _intent("b", "Second", ["show cash"])
    assert match_intent("show cash", [first, second]).intent.id == "a"


def test_confident_match_takes_fast_path(cash_balance_intent):
    route = route_query("What is our cash balance?", [cash_balance_intent])
    assert route.path is RoutePath.FAST
    assert route.intent.name == "Cash Balance"
    assert route.confidence == 0.95
    assert route.category is RouteCategory.CFO


def test_weak_match_goes_to_llm_with_attempt(cash_balance_intent):
    route = route_query("cash balance", [cash_balance_intent])
    assert route.path is RoutePath.LLM
    assert route.intent is None
    assert route.intentAttempted.name == "Cash Balance"
    assert route.intentAttempted.confidence < 0.85


def test_threshold_is_configurable(cash_balance_intent):
    assert route_query("cash balance", [cash_balance_intent], threshold=0.8).path is RoutePath.FAST


def test_rank_intents_orders_by_confidence(cash_balance_intent):
    weak = _intent("w", "Cash", ["cash"])
    ranked = rank_intents("what is our cash balance?", [weak, cash_balance_intent])
    assert [m.intent.id for m in ranked] == ["intent-cash", "w"]
    assert rank_intents("what is our cash balance?", [weak, cash_balance_intent], limit=1)[0].confidence == 0.95
