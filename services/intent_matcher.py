# services/intent_matcher.py
"""
Training-phrase intent matching (no LLM call)

Confidence:
    exact phrase (case-insensitive)      0.95
    phrase/query containment             0.7 + 0.25 * shorter/longer
    intent name containment              0.6
Only active intents take part. `{{entity}}` placeholders in a phrase match
any text. A match at or above the fast-path threshold skips the LLM.
"""

import logging
import re
from typing import List, Optional, Pattern, Sequence

from pydantic import BaseModel

from config import FAST_PATH_CONFIDENCE
from core.intent import Intent
from core.route import RoutePath
from models.understanding import IntentAttempt, RouteClassification, RouteIntent
from services.query_classifier import classify_query

logger = logging.getLogger("intent_matcher")

EXACT_CONFIDENCE = 0.95
CONTAINMENT_BASE = 0.7
CONTAINMENT_SPAN = 0.25
NAME_CONFIDENCE = 0.6

_PLACEHOLDER_RE = re.compile(r"\{\{\s*\w+\s*\}\}")


class IntentMatch(BaseModel):
    intent: Intent
    confidence: float
    phrase: Optional[str] = None


def _phrase_pattern(phrase: str) -> Optional[Pattern]:
    if not _PLACEHOLDER_RE.search(phrase):
        return None
    parts = _PLACEHOLDER_RE.split(phrase)
    return re.compile(".+?".join(re.escape(p) for p in parts), re.IGNORECASE | re.DOTALL)


def _phrase_confidence(query: str, phrase: str) -> float:
    phrase = phrase.lower().strip()
    if not phrase:
        return 0.0

    pattern = _phrase_pattern(phrase)
    if pattern is not None:
        if pattern.fullmatch(query):
            return EXACT_CONFIDENCE
        if pattern.search(query):
            literal = _PLACEHOLDER_RE.sub("", phrase)
            return CONTAINMENT_BASE + CONTAINMENT_SPAN * min(len(literal), len(query)) / max(len(literal), len(query), 1)
        return 0.0

    if query == phrase:
        return EXACT_CONFIDENCE
    if phrase in query or query in phrase:
        return CONTAINMENT_BASE + CONTAINMENT_SPAN * min(len(query), len(phrase)) / max(len(query), len(phrase))
    return 0.0


def match_intent(query: str, intents: Sequence[Intent]) -> Optional[IntentMatch]:
    """Best-scoring active intent, first-seen wins ties; None when nothing matches."""
    normalized = (query or "").lower().strip()
    if not normalized:
        return None

    best: Optional[IntentMatch] = None
    for intent in intents:
        if not intent.isActive:
            continue

        for phrase in intent.trainingPhrases:
            confidence = _phrase_confidence(normalized, phrase)
            if confidence and (best is None or confidence > best.confidence):
                best = IntentMatch(intent=intent, confidence=confidence, phrase=phrase)
            if confidence >= EXACT_CONFIDENCE:
                break

        name = intent.name.lower().strip()
        if name and (name in normalized or normalized in name):
            if best is None or NAME_CONFIDENCE > best.confidence:
                best = IntentMatch(intent=intent, confidence=NAME_CONFIDENCE)

        if best is not None and best.confidence >= EXACT_CONFIDENCE:
            break

    if best is not None:
        logger.info("Intent match: %s (%.2f)", best.intent.name, best.confidence)
    return best


def route_query(
    query: str,
    intents: Sequence[Intent],
    threshold: float = FAST_PATH_CONFIDENCE,
) -> RouteClassification:
    """
    Routing decision for one query: fast path on a confident intent match,
    otherwise the LLM path with the keyword category.
    """
    match = match_intent(query, intents)
    classification = classify_query(query)

    if match is not None and match.confidence >= threshold:
        return RouteClassification(
            path=RoutePath.FAST,
            category=classification.category,
            confidence=match.confidence,
            intent=RouteIntent(
                name=match.intent.name,
                confidence=match.confidence,
                description=match.intent.description,
            ),
            reason="High confidence intent match from DB",
        )

    return RouteClassification(
        path=RoutePath.LLM,
        category=classification.category,
        confidence=classification.confidence,
        subCategory=classification.subCategory,
        matchedKeywords=classification.matchedKeywords,
        intentAttempted=IntentAttempt(name=match.intent.name, confidence=match.confidence) if match else None,
        reason="Keyword classification",
    )


def rank_intents(query: str, intents: Sequence[Intent], limit: int = 5) -> List[IntentMatch]:
    """All matching active intents, best first (for the intent match endpoint)."""
    ranked: List[IntentMatch] = []
    for intent in intents:
        match = match_intent(query, [intent])
        if match is not None:
            ranked.append(match)
    ranked.sort(key=lambda m: m.confidence, reverse=True)
    return ranked[:limit]
