# FILE: services/mcq_engine.py
"""
MCQ (clarification card) state machine

    active -> resolved | cancelled | expired | overridden

Every terminal state is final: transitions on a terminal card return it
unchanged. Transitions never mutate their input; they return a new card.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from config import MAX_MCQ_CHAIN, MCQ_EXPIRY_SECONDS
from core.intent import utcnow
from models.mcq import CANCEL_VALUE, MCQData, MCQOption, MCQStatus, MCQType

logger = logging.getLogger("mcq_engine")

MCQ_EXPIRY = timedelta(seconds=MCQ_EXPIRY_SECONDS)


# -----------------------------
# Creation
# -----------------------------
def create_mcq(
    mcq_type: MCQType,
    question: str,
    options: Sequence[Any],
    pending_tool: Optional[str] = None,
    pending_args: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    mcq_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> MCQData:
    """
    Build an active card. A cancel option only survives on write_confirmation
    cards, where one is added if the caller left it out.
    """
    parsed: List[MCQOption] = []
    for option in options or []:
        parsed.append(option if isinstance(option, MCQOption) else MCQOption.model_validate(option))

    if mcq_type == "write_confirmation":
        if not any(o.value == CANCEL_VALUE for o in parsed):
            parsed.append(MCQOption(label="No, cancel", value=CANCEL_VALUE))
    else:
        parsed = [o for o in parsed if o.value != CANCEL_VALUE]

    return MCQData(
        mcqId=mcq_id or str(uuid.uuid4()),
        mcqType=mcq_type,
        question=question,
        options=parsed,
        createdAt=created_at or utcnow(),
        status=MCQStatus.ACTIVE,
        pendingTool=pending_tool,
        pendingArgs=dict(pending_args or {}),
        context=dict(context or {}),
    )


def from_event(data: Mapping[str, Any], now: Optional[datetime] = None) -> MCQData:
    """Card from an mcq_prompt payload. The server's own timestamp is not trusted."""
    return create_mcq(
        mcq_type=data.get("mcqType") or "disambiguation",
        question=data.get("question") or "",
        options=data.get("options") or [],
        pending_tool=data.get("pendingTool"),
        pending_args=data.get("pendingArgs"),
        context=data.get("context") if isinstance(data.get("context"), dict) else None,
        mcq_id=data.get("mcqId"),
        created_at=now,
    )


# -----------------------------
# Builders
# -----------------------------
def build_entity_resolution(
    entity_type: str,
    search_term: str,
    matches: Sequence[Mapping[str, Any]],
    pending_tool: Optional[str] = None,
    pending_args: Optional[Mapping[str, Any]] = None,
) -> MCQData:
    """Fuzzy search found several records; ask which one was meant."""
    options = [
        MCQOption(label=m["name"], value=str(m["id"]), description=m.get("extra") or None)
        for m in matches
    ]
    return create_mcq(
        "entity_resolution",
        f'I found multiple {entity_type}s matching "{search_term}". Which one did you mean?',
        options,
        pending_tool=pending_tool,
        pending_args=pending_args,
        context={"entityType": entity_type, "searchTerm": search_term},
    )


def build_write_confirmation(
    action: str,
    record_description: str,
    details: str = "",
    pending_tool: Optional[str] = None,
    pending_args: Optional[Mapping[str, Any]] = None,
) -> MCQData:
    options = [
        MCQOption(label=f"Yes, {action}", value="confirm", description=details or None),
        MCQOption(label="No, cancel", value=CANCEL_VALUE),
    ]
    return create_mcq(
        "write_confirmation",
        f"Are you sure you want to {action} {record_description}?",
        options,
        pending_tool=pending_tool,
        pending_args=pending_args,
        context={"action": action, "recordDescription": record_description},
    )


def build_parameter_resolution(
    param_name: str,
    options: Sequence[Any],
    pending_tool: Optional[str] = None,
    pending_args: Optional[Mapping[str, Any]] = None,
) -> MCQData:
    return create_mcq(
        "parameter_resolution",
        f"Which {param_name} would you like to use?",
        options,
        pending_tool=pending_tool,
        pending_args=pending_args,
        context={"paramName": param_name},
    )


# -----------------------------
# Transitions
# -----------------------------
def is_expired(card: MCQData, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return now - card.createdAt > MCQ_EXPIRY


def check_expiry(card: MCQData, now: Optional[datetime] = None) -> MCQData:
    """Lazy expiry, applied whenever a card is polled or shown."""
    if card.status is not MCQStatus.ACTIVE or not is_expired(card, now):
        return card
    logger.info("[MCQ] expired %s", card.mcqId)
    return card.model_copy(update={"status": MCQStatus.EXPIRED})


def select_option(card: MCQData, value: str, now: Optional[datetime] = None) -> MCQData:
    """
    Answer a card. The cancel option cancels; any other known option resolves.
    Expired, terminal cards and unknown values leave the card as it is
    (an expired one is returned with its expired status).
    """
    card = check_expiry(card, now)
    if card.status is not MCQStatus.ACTIVE:
        logger.info("[MCQ] ignoring selection on %s card %s", card.status.value, card.mcqId)
        return card

    option = card.option_for(value)
    if option is None:
        logger.warning("[MCQ] unknown option %r for %s", value, card.mcqId)
        return card

    status = MCQStatus.CANCELLED if value == CANCEL_VALUE else MCQStatus.RESOLVED
    logger.info("[MCQ] %s %s with %r", status.value, card.mcqId, option.label)
    return card.model_copy(update={"status": status, "selectedValue": value})


def override(card: MCQData) -> MCQData:
    """Free text arrived while the card was waiting; the card is abandoned."""
    if card.status is not MCQStatus.ACTIVE:
        return card
    logger.info("[MCQ] overridden %s", card.mcqId)
    return card.model_copy(update={"status": MCQStatus.OVERRIDDEN})


def to_event_data(card: MCQData) -> Dict[str, Any]:
    """Payload of an mcq_prompt phase event for this card."""
    return {
        "mcqId": card.mcqId,
        "mcqType": card.mcqType,
        "question": card.question,
        "options": [o.model_dump(exclude_none=True) for o in card.options],
        "pendingTool": card.pendingTool,
        "context": card.context,
    }


# -----------------------------
# Chain fatigue
# -----------------------------
class MCQChainPolicy:
    """
    Counts clarification prompts shown since the last completed turn.
    Once `limit` prompts have been shown, further prompts are suppressed.
    """

    def __init__(self, limit: int = MAX_MCQ_CHAIN):
        self.limit = limit
        self.count = 0

    def allow(self) -> bool:
        """Call once per prompt attempt; True means show it."""
        if self.count >= self.limit:
            logger.warning("[MCQ] chain fatigue: suppressing prompt #%d", self.count + 1)
            return False
        self.count += 1
        return True

    def reset(self) -> None:
        self.count = 0
