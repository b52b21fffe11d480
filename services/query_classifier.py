# services/query_classifier.py
"""
Keyword category classifier (no LLM call)

bookkeeper   write/action requests (create, send, void, ...)
cfo          reads, reports and analysis
general_chat greetings, thanks, small talk
"""

import re
from typing import List, Tuple

from pydantic import BaseModel, Field

from core.route import RouteCategory


class ClassificationResult(BaseModel):
    category: RouteCategory
    confidence: float
    subCategory: str = ""
    matchedKeywords: List[str] = Field(default_factory=list)


GENERAL_CHAT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^(hi|hello|hey|howdy|good\s+(morning|afternoon|evening|night))[\s!?.]*$",
        r"^(thanks|thank\s+you|thx|ty|cheers)[\s!?.]*$",
        r"^(bye|goodbye|see\s+you|take\s+care)[\s!?.]*$",
        r"^(help|what\s+can\s+you\s+do|who\s+are\s+you)[\s!?.]*$",
        r"^(ok|okay|sure|got\s+it|understood)[\s!?.]*$",
        r"^(yes|no|yep|nope|yeah|nah)[\s!?.]*$",
        r"^(namaste|namaskar|dhanyavaad|shukriya|alvida)[\s!?.]*$",
        r"^(haan|nahi|theek|accha)[\s!?.]*$",
    )
]

BOOKKEEPER_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("create", ("create", "add", "new", "make", "generate", "banao", "naya")),
    ("edit", ("edit", "update", "change", "modify", "badlo", "sudhar")),
    ("delete", ("delete", "remove", "cancel", "hatao", "mita")),
    ("record", ("record", "enter", "log", "book", "darj")),
    ("send", ("send", "email", "mail", "share", "bhejo")),
    ("file", ("file", "submit", "upload", "dakhil")),
    ("void", ("void", "reverse", "undo")),
    ("bulk", ("import", "export", "bulk")),
    ("clone", ("clone", "duplicate", "copy")),
    ("banking", ("reconcile", "match", "categorize", "split")),
    ("manage", ("merge", "transfer", "adjust")),
    ("transaction", ("invoice", "bill", "credit note", "debit note", "payment", "expense", "journal")),
    ("reminder", ("reminder", "yaad dilao")),
    ("compliance", ("e-invoice", "einvoice", "e-way", "eway")),
]

CFO_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("view", ("show", "get", "fetch", "list", "view", "display", "dikhao", "batao", "dikha")),
    ("report", ("report", "statement", "summary", "overview")),
    ("analysis", ("analyze", "analysis", "analyse", "insight", "trend", "vishleshan")),
    ("compare", ("compare", "comparison", "versus", "vs", "tulna")),
    ("revenue", ("revenue", "income", "sales", "turnover", "aay", "bikri")),
    ("expense", ("expense", "cost", "spending", "kharcha", "vyay")),
    ("profitability", ("profit", "loss", "margin", "p&l", "laabh", "naafa", "nuksan")),
    ("balance_sheet", ("balance sheet", "assets", "liabilities", "equity")),
    ("cash", ("cash", "cashflow", "cash flow", "liquidity", "fund", "nakad")),
    ("receivables", ("receivable", "receivables", "ar", "outstanding", "overdue", "aging", "baaki")),
    ("payables", ("payable", "payables", "ap", "dues", "dena")),
    ("tax", ("gst", "tax", "tds", "itr", "gstr", "kar")),
    ("kpis", ("kpi", "ratio", "metric", "health", "score", "performance")),
    ("inventory", ("inventory", "stock", "item", "product", "maal", "saman")),
    ("contacts", ("customer", "vendor", "contact", "client", "supplier", "graahak")),
    ("ledger", ("bank", "account", "ledger", "journal", "transaction", "khata")),
    ("forecast", ("forecast", "predict", "projection", "budget", "plan")),
    ("ranking", ("top", "best", "worst", "highest", "lowest", "most", "least")),
    ("aggregate", ("how much", "kitna", "total", "count", "number")),
    ("query", ("what", "kya", "which", "kaun", "when", "kab")),
]

# Write actions that pull a cfo conversation over to bookkeeper tools
ACTION_OVERRIDE_KEYWORDS = (
    "create", "delete", "send", "file", "record", "void", "cancel",
    "banao", "bhejo", "hatao", "mita", "dakhil",
)

_HAS_AMOUNT_RE = re.compile(r"[₹$%0-9]")


def _score(query: str, groups) -> Tuple[int, List[str], str]:
    # substring matching; "ar" also hits "year". Kept for parity with logged routes.
    score = 0
    matches: List[str] = []
    sub = ""
    for sub_category, words in groups:
        for word in words:
            if word in query:
                score += 2 if len(word) > 4 else 1
                matches.append(word)
                if not sub:
                    sub = sub_category
    return score, matches, sub


def _mentions_any(query: str, groups) -> bool:
    return any(word in query for _, words in groups for word in words)


def classify_query(query: str) -> ClassificationResult:
    normalized = (query or "").lower().strip()

    for pattern in GENERAL_CHAT_PATTERNS:
        if pattern.match(normalized):
            return ClassificationResult(
                category=RouteCategory.GENERAL_CHAT,
                confidence=0.95,
                subCategory="greeting",
                matchedKeywords=[normalized],
            )

    if len(normalized.split()) <= 2 and not _HAS_AMOUNT_RE.search(normalized):
        if not _mentions_any(normalized, CFO_KEYWORDS) and not _mentions_any(normalized, BOOKKEEPER_KEYWORDS):
            return ClassificationResult(
                category=RouteCategory.GENERAL_CHAT,
                confidence=0.7,
                subCategory="short_message",
            )

    book_score, book_matches, book_sub = _score(normalized, BOOKKEEPER_KEYWORDS)
    cfo_score, cfo_matches, cfo_sub = _score(normalized, CFO_KEYWORDS)
    has_action = any(k in normalized for k in ACTION_OVERRIDE_KEYWORDS)

    if book_score > 0 and book_score > cfo_score:
        return ClassificationResult(
            category=RouteCategory.BOOKKEEPER,
            confidence=min(0.95, 0.6 + book_score * 0.1),
            subCategory=book_sub,
            matchedKeywords=book_matches,
        )

    if cfo_score > 0:
        if has_action and book_score > 0:
            return ClassificationResult(
                category=RouteCategory.BOOKKEEPER,
                confidence=min(0.9, 0.5 + book_score * 0.1),
                subCategory=book_sub,
                matchedKeywords=book_matches + cfo_matches,
            )
        return ClassificationResult(
            category=RouteCategory.CFO,
            confidence=min(0.95, 0.6 + cfo_score * 0.1),
            subCategory=cfo_sub,
            matchedKeywords=cfo_matches,
        )

    # most unmatched queries are reads
    return ClassificationResult(category=RouteCategory.CFO, confidence=0.5, subCategory="general")


def detect_cross_over(query: str, current_category) -> bool:
    """A cfo conversation asking for a write action needs bookkeeper tools."""
    try:
        category = RouteCategory(current_category)
    except ValueError:
        return False
    if not category.is_advisory():
        return False
    normalized = (query or "").lower().strip()
    return any(k in normalized for k in ACTION_OVERRIDE_KEYWORDS)
