# FILE: services/tool_resolver.py
"""
Tool Name Resolution

- Maps AI-generated (often hallucinated) tool names to canonical catalog ids
- Exact match, then static alias table, then token similarity
- Re-resolves pipelines when the tool catalog changes
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from core.intent import PipelineNode, ToolCatalogEntry
from models.pipeline import ToolCheck, ToolReresolution

logger = logging.getLogger("tool_resolver")

# -----------------------------
# Alias table
# -----------------------------
# Changing this table changes which historical pipelines silently resolve to
# a different tool. Bump the version with every edit.
TOOL_ALIAS_TABLE_VERSION = "1"

TOOL_ALIASES: Dict[str, Tuple[str, ...]] = {
    "get_all_bills": ("get_vendor_bills", "get_bills", "list_bills", "fetch_bills", "vendor_bills"),
    "get_all_vendors": ("get_vendors", "list_vendors", "fetch_vendors"),
    "get_all_invoices": ("get_invoices", "list_invoices", "fetch_invoices", "get_customer_invoices"),
    "get_all_customers": ("get_customers", "list_customers", "fetch_customers"),
    "get_all_payments": ("get_payments", "list_payments", "fetch_payments"),
    "get_all_expenses": ("get_expenses", "list_expenses", "fetch_expenses"),
    "get_cash_balance": ("get_balance", "cash_balance", "fetch_cash_balance"),
}

SIMILARITY_THRESHOLD = 0.5
LIST_PREFERENCE_BONUS = 0.1
LIST_TOKENS = ("all", "list", "fetch")


def _build_alias_lookup(aliases: Dict[str, Iterable[str]]) -> Dict[str, str]:
    lookup: Dict[str, str] = {}
    for tool_id, synonyms in aliases.items():
        for synonym in synonyms:
            lookup[synonym.lower()] = tool_id
    return lookup


ALIAS_TO_TOOL: Dict[str, str] = _build_alias_lookup(TOOL_ALIASES)

CatalogLike = Sequence[Union[ToolCatalogEntry, str]]


def _tool_id(entry: Union[ToolCatalogEntry, str]) -> str:
    return entry if isinstance(entry, str) else entry.id


def normalize_reference(reference: Optional[str]) -> str:
    """Strip a leading '@', trim and lowercase."""
    if not reference:
        return ""
    ref = reference.strip()
    if ref.startswith("@"):
        ref = ref[1:]
    return ref.strip().lower()


# -----------------------------
# Token similarity
# -----------------------------
def _singular(token: str) -> str:
    return token[:-1] if token.endswith("s") else token


def _tokens_match(a: str, b: str) -> bool:
    sa, sb = _singular(a), _singular(b)
    return a == b or sa == sb or a == sb or sa == b


def token_similarity(reference_tokens: List[str], tool_id: str) -> float:
    """
    matching / max(|ref|, |tool|), plus the get_all_ bonus for list-ish references.
    Naive plural folding; kept as-is for compatibility with existing pipelines.
    """
    tool_tokens = [t for t in tool_id.lower().split("_") if t]
    denominator = max(len(reference_tokens), len(tool_tokens))
    if denominator == 0:
        return 0.0

    matching = 0
    for ref_token in reference_tokens:
        for tool_token in tool_tokens:
            if _tokens_match(ref_token, tool_token):
                matching += 1
                break

    score = matching / denominator
    if any(t in reference_tokens for t in LIST_TOKENS) and tool_id.startswith("get_all_"):
        score += LIST_PREFERENCE_BONUS
    return score


# -----------------------------
# Resolver
# -----------------------------
def resolve(reference: Optional[str], catalog: CatalogLike) -> str:
    """
    Resolve a tool reference against the catalog.

    Returns the canonical tool id, "" when nothing matches confidently, or the
    normalized reference itself when the catalog is empty (callers re-resolve
    once the catalog has loaded).
    """
    normalized = normalize_reference(reference)
    if not normalized:
        return ""
    if not catalog:
        return normalized

    ids = [_tool_id(entry) for entry in catalog]

    # 1. Exact match (case-insensitive)
    for tool_id in ids:
        if tool_id.lower() == normalized:
            logger.debug("exact match: %s -> %s", reference, tool_id)
            return tool_id

    # 2. Alias table
    canonical = ALIAS_TO_TOOL.get(normalized)
    if canonical:
        for tool_id in ids:
            if tool_id.lower() == canonical.lower():
                logger.info("alias match: %s -> %s", reference, tool_id)
                return tool_id

    # 3. Token similarity, first-seen wins ties
    reference_tokens = [t for t in normalized.split("_") if t]
    best_id: Optional[str] = None
    best_score = 0.0
    for tool_id in ids:
        score = token_similarity(reference_tokens, tool_id)
        if best_id is None or score > best_score:
            best_id, best_score = tool_id, score

    if best_id is not None and best_score >= SIMILARITY_THRESHOLD:
        logger.info("similarity match: %s -> %s (score: %.2f)", reference, best_id, best_score)
        return best_id

    logger.warning("no tool match for: %s. Available: %s", reference, ", ".join(ids))
    return ""


def is_known_tool(reference: Optional[str], catalog: CatalogLike) -> bool:
    """Verbatim id (or display name) presence in the catalog."""
    if not reference:
        return False
    for entry in catalog:
        if _tool_id(entry) == reference:
            return True
        if not isinstance(entry, str) and entry.name and entry.name == reference:
            return True
    return False


# -----------------------------
# Pipeline-level helpers
# -----------------------------
def reresolve_pipeline(
    pipeline: Sequence[PipelineNode],
    catalog: CatalogLike,
) -> Tuple[List[PipelineNode], List[ToolReresolution]]:
    """
    Re-run every api_call whose tool is not verbatim in the catalog through the
    resolver. Returns a copy of the pipeline plus the list of changed nodes.
    nodeId and sequence are never touched.
    """
    updated: List[PipelineNode] = []
    changes: List[ToolReresolution] = []

    for node in pipeline:
        if node.nodeType != "api_call" or not catalog or is_known_tool(node.mcpTool, catalog):
            updated.append(node)
            continue

        resolved = resolve(node.mcpTool, catalog)
        if resolved and resolved != node.mcpTool:
            updated.append(node.model_copy(update={"mcpTool": resolved}))
            changes.append(
                ToolReresolution(
                    nodeId=node.nodeId,
                    sequence=node.sequence,
                    previous=node.mcpTool,
                    resolved=resolved,
                )
            )
            logger.info("[RERESOLVE] node=%s %s -> %s", node.nodeId, node.mcpTool, resolved)
        else:
            updated.append(node)

    return updated, changes


def check_pipeline_tools(pipeline: Sequence[PipelineNode], catalog: CatalogLike) -> List[ToolCheck]:
    """found/missing per api_call tool reference, by verbatim id or name."""
    checks: List[ToolCheck] = []
    for node in pipeline:
        if node.nodeType == "api_call" and node.mcpTool:
            status = "found" if is_known_tool(node.mcpTool, catalog) else "missing"
            checks.append(ToolCheck(nodeId=node.nodeId, reference=node.mcpTool, status=status))
    return checks
