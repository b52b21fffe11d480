import pytest

from core.intent import ToolCatalogEntry
from services import tool_resolver
from services.tool_resolver import (
    ALIAS_TO_TOOL,
    TOOL_ALIASES,
    check_pipeline_tools,
    resolve,
    reresolve_pipeline,
    token_similarity,
)
from tests.conftest import CANONICAL_TOOLS, make_node


# ---------------------------------------------------------------------
# Exact match
# ---------------------------------------------------------------------

@pytest.mark.parametrize("tool_id", CANONICAL_TOOLS)
def test_exact_id_resolves_to_itself(catalog, tool_id):
    assert resolve(tool_id, catalog) == tool_id


@pytest.mark.parametrize("tool_id", CANONICAL_TOOLS)
def test_at_prefix_is_stripped(catalog, tool_id):
    assert resolve("@" + tool_id, catalog) == tool_id


def test_exact_match_is_case_insensitive_and_returns_catalog_spelling():
    catalog = [ToolCatalogEntry(id="Get_Cash_Balance")]
    assert resolve("  get_cash_balance ", catalog) == "Get_Cash_Balance"


def test_empty_reference_is_empty(catalog):
    assert resolve("", catalog) == ""
    assert resolve("   ", catalog) == ""
    assert resolve("@", catalog) == ""
    assert resolve(None, catalog) == ""


# ---------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------

@pytest.mark.parametrize("alias,canonical", sorted(ALIAS_TO_TOOL.items()))
def test_every_alias_resolves_to_its_canonical_tool(catalog, alias, canonical):
    assert resolve(alias, catalog) == canonical


def test_alias_is_ignored_when_canonical_tool_is_not_in_catalog():
    catalog = [ToolCatalogEntry(id="get_customers")]
    # get_vendor_bills -> get_all_bills is not available; similarity decides
    assert resolve("get_vendor_bills", catalog) == ""


def test_alias_table_covers_seven_canonical_tools():
    assert set(TOOL_ALIASES) == set(CANONICAL_TOOLS)
    assert tool_resolver.TOOL_ALIAS_TABLE_VERSION


# ---------------------------------------------------------------------
# Deferred resolution
# ---------------------------------------------------------------------

def test_empty_catalog_returns_normalized_reference():
    assert resolve("@Get_Balance ", []) == "get_balance"


@pytest.mark.parametrize("reference", ["@get_balance", "GET_VENDORS", "get_all_vendor_list", "nonsense_tool"])
def test_deferred_resolution_is_idempotent(catalog, reference):
    assert resolve(resolve(reference, []), catalog) == resolve(reference, catalog)


# ---------------------------------------------------------------------
# Token similarity
# ---------------------------------------------------------------------

def test_shared_tokens_outweigh_other_candidates():
    catalog = [ToolCatalogEntry(id="get_all_vendors"), ToolCatalogEntry(id="get_customers")]
    assert resolve("get_all_vendor_list", catalog) == "get_all_vendors"


def test_similarity_score_includes_list_bonus():
    score = token_similarity(["get", "all", "vendor", "list"], "get_all_vendors")
    assert score == pytest.approx(0.75 + 0.1)


def test_similarity_drops_empty_tokens():
    assert token_similarity(["get", "vendors"], "get__vendors") == pytest.approx(1.0)


def test_first_seen_candidate_wins_ties():
    catalog = [ToolCatalogEntry(id="get_vendor_report"), ToolCatalogEntry(id="get_vendor_summary")]
    assert resolve("get_vendor_totals", catalog) == "get_vendor_report"


def test_below_threshold_returns_empty(catalog):
    assert resolve("create_journal_entry", catalog) == ""


def test_plain_string_catalog_is_accepted():
    assert resolve("list_invoices", ["get_all_invoices", "get_all_bills"]) == "get_all_invoices"


# ---------------------------------------------------------------------
# Pipeline re-resolution
# ---------------------------------------------------------------------

def test_reresolve_updates_only_unknown_tools(catalog):
    pipeline = [
        make_node("n1", 1, "cash", mcpTool="get_balance"),
        make_node("n2", 2, "bills", mcpTool="get_all_bills"),
        make_node("n3", 3, "ratio", node_type="computation", formula="cash.total / 2"),
    ]

    updated, changes = reresolve_pipeline(pipeline, catalog)

    assert [n.mcpTool for n in updated] == ["get_cash_balance", "get_all_bills", None]
    assert [(c.nodeId, c.previous, c.resolved) for c in changes] == [("n1", "get_balance", "get_cash_balance")]
    assert updated[0].nodeId == "n1" and updated[0].sequence == 1
    # input is left untouched
    assert pipeline[0].mcpTool == "get_balance"


def test_reresolve_with_empty_catalog_changes_nothing():
    pipeline = [make_node("n1", 1, "cash", mcpTool="get_balance")]
    updated, changes = reresolve_pipeline(pipeline, [])
    assert changes == []
    assert updated[0].mcpTool == "get_balance"


def test_check_pipeline_tools_reports_found_and_missing():
    catalog = [ToolCatalogEntry(id="tool_a", name="Tool A")]
    pipeline = [
        make_node("n1", 1, "a", mcpTool="tool_a"),
        make_node("n2", 2, "b", mcpTool="Tool A"),
        make_node("n3", 3, "c", mcpTool="get_balance"),
    ]
    statuses = [(c.nodeId, c.status) for c in check_pipeline_tools(pipeline, catalog)]
    assert statuses == [("n1", "found"), ("n2", "found"), ("n3", "missing")]
