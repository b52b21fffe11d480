from datetime import date

from core.intent import Parameter
from models.pipeline import SimResult
from services.pipeline_simulator import build_render_context, merge_suggested_steps, simulate
from tests.conftest import make_node


def test_cash_balance_pipeline_runs_in_sequence(cash_balance_intent, catalog):
    fixtures = {"get_cash_balance": {"totalBalance": 3000}}
    results = simulate(cash_balance_intent.resolutionFlow.dataPipeline, catalog=catalog, fixtures=fixtures)

    assert list(results) == ["cashData", "dailyBurn"]
    assert results["cashData"].tool == "get_cash_balance"
    assert results["cashData"].status == "success"
    assert results["cashData"].data == {"totalBalance": 3000}
    assert results["dailyBurn"].result == 100


def test_nodes_run_by_sequence_not_array_order(catalog):
    pipeline = [
        make_node("n2", 2, "half", node_type="computation", formula="base / 2"),
        make_node("n1", 1, "base", node_type="computation", formula="10"),
    ]
    results = simulate(pipeline, catalog=catalog)
    assert list(results) == ["base", "half"]
    assert results["half"].result == 5


def test_fixture_data_is_copied(catalog):
    fixtures = {"get_all_bills": {"rows": [1, 2]}}
    results = simulate([make_node("n1", 1, "bills", mcpTool="get_bills")], catalog=catalog, fixtures=fixtures)
    results["bills"].data["rows"].append(3)
    assert fixtures["get_all_bills"]["rows"] == [1, 2]


def test_unresolved_tool_yields_empty_data(catalog):
    results = simulate([make_node("n1", 1, "x", mcpTool="create_journal_entry")], catalog=catalog)
    assert results["x"].status == "unresolved"
    assert results["x"].resolved is False
    assert results["x"].data == {}


def test_failed_computation_is_recorded_not_raised():
    results = simulate([make_node("n1", 1, "bad", node_type="computation", formula="missing * 2")])
    assert results["bad"].result is None
    assert "missing" in results["bad"].error


def test_conditional_produces_bool():
    results = simulate(
        [make_node("n1", 1, "isHigh", node_type="conditional", condition="amount > 100")],
        entity_values={"amount": 250},
    )
    assert results["isHigh"].result is True


def test_parameter_sources(catalog):
    node = make_node(
        "n2", 2, "bills", mcpTool="get_all_bills",
        parameters=[
            Parameter(name="status", value="open"),
            Parameter(name="period", source="entity", value="period"),
            Parameter(name="org", source="context", value="org.id"),
            Parameter(name="vendor", source="previous_node", value="vendors.0.id"),
            Parameter(name="missing", source="entity", value="nope"),
        ],
    )
    pipeline = [make_node("n1", 1, "vendors", mcpTool="get_all_vendors"), node]
    fixtures = {"get_all_vendors": [{"id": "v-1"}]}

    results = simulate(
        pipeline,
        entity_values={"period": "last month"},
        catalog=catalog,
        fixtures=fixtures,
        context={"org": {"id": "org-9"}},
        period_entities=["period"],
        today=date(2024, 3, 15),
    )

    params = results["bills"].params
    assert params["status"] == "open"
    assert params["period"] == {"start_date": "2024-02-01", "end_date": "2024-02-29"}
    assert params["org"] == "org-9"
    assert params["vendor"] == "v-1"
    assert params["missing"] is None
    assert "entity 'nope' has no value" in results["bills"].error


def test_non_period_entities_are_not_expanded(catalog):
    node = make_node(
        "n1", 1, "bills", mcpTool="get_all_bills",
        parameters=[Parameter(name="label", source="entity", value="label")],
    )
    results = simulate(
        [node], entity_values={"label": "last month"}, catalog=catalog,
        period_entities=["period"],
    )
    assert results["bills"].params["label"] == "last month"


def test_render_context_precedence():
    results = {
        "total": SimResult(nodeId="n1", nodeType="computation", sequence=1, result=10),
    }
    bag = build_render_context(results, {"total": 1, "vendor": "Acme"}, {"total": 99})
    assert bag == {"total": 99, "vendor": "Acme"}


def test_merge_suggested_steps_skips_present_and_numbers_new(catalog):
    pipeline = [make_node("node_1", 1, "cashData", mcpTool="get_cash_balance")]
    steps = [
        {"tool": "get_balance"},
        {"tool": "get_vendors", "description": "Vendor list"},
        {"tool": "get_all_bills", "outputVariable": "cashData"},
    ]

    merged = merge_suggested_steps(pipeline, steps, catalog)

    assert [n.nodeId for n in merged] == ["node_1", "node_2"]
    assert merged[1].mcpTool == "get_all_vendors"
    assert merged[1].outputVariable == "vendorsData"
    assert merged[1].sequence == 2
    assert merged[1].description == "Vendor list"


def test_merge_suggested_steps_avoids_node_id_collision():
    pipeline = [make_node("node_2", 1, "a", mcpTool="tool_a")]
    merged = merge_suggested_steps(pipeline, [{"tool": "tool_b"}])
    assert merged[1].nodeId == "node_2_suggested"
    assert merged[1].outputVariable == "toolBData"
