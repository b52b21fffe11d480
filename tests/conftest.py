# tests/conftest.py
import sys
from pathlib import Path

# ---------------------------------------------------------
# Ensure project root is on PYTHONPATH BEFORE app imports
# ---------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# ---------------------------------------------------------
# Now safe to import project modules
# ---------------------------------------------------------
import pytest

from core.intent import Intent, PipelineNode, ToolCatalogEntry


CANONICAL_TOOLS = [
    "get_all_bills",
    "get_all_vendors",
    "get_all_invoices",
    "get_all_customers",
    "get_all_payments",
    "get_all_expenses",
    "get_cash_balance",
]


@pytest.fixture
def catalog():
    return [ToolCatalogEntry(id=tool_id) for tool_id in CANONICAL_TOOLS]


@pytest.fixture
def cash_balance_intent():
    return Intent.model_validate({
        "id": "intent-cash",
        "name": "Cash Balance",
        "moduleId": "cash",
        "trainingPhrases": ["What is our cash balance?", "Show cash position"],
        "resolutionFlow": {
            "dataPipeline": [
                {
                    "nodeId": "node_1",
                    "nodeType": "api_call",
                    "sequence": 1,
                    "outputVariable": "cashData",
                    "mcpTool": "get_balance",
                },
                {
                    "nodeId": "node_2",
                    "nodeType": "computation",
                    "sequence": 2,
                    "outputVariable": "dailyBurn",
                    "formula": "cashData.totalBalance/30",
                },
            ],
            "responseConfig": {
                "type": "metric",
                "template": "Balance: {cashData.totalBalance|currency}",
            },
        },
    })


def make_node(node_id, sequence, output, node_type="api_call", **fields):
    return PipelineNode(
        nodeId=node_id,
        nodeType=node_type,
        sequence=sequence,
        outputVariable=output,
        **fields,
    )


@pytest.fixture
def node_factory():
    return make_node
