import asyncio

from core.intent import Intent, ToolCatalogEntry
from services.fast_path import LocalPhaseEventSource
from services.orchestrator import ConversationOrchestrator

CASH_BALANCE_INTENT = Intent.model_validate({
    "id": "intent-cash-balance",
    "name": "Cash Balance",
    "moduleId": "cash",
    "trainingPhrases": ["What is our cash balance?", "How much cash do we have"],
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
                "formula": "cashData.totalBalance / 30",
            },
        ],
        "responseConfig": {
            "type": "metric",
            "template": "Balance: {cashData.totalBalance|currency}",
        },
    },
})

CATALOG = [ToolCatalogEntry(id="get_cash_balance", description="Current cash and bank balances")]
FIXTURES = {"get_cash_balance": {"totalBalance": 1250000}}


async def main():
    source = LocalPhaseEventSource([CASH_BALANCE_INTENT], CATALOG, FIXTURES)
    orchestrator = ConversationOrchestrator(source, conversation_id="demo")

    result = await orchestrator.run_turn("What is our cash balance?")
    print("Outcome:", result.outcome.value)
    print("Phases:", " -> ".join(result.phases))
    print("Answer:", result.message.content)

if __name__ == "__main__":
    import sys
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(main())
