import pytest
from fastapi.testclient import TestClient

from API_LAYER.app import app


@pytest.fixture(scope="session")
def client():
    # API tests run against the seedless in-memory stores; no reasoning service
    return TestClient(app)


@pytest.fixture
def cash_fixtures():
    return {"get_cash_balance": {"totalBalance": 1250000}}
