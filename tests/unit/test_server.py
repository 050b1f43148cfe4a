"""
Tests for the server module.
"""

import pytest
from fastapi.testclient import TestClient

from crm_search.auth.session import InMemorySessionStore
from crm_search.search.analysis import ANALYSIS_FALLBACK
from crm_search.server.server import create_server
from crm_search.utils.errors import ErrorCode


@pytest.fixture
def session_store(crm_session):
    store = InMemorySessionStore()
    store.put(crm_session)
    return store


@pytest.fixture
def client(test_config, session_store, fake_transport, metrics):
    server = create_server(
        test_config,
        session_store=session_store,
        transport_factory=lambda session: fake_transport,
        metrics=metrics,
    )
    return TestClient(server.app)


def test_create_server(test_config):
    """Test creating a server instance."""
    server = create_server(test_config)
    assert server is not None
    assert server.config == test_config
    assert server.engine.analysis_hook.summarizer is None


def test_server_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_server_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["server"] == "CRM Search Engine"
    assert data["version"] == "0.1.0"
    assert data["status"] == "running"


def test_server_status_endpoint(client):
    response = client.get("/status")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "running"
    assert isinstance(data["uptime"], float)
    assert data["sessions"] == 1
    assert data["environment"] == "test"


def test_server_cors_middleware(client):
    """Test that CORS middleware is properly configured."""
    response = client.options(
        "/",
        headers={
            "Origin": "http://testserver",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "X-Example",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in ("*", "http://testserver")


def test_request_id_propagated(client):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert response.headers["X-Request-ID"] == "req-42"

    response = client.get("/health")
    assert response.headers["X-Request-ID"]


def test_search_endpoint(client, fake_transport):
    fake_transport.structured["FROM Opportunity"] = [{"Id": "006A", "Name": "Motor deal"}]

    response = client.post(
        "/search",
        json={"team_id": "T123", "intent": {"object_types": ["Opportunity"], "stage": "won"}},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["strategy_used"] == "soql_only"
    assert data["result_buckets"] == {"opportunities": [{"Id": "006A", "Name": "Motor deal"}]}
    assert data["total_count"] == 1
    assert data["per_query_errors"] == []
    assert "IsWon = true" in fake_transport.structured_queries[0]


def test_search_unknown_team(client):
    response = client.post("/search", json={"team_id": "T999", "intent": {}})

    assert response.status_code == 401
    data = response.json()
    assert data["code"] == ErrorCode.NOT_CONNECTED.value
    assert data["request_id"]


def test_search_requires_team_id(client):
    response = client.post("/search", json={"intent": {}})

    assert response.status_code == 400
    assert response.json()["code"] == ErrorCode.VALIDATION_ERROR.value


def test_metrics_endpoint(client):
    client.post("/search", json={"team_id": "T123", "intent": {}})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert 'crm_search_strategy_selections_total{strategy="default"} 1.0' in response.text


def test_unknown_path(client):
    response = client.get("/nowhere")
    assert response.status_code == 404
    assert response.json()["code"] == ErrorCode.NOT_FOUND.value


def test_account_health_endpoint(client, fake_transport):
    fake_transport.structured["COUNT(Id) CaseCount"] = [
        {"AccountId": "001A", "Name": "Acme", "CaseCount": 4}
    ]

    response = client.post("/insights/account-health", json={"team_id": "T123"})

    assert response.status_code == 200
    data = response.json()
    assert data["accounts"] == [{"account_id": "001A", "account_name": "Acme", "case_count": 4}]
    assert data["per_query_errors"] == []
    assert "LAST_N_DAYS:30" in data["executed_queries"][0]


def test_record_insight_endpoint(client, fake_transport):
    fake_transport.structured["FROM Case"] = [{"Id": "500A", "CaseNumber": "00001026"}]

    response = client.post("/insights/record", json={"team_id": "T123", "reference": "00001026"})

    assert response.status_code == 200
    data = response.json()
    assert data["object_type"] == "Case"
    assert data["record"] == {"Id": "500A", "CaseNumber": "00001026"}
    assert data["analysis"] == ANALYSIS_FALLBACK


def test_record_insight_not_found(client):
    response = client.post(
        "/insights/record",
        json={"team_id": "T123", "object_type": "Account", "reference": "Nobody Inc"},
    )

    assert response.status_code == 404
    assert response.json()["code"] == ErrorCode.NOT_FOUND.value


def test_trends_endpoint(client, fake_transport):
    response = client.post(
        "/insights/trends",
        json={"team_id": "T123", "analysis_type": "account_risks", "time_range": "today"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["analysis_type"] == "account_risks"
    assert data["time_range"] == "today"
    assert "HAVING COUNT(Id) >= 3" in fake_transport.structured_queries[0]


def test_trends_unknown_analysis_type(client):
    response = client.post(
        "/insights/trends", json={"team_id": "T123", "analysis_type": "churn_forecast"}
    )

    assert response.status_code == 400
    assert response.json()["code"] == ErrorCode.VALIDATION_ERROR.value


def test_insights_unknown_team(client):
    response = client.post("/insights/account-health", json={"team_id": "T999"})

    assert response.status_code == 401
    assert response.json()["code"] == ErrorCode.NOT_CONNECTED.value
