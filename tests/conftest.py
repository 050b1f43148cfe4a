"""
Test configuration and fixtures for the CRM search engine.

This module provides pytest fixtures and configuration for testing.
"""

import sys
from pathlib import Path
from typing import Any, Dict, Generator, List, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crm_search.auth.session import CrmSession
from crm_search.config.config import (
    AnalysisConfig,
    Config,
    JiraConfig,
    LoggingConfig,
    SalesforceConfig,
    SearchConfig,
    ServerConfig,
)
from crm_search.salesforce.client import DiscoveryHit, DiscoveryResponse, StructuredResponse
from crm_search.utils.metrics import MetricsManager, create_search_metrics


class FakeTransport:
    """
    Transport double with scripted responses.

    ``discovery`` and ``structured`` map a substring of the query to the
    result returned for any query containing it: a list of hits or records,
    or an exception instance to raise. Every query received is recorded.
    """

    def __init__(self):
        self.discovery: Dict[str, Any] = {}
        self.structured: Dict[str, Any] = {}
        self.discovery_queries: List[str] = []
        self.structured_queries: List[str] = []

    @staticmethod
    def _lookup(table: Dict[str, Any], query: str) -> Any:
        for needle, result in table.items():
            if needle in query:
                if isinstance(result, Exception):
                    raise result
                return result
        return []

    async def run_discovery_query(self, query: str) -> DiscoveryResponse:
        self.discovery_queries.append(query)
        return DiscoveryResponse(hits=self._lookup(self.discovery, query))

    async def run_structured_query(self, query: str) -> StructuredResponse:
        self.structured_queries.append(query)
        records = self._lookup(self.structured, query)
        return StructuredResponse(records=records, total_size=len(records))


def make_hits(object_type: str, *ids: str) -> List[DiscoveryHit]:
    return [
        DiscoveryHit(
            id=record_id,
            object_type=object_type,
            record={"attributes": {"type": object_type}, "Id": record_id},
        )
        for record_id in ids
    ]


def mock_http_session(status: int, payload: Any) -> Tuple[MagicMock, MagicMock]:
    """
    Build a stand-in for ``aiohttp.ClientSession`` answering every request
    with ``status`` and the JSON ``payload``.

    Returns the object to patch in as the session factory's return value
    and the inner session whose get/post calls can be inspected.
    """
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)

    request = MagicMock()
    request.__aenter__ = AsyncMock(return_value=response)
    request.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.get.return_value = request
    session.post.return_value = request

    session_context = MagicMock()
    session_context.__aenter__ = AsyncMock(return_value=session)
    session_context.__aexit__ = AsyncMock(return_value=False)
    return session_context, session


@pytest.fixture
def test_config() -> Config:
    """Provide a test configuration."""
    return Config(
        salesforce=SalesforceConfig(
            login_url="https://login.example.com",
            client_id="test_client_id",
            client_secret="test_client_secret",
            timeout=5,
        ),
        jira=JiraConfig(),
        analysis=AnalysisConfig(),
        search=SearchConfig(),
        server=ServerConfig(
            host="127.0.0.1",
            port=8000,
            workers=1,
            reload=False,
            cors_origins=["*"],
            request_timeout=10,
        ),
        logging=LoggingConfig(
            level="DEBUG",
            config_file=None,
            log_file=None,
        ),
        debug=True,
        environment="test",
    )


@pytest.fixture
def test_env_vars(monkeypatch: pytest.MonkeyPatch) -> Generator[Dict[str, str], None, None]:
    """Set up test environment variables."""
    env_vars = {
        "CRM_SEARCH_SALESFORCE_CLIENT_ID": "test_env_client_id",
        "CRM_SEARCH_SERVER_PORT": "9000",
        "CRM_SEARCH_LOGGING_LEVEL": "DEBUG",
        "CRM_SEARCH_DEBUG": "true",
        "CRM_SEARCH_ENVIRONMENT": "test",
    }

    for key, value in env_vars.items():
        monkeypatch.setenv(key, value)

    yield env_vars

    for key in env_vars:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def crm_session() -> CrmSession:
    """Provide a connected CRM session with a refresh token."""
    return CrmSession(
        access_token="old_token",
        instance_url="https://acme.my.example.com/",
        refresh_token="refresh_token",
        team_id="T123",
    )


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def metrics() -> MetricsManager:
    """Provide a metrics manager with a private registry."""
    return create_search_metrics()


@pytest.fixture
def hits():
    """Provide the discovery hit factory."""
    return make_hits


@pytest.fixture
def http_session():
    """Provide the aiohttp session stand-in factory."""
    return mock_http_session
