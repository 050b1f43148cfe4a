"""
Server module for the CRM search engine.

This module exposes the search engine over HTTP. Team sessions come from an
injected session store; the server never creates or persists them.
"""

import time
import uuid
from typing import Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from crm_search.auth.refresh import CredentialRefresher, TokenRefresher
from crm_search.auth.session import CrmSession, InMemorySessionStore, SessionStore
from crm_search.config.config import Config
from crm_search.salesforce.client import CrmTransport, SalesforceClient
from crm_search.search.analysis import GeminiSummarizer, Summarizer
from crm_search.search.engine import SearchEngine, SearchResponse, TransportFactory
from crm_search.search.insights import (
    AccountHealthReport,
    RecordAnalysis,
    RecordInsights,
    TrendAnalysis,
    TrendReport,
)
from crm_search.search.intent import ObjectType, SearchIntent
from crm_search.tickets.jira import JiraClient
from crm_search.utils.environment import is_configured
from crm_search.utils.errors import NotConnectedError, NotFoundError, setup_error_handlers
from crm_search.utils.logging import get_logger
from crm_search.utils.metrics import MetricsManager, metrics_manager

logger = get_logger(__name__)

VERSION = "0.1.0"


class ServerStatus(BaseModel):
    """Model representing server status information."""

    status: str
    version: str
    uptime: float
    sessions: int
    environment: str


class SearchRequest(BaseModel):
    """Body of a search request."""

    team_id: str
    intent: SearchIntent = Field(default_factory=SearchIntent)


class AccountHealthRequest(BaseModel):
    team_id: str
    time_range: Optional[str] = None


class RecordAnalysisRequest(BaseModel):
    """Body of a record analysis request."""

    team_id: str
    object_type: str = ObjectType.CASE.value
    reference: str
    deep_analysis: bool = True


class TrendRequest(BaseModel):
    team_id: str
    analysis_type: str = TrendAnalysis.CASE_PATTERNS.value
    time_range: Optional[str] = None
    deep_analysis: bool = True


class SearchServer:
    """
    HTTP server for CRM searches.

    This class wires the search engine, the session store and the metrics
    registry into a FastAPI application.
    """

    def __init__(
        self,
        config: Config,
        engine: SearchEngine,
        session_store: SessionStore,
        metrics: Optional[MetricsManager] = None,
    ):
        """
        Initialize the search server.

        Args:
            config: Server configuration
            engine: Search engine
            session_store: Lookup of team sessions
            metrics: Metrics manager rendered at /metrics
        """
        self.config = config
        self.engine = engine
        self.insights = RecordInsights(engine)
        self.session_store = session_store
        self.metrics = metrics or metrics_manager
        self.app = FastAPI(
            title="CRM Search Engine",
            description="Query planning and execution over CRM records",
            version=VERSION,
            debug=config.debug,
        )
        self._setup_middleware()
        self._setup_routes()
        setup_error_handlers(self.app)
        self._start_time = time.monotonic()
        logger.info("Search server initialized")

    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.server.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def log_requests(request: Request, call_next: Callable) -> Response:
            logger.debug(f"Request: {request.method} {request.url.path}")
            response = await call_next(request)
            logger.debug(f"Response: {response.status_code}")
            return response

        @self.app.middleware("http")
        async def add_request_id(request: Request, call_next: Callable) -> Response:
            """Propagate X-Request-ID, generating one when the client sent none."""
            request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
            request.state.request_id = request_id
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self) -> None:
        @self.app.get("/")
        async def root() -> Dict[str, str]:
            return {
                "server": "CRM Search Engine",
                "version": VERSION,
                "status": "running",
            }

        @self.app.get("/health")
        async def health() -> Dict[str, str]:
            return {"status": "healthy"}

        @self.app.get("/status")
        async def status() -> ServerStatus:
            sessions = len(self.session_store) if hasattr(self.session_store, "__len__") else 0
            return ServerStatus(
                status="running",
                version=VERSION,
                uptime=time.monotonic() - self._start_time,
                sessions=sessions,
                environment=self.config.environment,
            )

        @self.app.get("/metrics")
        async def metrics() -> Response:
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.post("/search", response_model=SearchResponse)
        async def search(body: SearchRequest) -> SearchResponse:
            """Run a search for the team's stored CRM session."""
            return await self.engine.search(body.intent, self._session_for(body.team_id))

        @self.app.post("/insights/account-health", response_model=AccountHealthReport)
        async def account_health(body: AccountHealthRequest) -> AccountHealthReport:
            return await self.insights.account_health(
                self._session_for(body.team_id), body.time_range
            )

        @self.app.post("/insights/record", response_model=RecordAnalysis)
        async def record_analysis(body: RecordAnalysisRequest) -> RecordAnalysis:
            """Fetch one case or account with related records and analyze it."""
            return await self.insights.analyze_record(
                self._session_for(body.team_id),
                body.object_type,
                body.reference,
                deep_analysis=body.deep_analysis,
            )

        @self.app.post("/insights/trends", response_model=TrendReport)
        async def trends(body: TrendRequest) -> TrendReport:
            return await self.insights.pattern_trends(
                self._session_for(body.team_id),
                body.analysis_type,
                body.time_range,
                deep_analysis=body.deep_analysis,
            )

        @self.app.get("/{path:path}")
        async def catch_all(path: str) -> Dict[str, str]:
            raise NotFoundError(f"Resource not found: {path}")

    def _session_for(self, team_id: str) -> CrmSession:
        session = self.session_store.get(team_id)
        if session is None:
            logger.warning(f"No CRM session for team {team_id}")
            raise NotConnectedError(f"CRM backend not connected for team {team_id}")
        return session

    def run(self) -> None:
        """Start the server using the configured settings."""
        uvicorn.run(
            app=self.app,
            host=self.config.server.host,
            port=self.config.server.port,
            workers=self.config.server.workers,
            reload=self.config.server.reload,
            log_level=self.config.logging.level.lower(),
            timeout_keep_alive=self.config.server.request_timeout,
        )


def create_server(
    config: Config,
    session_store: Optional[SessionStore] = None,
    transport_factory: Optional[TransportFactory] = None,
    refresher: Optional[CredentialRefresher] = None,
    summarizer: Optional[Summarizer] = None,
    metrics: Optional[MetricsManager] = None,
) -> SearchServer:
    """
    Create a new search server instance.

    Collaborators left out are built from the configuration: the REST client
    as transport, the OAuth refresher, a Gemini summarizer when an API key
    is configured and the Jira client.

    Args:
        config: Server configuration
        session_store: Team session lookup, an in-memory store by default
        transport_factory: Builds a CRM transport for a session
        refresher: Token refresher
        summarizer: Deep analysis summarizer
        metrics: Metrics manager

    Returns:
        Configured SearchServer instance
    """
    metrics = metrics or metrics_manager

    if session_store is None:
        session_store = InMemorySessionStore(ttl_seconds=config.search.session_ttl_minutes * 60)

    if transport_factory is None:

        def transport_factory(session: CrmSession) -> CrmTransport:
            return SalesforceClient(session, config.salesforce)

    if refresher is None:
        refresher = TokenRefresher(config.salesforce, metrics=metrics)

    if summarizer is None and is_configured(config.analysis.api_key):
        summarizer = GeminiSummarizer(config.analysis)

    engine = SearchEngine(
        transport_factory=transport_factory,
        refresher=refresher,
        summarizer=summarizer,
        jira_client=JiraClient(config.jira),
        config=config.search,
        metrics=metrics,
    )
    return SearchServer(config, engine, session_store, metrics=metrics)
