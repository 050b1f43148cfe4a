"""
Retrieval executor.

Runs one compiled query at a time against the CRM transport and reports the
result as a QueryOutcome instead of raising. An expired session is
recovered by refreshing the access token and retrying the same query
exactly once; every other backend error is final for that query.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from crm_search.auth.refresh import CredentialRefresher
from crm_search.auth.session import CrmSession
from crm_search.salesforce.client import CrmTransport, DiscoveryHit
from crm_search.search.query import DiscoveryQuery, StructuredQuery
from crm_search.utils.errors import (
    BackendError,
    SearchEngineError,
    SessionInvalidError,
    TokenRefreshError,
)
from crm_search.utils.logging import get_logger
from crm_search.utils.metrics import MetricsManager, metrics_manager

logger = get_logger(__name__)


class QueryKind(str, Enum):
    DISCOVERY = "discovery"
    STRUCTURED = "structured"


class QueryOutcome(BaseModel):
    """Success or failure of a single backend query."""

    kind: QueryKind
    query: str
    success: bool
    records: List[Dict[str, Any]] = Field(default_factory=list)
    hits: List[DiscoveryHit] = Field(default_factory=list)
    total_size: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None
    retried: bool = False

    @classmethod
    def failure(
        cls, kind: QueryKind, query: str, error: Exception, retried: bool = False
    ) -> "QueryOutcome":
        code = error.code.value if isinstance(error, SearchEngineError) else None
        message = error.message if isinstance(error, SearchEngineError) else str(error)
        return cls(
            kind=kind,
            query=query,
            success=False,
            error=message,
            error_code=code,
            retried=retried,
        )


class RetrievalExecutor:
    """
    Executes discovery and structured queries with session recovery.

    The executor mutates the session in place when a refresh succeeds, so
    sibling queries of the same search use the new token too.
    """

    def __init__(
        self,
        transport: CrmTransport,
        session: CrmSession,
        refresher: Optional[CredentialRefresher] = None,
        metrics: Optional[MetricsManager] = None,
    ):
        """
        Initialize the executor.

        Args:
            transport: Backend transport
            session: Session whose token the transport uses
            refresher: Collaborator able to exchange the refresh token
            metrics: Metrics manager, the process-wide one by default
        """
        self.transport = transport
        self.session = session
        self.refresher = refresher
        self.metrics = metrics or metrics_manager

    async def execute_discovery(self, query: DiscoveryQuery) -> QueryOutcome:
        """Run a SOSL query and return its hits."""
        query_string = query.render()

        async def run() -> QueryOutcome:
            response = await self.transport.run_discovery_query(query_string)
            return QueryOutcome(
                kind=QueryKind.DISCOVERY,
                query=query_string,
                success=True,
                hits=response.hits,
                total_size=len(response.hits),
            )

        return await self._execute(QueryKind.DISCOVERY, query_string, run)

    async def execute_structured(self, query: StructuredQuery) -> QueryOutcome:
        """Run a SOQL query and return its records."""
        query_string = query.render()

        async def run() -> QueryOutcome:
            response = await self.transport.run_structured_query(query_string)
            return QueryOutcome(
                kind=QueryKind.STRUCTURED,
                query=query_string,
                success=True,
                records=response.records,
                total_size=response.total_size,
            )

        return await self._execute(QueryKind.STRUCTURED, query_string, run)

    async def _execute(
        self,
        kind: QueryKind,
        query_string: str,
        run: Callable[[], Awaitable[QueryOutcome]],
    ) -> QueryOutcome:
        try:
            outcome = await run()
        except SessionInvalidError as e:
            logger.warning(f"Session invalid running {kind.value} query, attempting refresh")
            outcome = await self._refresh_and_retry(kind, query_string, run, e)
        except SearchEngineError as e:
            logger.error(f"{kind.value.capitalize()} query failed: {e.message}")
            outcome = QueryOutcome.failure(kind, query_string, e)
        except asyncio.TimeoutError:
            logger.error(f"{kind.value.capitalize()} query timed out")
            outcome = QueryOutcome.failure(kind, query_string, BackendError("Request timed out"))

        self.metrics.increment_counter(
            "backend_queries_total",
            labels={"kind": kind.value, "outcome": "success" if outcome.success else "failure"},
        )
        return outcome

    async def _refresh_and_retry(
        self,
        kind: QueryKind,
        query_string: str,
        run: Callable[[], Awaitable[QueryOutcome]],
        original_error: SessionInvalidError,
    ) -> QueryOutcome:
        if self.refresher is None or not self.session.refresh_token:
            logger.error("No refresh token available, cannot recover session")
            return QueryOutcome.failure(kind, query_string, original_error)

        try:
            access_token = await self.refresher.refresh(self.session.refresh_token)
        except TokenRefreshError as e:
            logger.error(f"Token refresh failed: {e.message}")
            return QueryOutcome.failure(kind, query_string, e)

        self.session.replace_access_token(access_token)

        try:
            outcome = await run()
        except SearchEngineError as e:
            logger.error(f"{kind.value.capitalize()} query failed after token refresh: {e.message}")
            return QueryOutcome.failure(kind, query_string, e, retried=True)
        except asyncio.TimeoutError:
            logger.error(f"{kind.value.capitalize()} query timed out after token refresh")
            return QueryOutcome.failure(
                kind, query_string, BackendError("Request timed out"), retried=True
            )

        outcome.retried = True
        return outcome
