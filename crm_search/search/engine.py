"""
Search engine for CRM records.

This module plans and runs one search: it selects a retrieval strategy for
the intent, fans the per-object work out concurrently, merges the records
into buckets and optionally attaches an analysis. Backend failures of
individual queries are reported in the response instead of failing the
whole search.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from crm_search.auth.refresh import CredentialRefresher
from crm_search.auth.session import CrmSession
from crm_search.config.config import SearchConfig
from crm_search.salesforce.client import CrmTransport, DiscoveryHit, SalesforceClient
from crm_search.search.analysis import AnalysisHook, Summarizer
from crm_search.search.executor import QueryOutcome, RetrievalExecutor
from crm_search.search.filters import compile_filters
from crm_search.search.intent import ObjectType, SearchIntent
from crm_search.search.merger import (
    TICKETS_BUCKET,
    ResultBuckets,
    ResultMerger,
    bucket_name,
)
from crm_search.search.query import NoMatchingRecords, QueryBuilder
from crm_search.search.sanitizer import keyword_phrase, sanitize_keywords
from crm_search.search.strategy import RetrievalStrategy, describe_strategy, select_strategy
from crm_search.tickets.jira import JiraClient
from crm_search.utils.errors import NotConnectedError, SearchEngineError
from crm_search.utils.logging import get_logger
from crm_search.utils.metrics import MetricsManager, metrics_manager

logger = get_logger(__name__)

TICKET_OBJECT_TYPE = "Ticket"

TransportFactory = Callable[[CrmSession], CrmTransport]


class PerQueryError(BaseModel):
    """A query that failed without failing the search."""

    object_type: Optional[str] = None
    keyword: Optional[str] = None
    query_kind: str
    error: str
    error_code: Optional[str] = None


class SearchResponse(BaseModel):
    """Model for a search response."""

    result_buckets: ResultBuckets
    strategy_used: RetrievalStrategy
    strategy_summary: str
    analysis: Optional[str] = None
    per_query_errors: List[PerQueryError] = Field(default_factory=list)
    total_count: int = 0
    executed_queries: List[str] = Field(default_factory=list)
    execution_time: Optional[float] = None


class BranchResult(BaseModel):
    """Records and failures produced by one concurrent branch of a search."""

    bucket: Optional[str] = None
    records: List[Dict[str, Any]] = Field(default_factory=list)
    hits: List[DiscoveryHit] = Field(default_factory=list)
    errors: List[PerQueryError] = Field(default_factory=list)
    queries: List[str] = Field(default_factory=list)


def error_from_outcome(
    outcome: QueryOutcome,
    object_type: Optional[ObjectType] = None,
    keyword: Optional[str] = None,
) -> PerQueryError:
    return PerQueryError(
        object_type=object_type.value if object_type else None,
        keyword=keyword,
        query_kind=outcome.kind.value,
        error=outcome.error or "Unknown error",
        error_code=outcome.error_code,
    )


class SearchEngine:
    """
    Search engine for CRM records.

    The engine holds no per-team state. Each call to ``search`` builds a
    transport for the given session, so one engine serves every team.
    """

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        refresher: Optional[CredentialRefresher] = None,
        summarizer: Optional[Summarizer] = None,
        query_builder: Optional[QueryBuilder] = None,
        jira_client: Optional[JiraClient] = None,
        config: Optional[SearchConfig] = None,
        metrics: Optional[MetricsManager] = None,
    ):
        """
        Initialize the search engine.

        Args:
            transport_factory: Builds the CRM transport for a session
            refresher: Exchanges refresh tokens after a session expires
            summarizer: Produces deep analysis text
            query_builder: Query builder
            jira_client: Ticketing backend client
            config: Search limits
            metrics: Metrics manager, the process-wide one by default
        """
        self.config = config or SearchConfig()
        self.transport_factory = transport_factory or SalesforceClient
        self.refresher = refresher
        self.analysis_hook = AnalysisHook(summarizer)
        self.query_builder = query_builder or QueryBuilder(
            filtered_limit=self.config.filtered_limit,
            fallback_limit=self.config.fallback_limit,
            id_chunk_size=self.config.id_chunk_size,
        )
        self.jira_client = jira_client
        self.metrics = metrics or metrics_manager
        logger.info("Search engine initialized")

    def executor_for(self, session: Optional[CrmSession]) -> RetrievalExecutor:
        """
        Build a retrieval executor bound to ``session``.

        Raises:
            NotConnectedError: If there is no usable session or transport
        """
        if session is None or not session.access_token:
            raise NotConnectedError()

        transport = self.transport_factory(session)
        if transport is None:
            raise NotConnectedError()
        return RetrievalExecutor(transport, session, self.refresher, self.metrics)

    async def search(self, intent: SearchIntent, session: Optional[CrmSession]) -> SearchResponse:
        """
        Run a search.

        Args:
            intent: Structured search intent
            session: CRM session of the requesting team

        Returns:
            Search response with one bucket per requested object type

        Raises:
            NotConnectedError: If there is no usable session or transport
        """
        start_time = time.time()
        executor = self.executor_for(session)

        keywords = sanitize_keywords(intent.keywords)
        strategy = select_strategy(intent, keywords)
        self.metrics.increment_counter(
            "strategy_selections_total", labels={"strategy": strategy.value}
        )
        logger.info(f"Selected strategy {strategy.value} for {len(intent.object_types)} object types")

        bucket_types = list(intent.object_types)
        if strategy == RetrievalStrategy.DEFAULT and ObjectType.CASE not in bucket_types:
            bucket_types.append(ObjectType.CASE)
        include_tickets = intent.include_tickets and bool(keywords)
        merger = ResultMerger.for_object_types(bucket_types, include_tickets=include_tickets)

        tasks = [self._run_strategy(strategy, executor, intent, keywords)]
        if include_tickets:
            tasks.append(self._search_tickets(keyword_phrase(keywords)))
        branch_groups = await asyncio.gather(*tasks)

        errors: List[PerQueryError] = []
        queries: List[str] = []
        for branches in branch_groups:
            for branch in branches:
                if branch.bucket is not None:
                    merger.add(branch.bucket, branch.records)
                merger.add_hits(branch.hits)
                errors.extend(branch.errors)
                queries.extend(branch.queries)

        buckets = merger.buckets
        total_count = merger.total_count
        analysis = await self.analysis_hook.analyze(buckets, intent, total_count)

        execution_time = time.time() - start_time
        self.metrics.observe_histogram(
            "search_duration_seconds", execution_time, labels={"strategy": strategy.value}
        )
        logger.info(
            "Search completed with %d results and %d failed queries in %.2f seconds",
            total_count,
            len(errors),
            execution_time,
        )

        return SearchResponse(
            result_buckets=buckets,
            strategy_used=strategy,
            strategy_summary=describe_strategy(strategy, intent, self.config.keyword_limit),
            analysis=analysis,
            per_query_errors=errors,
            total_count=total_count,
            executed_queries=queries,
            execution_time=execution_time,
        )

    async def _run_strategy(
        self,
        strategy: RetrievalStrategy,
        executor: RetrievalExecutor,
        intent: SearchIntent,
        keywords: List[str],
    ) -> List[BranchResult]:
        if strategy == RetrievalStrategy.SOSL_THEN_SOQL:
            phrase = keyword_phrase(keywords)
            branches = [
                self._discover_then_filter(executor, object_type, phrase, intent)
                for object_type in intent.object_types
            ]
        elif strategy == RetrievalStrategy.SOQL_ONLY:
            branches = [
                self._filter(executor, object_type, intent) for object_type in intent.object_types
            ]
        elif strategy == RetrievalStrategy.SOSL_ONLY:
            branches = [
                self._discover(executor, keyword)
                for keyword in keywords[: self.config.keyword_limit]
            ]
        else:
            branches = [self._default(executor)]

        return list(await asyncio.gather(*branches))

    async def _discover_then_filter(
        self,
        executor: RetrievalExecutor,
        object_type: ObjectType,
        phrase: str,
        intent: SearchIntent,
    ) -> BranchResult:
        """
        Find identifiers of ``object_type`` matching the phrase, then filter them.

        No structured query is issued when discovery finds nothing. Large
        identifier sets are filtered chunk by chunk until the row cap is
        reached.
        """
        result = BranchResult(bucket=bucket_name(object_type))

        discovery = self.query_builder.build_discovery_query(phrase, object_type)
        outcome = await executor.execute_discovery(discovery)
        result.queries.append(outcome.query)
        if not outcome.success:
            result.errors.append(error_from_outcome(outcome, object_type=object_type))
            return result

        ids: List[str] = []
        for hit in outcome.hits:
            if hit.object_type == object_type.value and hit.id and hit.id not in ids:
                ids.append(hit.id)

        queries = self.query_builder.build_restricted_queries(
            object_type, compile_filters(object_type, intent), ids
        )
        if isinstance(queries, NoMatchingRecords):
            logger.debug(f"No {object_type.value} records matched '{phrase}'")
            return result

        for query in queries:
            outcome = await executor.execute_structured(query)
            result.queries.append(outcome.query)
            if not outcome.success:
                result.errors.append(error_from_outcome(outcome, object_type=object_type))
                break
            result.records.extend(outcome.records)
            if len(result.records) >= query.limit:
                break

        result.records = result.records[: queries[0].limit]
        return result

    async def _filter(
        self, executor: RetrievalExecutor, object_type: ObjectType, intent: SearchIntent
    ) -> BranchResult:
        result = BranchResult(bucket=bucket_name(object_type))

        query = self.query_builder.build_structured_query(
            object_type, compile_filters(object_type, intent)
        )
        outcome = await executor.execute_structured(query)
        result.queries.append(outcome.query)
        if outcome.success:
            result.records = outcome.records
        else:
            result.errors.append(error_from_outcome(outcome, object_type=object_type))
        return result

    async def _discover(self, executor: RetrievalExecutor, keyword: str) -> BranchResult:
        result = BranchResult()

        query = self.query_builder.build_discovery_query(keyword)
        outcome = await executor.execute_discovery(query)
        result.queries.append(outcome.query)
        if outcome.success:
            result.hits = outcome.hits
        else:
            result.errors.append(error_from_outcome(outcome, keyword=keyword))
        return result

    async def _default(self, executor: RetrievalExecutor) -> BranchResult:
        result = BranchResult(bucket=bucket_name(ObjectType.CASE))

        outcome = await executor.execute_structured(self.query_builder.build_default_query())
        result.queries.append(outcome.query)
        if outcome.success:
            result.records = outcome.records
        else:
            result.errors.append(error_from_outcome(outcome, object_type=ObjectType.CASE))
        return result

    async def _search_tickets(self, phrase: str) -> List[BranchResult]:
        result = BranchResult(bucket=TICKETS_BUCKET)
        if self.jira_client is None:
            return [result]

        try:
            result.records = await self.jira_client.search_issues(phrase)
        except SearchEngineError as e:
            logger.error(f"Ticket search failed: {e.message}")
            result.errors.append(
                PerQueryError(
                    object_type=TICKET_OBJECT_TYPE,
                    keyword=phrase,
                    query_kind="ticket",
                    error=e.message,
                    error_code=e.code.value,
                )
            )
        return [result]
