"""
Search functionality for CRM records.

This package provides query planning and execution over the CRM backend,
including intent handling, filter compilation, query building, strategy
selection, retrieval with session recovery, result merging, analysis and record
insights.
"""

from crm_search.search.analysis import (
    ANALYSIS_FALLBACK,
    AnalysisHook,
    GeminiSummarizer,
    Summarizer,
)
from crm_search.search.engine import PerQueryError, SearchEngine, SearchResponse
from crm_search.search.executor import QueryKind, QueryOutcome, RetrievalExecutor
from crm_search.search.filters import FILTER_COMPILERS, compile_filters
from crm_search.search.insights import (
    AccountHealthReport,
    RecordAnalysis,
    RecordInsights,
    TrendAnalysis,
    TrendReport,
)
from crm_search.search.intent import (
    ALL_OBJECT_TYPES,
    AccountHealth,
    AccountType,
    CasePriority,
    CaseStatus,
    ContactRole,
    ObjectType,
    OpportunityStage,
    SearchIntent,
    SearchPlanner,
    TimeRange,
)
from crm_search.search.merger import BUCKET_NAMES, ResultMerger
from crm_search.search.query import (
    NO_MATCHING_RECORDS,
    DiscoveryQuery,
    QueryBuilder,
    StructuredQuery,
)
from crm_search.search.sanitizer import keyword_phrase, sanitize_keyword, sanitize_keywords
from crm_search.search.strategy import RetrievalStrategy, describe_strategy, select_strategy

__all__ = [
    "SearchEngine",
    "SearchResponse",
    "PerQueryError",
    "SearchIntent",
    "SearchPlanner",
    "ObjectType",
    "ALL_OBJECT_TYPES",
    "TimeRange",
    "OpportunityStage",
    "CaseStatus",
    "CasePriority",
    "AccountType",
    "AccountHealth",
    "ContactRole",
    "sanitize_keyword",
    "sanitize_keywords",
    "keyword_phrase",
    "FILTER_COMPILERS",
    "compile_filters",
    "QueryBuilder",
    "DiscoveryQuery",
    "StructuredQuery",
    "NO_MATCHING_RECORDS",
    "RetrievalStrategy",
    "select_strategy",
    "describe_strategy",
    "RetrievalExecutor",
    "QueryOutcome",
    "QueryKind",
    "ResultMerger",
    "BUCKET_NAMES",
    "AnalysisHook",
    "Summarizer",
    "GeminiSummarizer",
    "ANALYSIS_FALLBACK",
    "RecordInsights",
    "AccountHealthReport",
    "RecordAnalysis",
    "TrendAnalysis",
    "TrendReport",
]
