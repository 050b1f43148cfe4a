"""
Record insights for CRM data.

Besides keyword and filter search, operators ask three kinds of analytic
questions: which accounts carry the most urgent support load, what a single
case or account looks like in context, and how case volume breaks down over
a time window. Each answer is built from structured queries run through the
retrieval executor and, where requested, summarized through the analysis
hook.
"""

import asyncio
import json
import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from crm_search.auth.session import CrmSession
from crm_search.search.engine import PerQueryError, SearchEngine, error_from_outcome
from crm_search.search.filters import compile_time_range, soql_string
from crm_search.search.intent import ObjectType, TimeRange, coerce_enum
from crm_search.search.query import StructuredQuery
from crm_search.utils.errors import NotFoundError, ValidationError
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

HEALTH_LIMIT = 15
RELATED_CASES_LIMIT = 10
ACCOUNT_CASES_LIMIT = 25
ACCOUNT_OPPORTUNITIES_LIMIT = 10
TREND_ROWS_LIMIT = 200
RISK_CASE_THRESHOLD = 3

URGENT_PRIORITIES = ("High", "Critical")

DEFAULT_TREND_WINDOW = TimeRange.THIS_MONTH

# 15 or 18 character record identifiers
RECORD_ID = re.compile(r"^[a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?$")

KEY_PREFIXES = {
    ObjectType.CASE: "500",
    ObjectType.ACCOUNT: "001",
}

RECORD_DETAIL_FIELDS: Dict[ObjectType, List[str]] = {
    ObjectType.CASE: [
        "Id",
        "CaseNumber",
        "Subject",
        "Description",
        "Status",
        "Priority",
        "Type",
        "Reason",
        "Origin",
        "CreatedDate",
        "LastModifiedDate",
        "ClosedDate",
        "IsClosed",
        "AccountId",
        "Account.Name",
        "Account.Industry",
        "Account.Type",
        "Contact.Name",
        "Contact.Email",
        "Contact.Phone",
        "Owner.Name",
        "Owner.Email",
    ],
    ObjectType.ACCOUNT: [
        "Id",
        "Name",
        "Type",
        "Industry",
        "AnnualRevenue",
        "NumberOfEmployees",
        "BillingCity",
        "BillingState",
        "Phone",
        "Website",
        "Description",
        "Rating",
        "CreatedDate",
        "LastModifiedDate",
    ],
}

RELATED_CASE_FIELDS = ["Id", "CaseNumber", "Subject", "Status", "Priority", "Type", "CreatedDate"]
RELATED_OPPORTUNITY_FIELDS = ["Id", "Name", "StageName", "Amount", "CloseDate", "Type"]


class TrendAnalysis(str, Enum):
    """Aggregations available for pattern analysis."""

    CASE_PATTERNS = "case_patterns"
    ACCOUNT_RISKS = "account_risks"


class AccountCaseLoad(BaseModel):
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    case_count: int = 0


class AccountHealthReport(BaseModel):
    """Accounts ranked by urgent case volume."""

    time_range: Optional[TimeRange] = None
    accounts: List[AccountCaseLoad] = Field(default_factory=list)
    per_query_errors: List[PerQueryError] = Field(default_factory=list)
    executed_queries: List[str] = Field(default_factory=list)


class RecordAnalysis(BaseModel):
    """One record with its related records and an optional analysis."""

    object_type: ObjectType
    record: Optional[Dict[str, Any]] = None
    related: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    analysis: Optional[str] = None
    per_query_errors: List[PerQueryError] = Field(default_factory=list)
    executed_queries: List[str] = Field(default_factory=list)


class TrendReport(BaseModel):
    """Aggregated case rows for a time window, with an optional analysis."""

    analysis_type: TrendAnalysis
    time_range: TimeRange
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    analysis: Optional[str] = None
    per_query_errors: List[PerQueryError] = Field(default_factory=list)
    executed_queries: List[str] = Field(default_factory=list)


def soql_like_pattern(value: str) -> str:
    """Render a ``%value%`` SOQL LIKE pattern with wildcards in ``value`` escaped."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return f"'%{escaped}%'"


def is_record_id(object_type: ObjectType, reference: str) -> bool:
    return bool(RECORD_ID.match(reference)) and reference.startswith(KEY_PREFIXES[object_type])


def lookup_predicate(object_type: ObjectType, reference: str) -> str:
    """
    Predicate locating a record by identifier or by its human reference.

    Cases are looked up by CaseNumber and accounts by a name match when the
    reference is not a record identifier of that type.
    """
    if is_record_id(object_type, reference):
        return f"Id = {soql_string(reference)}"
    if object_type == ObjectType.CASE:
        return f"CaseNumber = {soql_string(reference)}"
    return f"Name LIKE {soql_like_pattern(reference)}"


def build_account_health_query(time_range: Optional[TimeRange] = None) -> StructuredQuery:
    priorities = ", ".join(soql_string(priority) for priority in URGENT_PRIORITIES)
    return StructuredQuery(
        object_type=ObjectType.CASE,
        fields=["AccountId", "Account.Name", "COUNT(Id) CaseCount"],
        predicates=[f"Priority IN ({priorities})"] + compile_time_range(time_range),
        group_by=["AccountId", "Account.Name"],
        order_by="COUNT(Id) DESC",
        limit=HEALTH_LIMIT,
    )


def build_record_query(object_type: ObjectType, reference: str) -> StructuredQuery:
    return StructuredQuery(
        object_type=object_type,
        fields=list(RECORD_DETAIL_FIELDS[object_type]),
        predicates=[lookup_predicate(object_type, reference)],
        limit=1,
    )


def build_related_queries(
    object_type: ObjectType, record: Dict[str, Any]
) -> Dict[str, StructuredQuery]:
    """
    Queries for the records giving context to ``record``, keyed by bucket.

    A case is shown with the other recent cases of its account; an account
    with its recent cases and opportunities.
    """
    record_id = record.get("Id")
    if object_type == ObjectType.CASE:
        account_id = record.get("AccountId") or (record.get("Account") or {}).get("Id")
        if not account_id:
            return {}
        predicates = [f"AccountId = {soql_string(account_id)}"]
        if record_id:
            predicates.append(f"Id != {soql_string(record_id)}")
        return {
            "cases": StructuredQuery(
                object_type=ObjectType.CASE,
                fields=list(RELATED_CASE_FIELDS),
                predicates=predicates,
                limit=RELATED_CASES_LIMIT,
            )
        }

    if not record_id:
        return {}
    account_restriction = f"AccountId = {soql_string(record_id)}"
    return {
        "cases": StructuredQuery(
            object_type=ObjectType.CASE,
            fields=list(RELATED_CASE_FIELDS) + ["ClosedDate"],
            predicates=[account_restriction],
            limit=ACCOUNT_CASES_LIMIT,
        ),
        "opportunities": StructuredQuery(
            object_type=ObjectType.OPPORTUNITY,
            fields=list(RELATED_OPPORTUNITY_FIELDS),
            predicates=[account_restriction],
            limit=ACCOUNT_OPPORTUNITIES_LIMIT,
        ),
    }


def build_trend_query(analysis_type: TrendAnalysis, time_range: TimeRange) -> StructuredQuery:
    if analysis_type == TrendAnalysis.CASE_PATTERNS:
        return StructuredQuery(
            object_type=ObjectType.CASE,
            fields=["Type", "Priority", "Status", "COUNT(Id) CaseCount"],
            predicates=compile_time_range(time_range),
            group_by=["Type", "Priority", "Status"],
            order_by="COUNT(Id) DESC",
            limit=TREND_ROWS_LIMIT,
        )
    return StructuredQuery(
        object_type=ObjectType.CASE,
        fields=["Account.Name", "Account.Industry", "COUNT(Id) CaseCount"],
        predicates=compile_time_range(time_range),
        group_by=["Account.Name", "Account.Industry"],
        having=f"COUNT(Id) >= {RISK_CASE_THRESHOLD}",
        order_by="COUNT(Id) DESC",
        limit=TREND_ROWS_LIMIT,
    )


def _field(record: Dict[str, Any], path: str) -> Any:
    value: Any = record
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def build_record_prompt(
    object_type: ObjectType,
    record: Dict[str, Any],
    related: Dict[str, List[Dict[str, Any]]],
) -> str:
    lines = [
        f"Analyze this CRM {object_type.value.lower()} record in detail:",
        "",
        "RECORD DETAILS:",
    ]
    for path in RECORD_DETAIL_FIELDS[object_type]:
        value = _field(record, path)
        if value not in (None, ""):
            lines.append(f"- {path}: {value}")

    for name, records in related.items():
        lines.append("")
        lines.append(f"RELATED {name.upper()} ({len(records)} found):")
        for related_record in records:
            label = (
                related_record.get("CaseNumber")
                or related_record.get("Name")
                or related_record.get("Id")
            )
            status = related_record.get("Status") or related_record.get("StageName") or "unknown"
            subject = related_record.get("Subject")
            lines.append(f"- {label}: {subject} ({status})" if subject else f"- {label} ({status})")

    lines.append("")
    lines.append("Please provide:")
    if object_type == ObjectType.CASE:
        lines.append("1. Root cause analysis")
        lines.append("2. Severity assessment")
        lines.append("3. Recommended next steps")
        lines.append("4. Pattern analysis, if related cases show trends")
        lines.append("5. Risk assessment for the account")
    else:
        lines.append("1. Overall health score (1-10)")
        lines.append("2. Key risk factors")
        lines.append("3. Support patterns and trends")
        lines.append("4. Business relationship status")
        lines.append("5. Recommended actions")
    lines.append("")
    lines.append("Be concise and specific.")
    return "\n".join(lines)


TREND_INSTRUCTIONS = {
    TrendAnalysis.CASE_PATTERNS: (
        "Analyze these case patterns and identify trends, bottlenecks and "
        "recommendations for support improvement:"
    ),
    TrendAnalysis.ACCOUNT_RISKS: (
        "Identify accounts at risk based on support case volume. Provide a risk "
        "assessment and intervention recommendations:"
    ),
}


def build_trend_prompt(analysis_type: TrendAnalysis, rows: List[Dict[str, Any]]) -> str:
    data = json.dumps(
        [{key: value for key, value in row.items() if key != "attributes"} for row in rows],
        indent=2,
        default=str,
    )
    return "\n".join(
        [
            TREND_INSTRUCTIONS[analysis_type],
            "",
            "DATA:",
            data,
            "",
            "Provide insights on:",
            "1. Key patterns and trends",
            "2. Risk areas requiring attention",
            "3. Operational improvements needed",
            "4. Specific recommendations with priorities",
        ]
    )


class RecordInsights:
    """
    Analytic queries over the CRM backend.

    Shares the engine's transport factory, refresher, analysis hook and
    metrics, so every query gets the same session recovery as a search.
    """

    def __init__(self, engine: SearchEngine):
        self.engine = engine

    async def account_health(
        self, session: Optional[CrmSession], time_range: Optional[Any] = None
    ) -> AccountHealthReport:
        """
        Rank accounts by their count of high and critical priority cases.

        Args:
            session: CRM session of the requesting team
            time_range: Window over case creation, the trailing 30 days by default

        Returns:
            Report with up to 15 accounts, most urgent case load first

        Raises:
            NotConnectedError: If there is no usable session or transport
        """
        executor = self.engine.executor_for(session)
        window = coerce_enum(TimeRange, time_range)
        report = AccountHealthReport(time_range=window)

        outcome = await executor.execute_structured(build_account_health_query(window))
        report.executed_queries.append(outcome.query)
        if not outcome.success:
            report.per_query_errors.append(error_from_outcome(outcome, object_type=ObjectType.CASE))
            return report

        for row in outcome.records:
            report.accounts.append(
                AccountCaseLoad(
                    account_id=row.get("AccountId"),
                    account_name=row.get("Name") or _field(row, "Account.Name"),
                    case_count=row.get("CaseCount") or 0,
                )
            )
        logger.info(f"Account health found {len(report.accounts)} accounts with urgent cases")
        return report

    async def analyze_record(
        self,
        session: Optional[CrmSession],
        object_type: Any,
        reference: str,
        deep_analysis: bool = True,
    ) -> RecordAnalysis:
        """
        Fetch one case or account with its related records and analyze it.

        Args:
            session: CRM session of the requesting team
            object_type: Case or Account
            reference: Record identifier, case number or account name
            deep_analysis: Whether to attach a summarizer analysis

        Returns:
            The record, related records by bucket and the analysis text

        Raises:
            ValidationError: If the object type is unsupported or the reference is empty
            NotFoundError: If no record matches the reference
            NotConnectedError: If there is no usable session or transport
        """
        record_type = coerce_enum(ObjectType, object_type)
        if record_type not in RECORD_DETAIL_FIELDS:
            raise ValidationError(f"Record analysis supports Case and Account, not {object_type}")
        reference = (reference or "").strip()
        if not reference:
            raise ValidationError("A record identifier, case number or account name is required")

        executor = self.engine.executor_for(session)
        result = RecordAnalysis(object_type=record_type)

        outcome = await executor.execute_structured(build_record_query(record_type, reference))
        result.executed_queries.append(outcome.query)
        if not outcome.success:
            result.per_query_errors.append(error_from_outcome(outcome, object_type=record_type))
            return result
        if not outcome.records:
            raise NotFoundError(f"{record_type.value} {reference} not found")
        result.record = outcome.records[0]

        related_queries = build_related_queries(record_type, result.record)
        outcomes = await asyncio.gather(
            *(executor.execute_structured(query) for query in related_queries.values())
        )
        for (bucket, query), related_outcome in zip(related_queries.items(), outcomes):
            result.executed_queries.append(related_outcome.query)
            if related_outcome.success:
                result.related[bucket] = related_outcome.records
            else:
                result.per_query_errors.append(
                    error_from_outcome(related_outcome, object_type=query.object_type)
                )

        if deep_analysis:
            prompt = build_record_prompt(record_type, result.record, result.related)
            result.analysis = await self.engine.analysis_hook.analyze_prompt(prompt)
        return result

    async def pattern_trends(
        self,
        session: Optional[CrmSession],
        analysis_type: Any = TrendAnalysis.CASE_PATTERNS,
        time_range: Optional[Any] = None,
        deep_analysis: bool = True,
    ) -> TrendReport:
        """
        Aggregate cases over a time window and analyze the breakdown.

        ``case_patterns`` groups cases by type, priority and status;
        ``account_risks`` lists accounts with at least three cases.

        Args:
            session: CRM session of the requesting team
            analysis_type: Aggregation to run
            time_range: Window over case creation, the current month by default
            deep_analysis: Whether to attach a summarizer analysis

        Raises:
            ValidationError: If the analysis type is unknown
            NotConnectedError: If there is no usable session or transport
        """
        trend = coerce_enum(TrendAnalysis, analysis_type)
        if trend is None:
            raise ValidationError(f"Unknown trend analysis: {analysis_type}")
        window = coerce_enum(TimeRange, time_range) or DEFAULT_TREND_WINDOW

        executor = self.engine.executor_for(session)
        report = TrendReport(analysis_type=trend, time_range=window)

        outcome = await executor.execute_structured(build_trend_query(trend, window))
        report.executed_queries.append(outcome.query)
        if not outcome.success:
            report.per_query_errors.append(error_from_outcome(outcome, object_type=ObjectType.CASE))
            return report
        report.rows = outcome.records

        if deep_analysis and report.rows:
            report.analysis = await self.engine.analysis_hook.analyze_prompt(
                build_trend_prompt(trend, report.rows)
            )
        return report
