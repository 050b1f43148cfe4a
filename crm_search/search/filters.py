"""
Filter compilers for structured (SOQL) queries.

Each CRM object family has a compiler that turns the generic filters on a
SearchIntent into SOQL predicate clauses. Compilers are pure functions and
are looked up through FILTER_COMPILERS, so supporting a new object type
means adding one table entry.
"""

import math
from typing import Callable, Dict, List, Optional, Union

from crm_search.search.intent import (
    AccountHealth,
    AccountType,
    CasePriority,
    CaseStatus,
    ContactRole,
    ObjectType,
    OpportunityStage,
    SearchIntent,
    TimeRange,
)
from crm_search.utils.errors import QueryCompilationError

Predicates = List[str]
FilterCompiler = Callable[[SearchIntent], Predicates]

DEFAULT_TIME_RANGE = TimeRange.LAST_30_DAYS

TIME_RANGE_PREDICATES: Dict[TimeRange, Optional[str]] = {
    TimeRange.TODAY: "CreatedDate = TODAY",
    TimeRange.YESTERDAY: "CreatedDate = YESTERDAY",
    TimeRange.THIS_WEEK: "CreatedDate = THIS_WEEK",
    TimeRange.THIS_MONTH: "CreatedDate = THIS_MONTH",
    TimeRange.LAST_30_DAYS: "CreatedDate = LAST_N_DAYS:30",
    TimeRange.LAST_90_DAYS: "CreatedDate = LAST_N_DAYS:90",
    TimeRange.LAST_6_MONTHS: "CreatedDate = LAST_N_DAYS:180",
    TimeRange.ALL_TIME: None,
}

OPPORTUNITY_STAGE_PREDICATES: Dict[OpportunityStage, str] = {
    OpportunityStage.WON: "IsWon = true",
    OpportunityStage.LOST: "IsWon = false AND IsClosed = true",
    OpportunityStage.OPEN: "IsClosed = false AND StageName NOT IN ('Closed Won', 'Closed Lost')",
    OpportunityStage.CLOSED: "IsClosed = true",
}

CASE_STATUS_PREDICATES: Dict[CaseStatus, str] = {
    CaseStatus.OPEN: "IsClosed = false",
    CaseStatus.CLOSED: "IsClosed = true",
    CaseStatus.ESCALATED: "IsEscalated = true",
}

CASE_PRIORITY_PREDICATES: Dict[CasePriority, str] = {
    CasePriority.HIGH: "Priority = 'High'",
    CasePriority.MEDIUM: "Priority = 'Medium'",
    CasePriority.LOW: "Priority = 'Low'",
    CasePriority.CRITICAL: "Priority IN ('High', 'Critical')",
}

ACCOUNT_TYPE_PREDICATES: Dict[AccountType, str] = {
    AccountType.CUSTOMER: "Type LIKE 'Customer%'",
    AccountType.PROSPECT: "Type = 'Prospect'",
    AccountType.PARTNER: "Type LIKE '%Partner%'",
}

# Account health is tracked through the standard Rating picklist
ACCOUNT_HEALTH_PREDICATES: Dict[AccountHealth, str] = {
    AccountHealth.RED: "Rating = 'Cold'",
    AccountHealth.YELLOW: "Rating = 'Warm'",
    AccountHealth.GREEN: "Rating = 'Hot'",
}

CONTACT_ROLE_TITLES: Dict[ContactRole, List[str]] = {
    ContactRole.DECISION_MAKER: ["Director", "VP", "Chief", "Head", "President"],
    ContactRole.TECHNICAL: ["Engineer", "Developer", "Architect", "CTO", "IT"],
    ContactRole.BILLING: ["Finance", "Billing", "Accounts Payable", "CFO", "Controller"],
}


def soql_string(value: str) -> str:
    """Render ``value`` as a single-quoted SOQL string literal."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def soql_number(value: Union[int, float]) -> str:
    """Render a number without a trailing ``.0`` for whole values."""
    if not math.isfinite(value):
        raise QueryCompilationError(f"Cannot render non-finite number {value!r}")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def compile_time_range(time_range: Optional[TimeRange]) -> Predicates:
    """
    Compile the shared time window predicate.

    An absent window falls back to the trailing 30 days; ``all_time`` adds no
    predicate.
    """
    predicate = TIME_RANGE_PREDICATES.get(
        time_range or DEFAULT_TIME_RANGE,
        TIME_RANGE_PREDICATES[DEFAULT_TIME_RANGE],
    )
    return [predicate] if predicate else []


def compile_case_filters(intent: SearchIntent) -> Predicates:
    predicates = []
    if intent.case_status:
        predicates.append(CASE_STATUS_PREDICATES[intent.case_status])
    if intent.priority:
        predicates.append(CASE_PRIORITY_PREDICATES[intent.priority])
    return predicates + compile_time_range(intent.time_range)


def compile_account_filters(intent: SearchIntent) -> Predicates:
    predicates = []
    if intent.account_type:
        predicates.append(ACCOUNT_TYPE_PREDICATES[intent.account_type])
    if intent.health:
        predicates.append(ACCOUNT_HEALTH_PREDICATES[intent.health])
    return predicates + compile_time_range(intent.time_range)


def compile_opportunity_filters(intent: SearchIntent) -> Predicates:
    predicates = []
    if intent.stage:
        predicates.append(OPPORTUNITY_STAGE_PREDICATES[intent.stage])
    if intent.min_amount is not None:
        predicates.append(f"Amount >= {soql_number(intent.min_amount)}")
    if intent.max_amount is not None:
        predicates.append(f"Amount <= {soql_number(intent.max_amount)}")
    return predicates + compile_time_range(intent.time_range)


def compile_contact_filters(intent: SearchIntent) -> Predicates:
    predicates = []
    if intent.contact_role:
        titles = CONTACT_ROLE_TITLES[intent.contact_role]
        clauses = " OR ".join(f"Title LIKE {soql_string(f'%{title}%')}" for title in titles)
        predicates.append(f"({clauses})")
    return predicates + compile_time_range(intent.time_range)


FILTER_COMPILERS: Dict[ObjectType, FilterCompiler] = {
    ObjectType.CASE: compile_case_filters,
    ObjectType.ACCOUNT: compile_account_filters,
    ObjectType.OPPORTUNITY: compile_opportunity_filters,
    ObjectType.CONTACT: compile_contact_filters,
}


def compile_filters(object_type: ObjectType, intent: SearchIntent) -> Predicates:
    """
    Compile the predicates that apply to ``object_type``.

    Filters that belong to other object families are ignored.

    Args:
        object_type: Object family being queried
        intent: Search intent carrying the filters

    Returns:
        Ordered SOQL predicate clauses, joined with AND by the query builder
    """
    return FILTER_COMPILERS[object_type](intent)
