"""
Structured search intent.

A SearchIntent is what the natural-language planner hands to the engine:
which CRM objects to search, free-text keywords, a time window and the
per-object filters. Unrecognized enum values coming from the planner are
dropped (treated as absent) instead of failing validation.
"""

import math
from enum import Enum
from typing import Any, List, Optional, Protocol, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ObjectType(str, Enum):
    """CRM record families the engine can query."""

    CASE = "Case"
    ACCOUNT = "Account"
    OPPORTUNITY = "Opportunity"
    CONTACT = "Contact"


ALL_OBJECT_TYPES = [
    ObjectType.CASE,
    ObjectType.ACCOUNT,
    ObjectType.OPPORTUNITY,
    ObjectType.CONTACT,
]


class TimeRange(str, Enum):
    """Relative time windows understood by the filter compilers."""

    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    LAST_30_DAYS = "last_30_days"
    LAST_90_DAYS = "last_90_days"
    LAST_6_MONTHS = "last_6_months"
    ALL_TIME = "all_time"


class OpportunityStage(str, Enum):
    WON = "won"
    LOST = "lost"
    OPEN = "open"
    CLOSED = "closed"


class CaseStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    ESCALATED = "escalated"


class CasePriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    CRITICAL = "critical"


class AccountType(str, Enum):
    CUSTOMER = "customer"
    PROSPECT = "prospect"
    PARTNER = "partner"


class AccountHealth(str, Enum):
    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"


class ContactRole(str, Enum):
    DECISION_MAKER = "decision_maker"
    TECHNICAL = "technical"
    BILLING = "billing"


# Planner vocabulary that differs from the enum values
ENUM_ALIASES = {
    "in_flight": "open",
    "in-flight": "open",
    "inflight": "open",
    "closed_won": "won",
    "closed_lost": "lost",
    "amber": "yellow",
}


def coerce_enum(enum_cls: Type[Enum], value: Any) -> Optional[Enum]:
    """
    Map a planner-supplied value onto ``enum_cls``.

    Matching is case-insensitive, spaces and dashes count as underscores,
    and anything unrecognized becomes None.
    """
    if value is None or isinstance(value, enum_cls):
        return value
    if not isinstance(value, str):
        return None

    normalized = value.strip().lower().replace(" ", "_")
    normalized = ENUM_ALIASES.get(normalized, normalized).replace("-", "_")
    for member in enum_cls:
        if member.value.lower() == normalized:
            return member
    return None


class SearchIntent(BaseModel):
    """Model for a structured search request."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    object_types: List[ObjectType] = Field(default_factory=lambda: list(ALL_OBJECT_TYPES))
    keywords: List[str] = Field(default_factory=list)
    time_range: Optional[TimeRange] = None

    # Opportunity
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    stage: Optional[OpportunityStage] = None

    # Case
    case_status: Optional[CaseStatus] = None
    priority: Optional[CasePriority] = None

    # Account
    account_type: Optional[AccountType] = None
    health: Optional[AccountHealth] = None

    # Contact
    contact_role: Optional[ContactRole] = None

    deep_analysis: bool = False
    include_tickets: bool = False

    @field_validator("object_types", mode="before")
    @classmethod
    def expand_object_types(cls, v: Any) -> List[ObjectType]:
        """Expand "all" and drop unknown object types, keeping request order."""
        if v is None or v == "all":
            return list(ALL_OBJECT_TYPES)
        if isinstance(v, (str, ObjectType)):
            v = [v]

        object_types: List[ObjectType] = []
        for item in v:
            if isinstance(item, str) and item.strip().lower() == "all":
                return list(ALL_OBJECT_TYPES)
            object_type = coerce_enum(ObjectType, item)
            if object_type and object_type not in object_types:
                object_types.append(object_type)
        return object_types or list(ALL_OBJECT_TYPES)

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]

    @field_validator("min_amount", "max_amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Optional[float]:
        """Accept finite numbers and numeric strings such as "25,000"; drop the rest."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            amount = v
        else:
            try:
                amount = float(str(v).replace(",", "").replace("$", "").strip())
            except ValueError:
                return None
        return amount if math.isfinite(amount) else None

    @field_validator("time_range", mode="before")
    @classmethod
    def parse_time_range(cls, v: Any) -> Optional[TimeRange]:
        return coerce_enum(TimeRange, v)

    @field_validator("stage", mode="before")
    @classmethod
    def parse_stage(cls, v: Any) -> Optional[OpportunityStage]:
        return coerce_enum(OpportunityStage, v)

    @field_validator("case_status", mode="before")
    @classmethod
    def parse_case_status(cls, v: Any) -> Optional[CaseStatus]:
        return coerce_enum(CaseStatus, v)

    @field_validator("priority", mode="before")
    @classmethod
    def parse_priority(cls, v: Any) -> Optional[CasePriority]:
        return coerce_enum(CasePriority, v)

    @field_validator("account_type", mode="before")
    @classmethod
    def parse_account_type(cls, v: Any) -> Optional[AccountType]:
        return coerce_enum(AccountType, v)

    @field_validator("health", mode="before")
    @classmethod
    def parse_health(cls, v: Any) -> Optional[AccountHealth]:
        return coerce_enum(AccountHealth, v)

    @field_validator("contact_role", mode="before")
    @classmethod
    def parse_contact_role(cls, v: Any) -> Optional[ContactRole]:
        return coerce_enum(ContactRole, v)

    def has_structured_filter(self) -> bool:
        """Return True if any time window, amount or categorical filter is set."""
        return any(
            value is not None
            for value in (
                self.time_range,
                self.min_amount,
                self.max_amount,
                self.stage,
                self.case_status,
                self.priority,
                self.account_type,
                self.health,
                self.contact_role,
            )
        )


class SearchPlanner(Protocol):
    """Turns operator text into a SearchIntent (implemented outside this package)."""

    async def plan_search(self, user_text: str) -> SearchIntent:
        ...
