"""
Retrieval strategy selection.

The strategy is a pure function of the intent's shape: whether it carries
keywords, structured filters, both or neither.
"""

from enum import Enum
from typing import List, Optional

from crm_search.search.intent import ALL_OBJECT_TYPES, SearchIntent
from crm_search.search.sanitizer import sanitize_keywords


class RetrievalStrategy(str, Enum):
    """Combinations of discovery and structured queries."""

    SOSL_THEN_SOQL = "sosl_then_soql"
    SOQL_ONLY = "soql_only"
    SOSL_ONLY = "sosl_only"
    DEFAULT = "default"


STRATEGY_LABELS = {
    RetrievalStrategy.SOSL_THEN_SOQL: "SOSL discovery then SOQL filter",
    RetrievalStrategy.SOQL_ONLY: "SOQL filter only",
    RetrievalStrategy.SOSL_ONLY: "SOSL discovery only",
    RetrievalStrategy.DEFAULT: "Default recent cases",
}

# Keywords searched one by one in discovery-only mode
KEYWORD_LIMIT = 3


def select_strategy(intent: SearchIntent, keywords: Optional[List[str]] = None) -> RetrievalStrategy:
    """
    Choose the retrieval strategy for ``intent``.

    Keywords are judged after sanitization, so an intent whose keywords are
    all operator characters behaves as if it had none.

    Args:
        intent: Search intent
        keywords: Already sanitized keywords, computed from the intent if omitted

    Returns:
        The first matching strategy in priority order
    """
    if keywords is None:
        keywords = sanitize_keywords(intent.keywords)
    has_filter = intent.has_structured_filter()

    if keywords and has_filter:
        return RetrievalStrategy.SOSL_THEN_SOQL
    if has_filter:
        return RetrievalStrategy.SOQL_ONLY
    if keywords:
        return RetrievalStrategy.SOSL_ONLY
    return RetrievalStrategy.DEFAULT


def describe_strategy(
    strategy: RetrievalStrategy,
    intent: Optional[SearchIntent] = None,
    keyword_limit: int = KEYWORD_LIMIT,
) -> str:
    """
    Produce a human-readable label of the strategy that ran.

    Discovery-only searches list just the keywords that were searched, the
    first ``keyword_limit`` of them.

    Example: "SOSL discovery then SOQL filter (keywords: motor; objects: Opportunity)"
    """
    label = STRATEGY_LABELS[strategy]
    if intent is None or strategy == RetrievalStrategy.DEFAULT:
        return label

    parts = []
    keywords = sanitize_keywords(intent.keywords)
    if strategy == RetrievalStrategy.SOSL_ONLY:
        keywords = keywords[:keyword_limit]
    if keywords and strategy != RetrievalStrategy.SOQL_ONLY:
        parts.append(f"keywords: {', '.join(keywords)}")
    if intent.object_types != ALL_OBJECT_TYPES:
        parts.append(f"objects: {', '.join(t.value for t in intent.object_types)}")
    else:
        parts.append("objects: all")
    return f"{label} ({'; '.join(parts)})"
