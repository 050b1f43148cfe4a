"""
Query builders for the CRM backend.

Two query languages are produced here: SOSL discovery queries
(``FIND {...} RETURNING ...``) for full-text matching across objects, and
SOQL structured queries (``SELECT ... FROM ... WHERE ...``) for predicate
filtering on a single object. Queries are kept as small models and only
rendered to strings at the execution boundary.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from crm_search.search.filters import Predicates, soql_string
from crm_search.search.intent import ObjectType
from crm_search.utils.errors import QueryCompilationError
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

FILTERED_LIMIT = 50
FALLBACK_LIMIT = 20

# Identifiers per "Id IN (...)" clause; longer lists are split across queries
ID_CHUNK_SIZE = 200

# Fields selected by structured queries, per object type
STRUCTURED_FIELDS: Dict[ObjectType, List[str]] = {
    ObjectType.CASE: [
        "Id",
        "CaseNumber",
        "Subject",
        "Status",
        "Priority",
        "CreatedDate",
        "Account.Name",
        "Contact.Name",
    ],
    ObjectType.ACCOUNT: ["Id", "Name", "Type", "Industry", "Phone", "Rating", "CreatedDate"],
    ObjectType.OPPORTUNITY: [
        "Id",
        "Name",
        "StageName",
        "Amount",
        "CloseDate",
        "Account.Name",
        "CreatedDate",
    ],
    ObjectType.CONTACT: ["Id", "Name", "Email", "Phone", "Title", "Account.Name", "CreatedDate"],
}

# Display fields returned when discovery results are the final answer
DISCOVERY_FIELDS: Dict[ObjectType, List[str]] = {
    ObjectType.ACCOUNT: ["Id", "Name", "Industry", "CreatedDate"],
    ObjectType.CONTACT: ["Id", "Name", "Email", "CreatedDate"],
    ObjectType.CASE: ["Id", "CaseNumber", "Subject", "Status", "Priority", "CreatedDate"],
    ObjectType.OPPORTUNITY: ["Id", "Name", "StageName", "Amount", "CloseDate", "CreatedDate"],
}


class ObjectSelection(BaseModel):
    """One ``Type(fields)`` entry of a SOSL RETURNING clause."""

    model_config = ConfigDict(frozen=True)

    object_type: ObjectType
    fields: List[str]

    def render(self) -> str:
        return f"{self.object_type.value}({', '.join(self.fields)})"


class DiscoveryQuery(BaseModel):
    """A SOSL full-text query."""

    model_config = ConfigDict(frozen=True)

    phrase: str
    returning: List[ObjectSelection]

    @property
    def object_types(self) -> List[ObjectType]:
        return [selection.object_type for selection in self.returning]

    def render(self) -> str:
        """
        Render the query string.

        Raises:
            QueryCompilationError: If the phrase is empty
        """
        if not self.phrase.strip():
            raise QueryCompilationError("Discovery query requires a non-empty keyword phrase")
        returning = ", ".join(selection.render() for selection in self.returning)
        return f"FIND {{{self.phrase}}} RETURNING {returning}"


class StructuredQuery(BaseModel):
    """A SOQL query over a single object type."""

    model_config = ConfigDict(frozen=True)

    object_type: ObjectType
    fields: List[str]
    predicates: List[str] = Field(default_factory=list)
    id_restriction: Optional[List[str]] = None
    group_by: List[str] = Field(default_factory=list)
    having: Optional[str] = None
    order_by: str = "CreatedDate DESC"
    limit: int = FILTERED_LIMIT

    def where_clauses(self) -> List[str]:
        clauses = []
        if self.id_restriction is not None:
            if not self.id_restriction:
                raise QueryCompilationError("Identifier restriction must not be empty")
            ids = ",".join(soql_string(record_id) for record_id in self.id_restriction)
            clauses.append(f"Id IN ({ids})")
        clauses.extend(self.predicates)
        return clauses

    def render(self) -> str:
        """
        Render the query string.

        Raises:
            QueryCompilationError: If the identifier restriction is present but empty
        """
        query = f"SELECT {', '.join(self.fields)} FROM {self.object_type.value}"
        clauses = self.where_clauses()
        if clauses:
            query += f" WHERE {' AND '.join(clauses)}"
        if self.group_by:
            query += f" GROUP BY {', '.join(self.group_by)}"
        if self.having:
            query += f" HAVING {self.having}"
        return f"{query} ORDER BY {self.order_by} LIMIT {self.limit}"


class NoMatchingRecords:
    """Returned instead of a query when the result is known to be empty."""

    def __repr__(self) -> str:
        return "NO_MATCHING_RECORDS"


NO_MATCHING_RECORDS = NoMatchingRecords()


class QueryBuilder:
    """
    Builder for discovery and structured queries.

    Projections and row caps are held on the instance so callers can
    configure them once.
    """

    def __init__(
        self,
        filtered_limit: int = FILTERED_LIMIT,
        fallback_limit: int = FALLBACK_LIMIT,
        id_chunk_size: int = ID_CHUNK_SIZE,
        structured_fields: Optional[Dict[ObjectType, List[str]]] = None,
        discovery_fields: Optional[Dict[ObjectType, List[str]]] = None,
    ):
        self.filtered_limit = filtered_limit
        self.fallback_limit = fallback_limit
        self.id_chunk_size = id_chunk_size
        self.structured_fields = structured_fields or STRUCTURED_FIELDS
        self.discovery_fields = discovery_fields or DISCOVERY_FIELDS

    def build_discovery_query(
        self, phrase: str, object_type: Optional[ObjectType] = None
    ) -> DiscoveryQuery:
        """
        Build a SOSL query for a sanitized keyword phrase.

        With ``object_type`` the query returns only identifiers of that type,
        to seed a structured query. Without it, display fields of every
        object type are returned.

        Args:
            phrase: Sanitized, space-joined keywords
            object_type: Restrict discovery to one object type

        Returns:
            Discovery query model

        Raises:
            QueryCompilationError: If the phrase is empty
        """
        if not phrase or not phrase.strip():
            raise QueryCompilationError("Discovery query requires a non-empty keyword phrase")

        if object_type is not None:
            returning = [ObjectSelection(object_type=object_type, fields=["Id"])]
        else:
            returning = [
                ObjectSelection(object_type=selected, fields=fields)
                for selected, fields in self.discovery_fields.items()
            ]
        return DiscoveryQuery(phrase=phrase.strip(), returning=returning)

    def build_structured_query(
        self,
        object_type: ObjectType,
        predicates: Predicates,
        ids: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> Union[StructuredQuery, NoMatchingRecords]:
        """
        Build a SOQL query for one object type.

        Args:
            object_type: Object to select from
            predicates: Compiled filter predicates, ANDed together
            ids: Restrict results to these identifiers (from a discovery pass)
            limit: Row cap, defaults to the filtered limit

        Returns:
            The query, or NO_MATCHING_RECORDS when ``ids`` is present but empty
        """
        if ids is not None and not ids:
            logger.debug(f"Empty identifier restriction for {object_type.value}, skipping query")
            return NO_MATCHING_RECORDS

        return StructuredQuery(
            object_type=object_type,
            fields=list(self.structured_fields[object_type]),
            predicates=list(predicates),
            id_restriction=list(ids) if ids is not None else None,
            limit=limit or self.filtered_limit,
        )

    def build_restricted_queries(
        self,
        object_type: ObjectType,
        predicates: Predicates,
        ids: List[str],
    ) -> Union[List[StructuredQuery], NoMatchingRecords]:
        """
        Build structured queries restricted to discovered identifiers.

        Identifiers are split into chunks of ``id_chunk_size`` so that no
        single query carries an unbounded ``Id IN (...)`` list. Chunks keep
        discovery order.

        Returns:
            One query per chunk, or NO_MATCHING_RECORDS when ``ids`` is empty
        """
        if not ids:
            logger.debug(f"Empty identifier restriction for {object_type.value}, skipping query")
            return NO_MATCHING_RECORDS

        return [
            self.build_structured_query(
                object_type, predicates, ids=ids[start : start + self.id_chunk_size]
            )
            for start in range(0, len(ids), self.id_chunk_size)
        ]

    def build_default_query(self) -> StructuredQuery:
        """Build the fixed fallback query: most recent cases, no filters."""
        return StructuredQuery(
            object_type=ObjectType.CASE,
            fields=list(self.structured_fields[ObjectType.CASE]),
            limit=self.fallback_limit,
        )
