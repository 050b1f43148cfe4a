"""
Result merging and deduplication.

Records from every query of a search are collected into buckets keyed by
the pluralized object type name. Within a bucket a record identifier is
kept once, at the position it was first seen.
"""

from typing import Any, Dict, Iterable, List, Optional, Set

from crm_search.salesforce.client import DiscoveryHit
from crm_search.search.intent import ObjectType, coerce_enum
from crm_search.utils.logging import get_logger

logger = get_logger(__name__)

BUCKET_NAMES: Dict[ObjectType, str] = {
    ObjectType.CASE: "cases",
    ObjectType.ACCOUNT: "accounts",
    ObjectType.OPPORTUNITY: "opportunities",
    ObjectType.CONTACT: "contacts",
}

TICKETS_BUCKET = "tickets"

# Identifier field per bucket; CRM records use Id
BUCKET_KEYS: Dict[str, str] = {TICKETS_BUCKET: "key"}
DEFAULT_KEY = "Id"

ResultBuckets = Dict[str, List[Dict[str, Any]]]


def bucket_name(object_type: ObjectType) -> str:
    return BUCKET_NAMES[object_type]


class ResultMerger:
    """
    Accumulates records into deduplicated buckets.

    Only the buckets named at construction are filled; records for any
    other bucket are dropped. Records without an identifier cannot be
    deduplicated and are always kept.
    """

    def __init__(self, buckets: Iterable[str]):
        """
        Initialize the merger.

        Args:
            buckets: Names of the buckets to produce, in output order
        """
        self._buckets: ResultBuckets = {}
        self._seen: Dict[str, Set[Any]] = {}
        for name in buckets:
            self._buckets.setdefault(name, [])
            self._seen.setdefault(name, set())

    @classmethod
    def for_object_types(
        cls, object_types: Iterable[ObjectType], include_tickets: bool = False
    ) -> "ResultMerger":
        names = [bucket_name(object_type) for object_type in object_types]
        if include_tickets:
            names.append(TICKETS_BUCKET)
        return cls(names)

    def add(self, bucket: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Add records to a bucket.

        Args:
            bucket: Bucket name
            records: Raw records in backend order

        Returns:
            Number of records actually added
        """
        if bucket not in self._buckets:
            logger.debug(f"Dropping records for unrequested bucket {bucket}")
            return 0

        key = BUCKET_KEYS.get(bucket, DEFAULT_KEY)
        seen = self._seen[bucket]
        added = 0
        for record in records:
            record_id = record.get(key)
            if record_id is not None:
                if record_id in seen:
                    continue
                seen.add(record_id)
            self._buckets[bucket].append(record)
            added += 1
        return added

    def add_hits(self, hits: Iterable[DiscoveryHit]) -> int:
        """Add discovery hits, bucketed by their object type tag."""
        added = 0
        for hit in hits:
            object_type: Optional[ObjectType] = coerce_enum(ObjectType, hit.object_type)
            if object_type is None:
                logger.debug(f"Ignoring discovery hit of unknown type {hit.object_type}")
                continue
            added += self.add(bucket_name(object_type), [hit.record])
        return added

    @property
    def buckets(self) -> ResultBuckets:
        return {name: list(records) for name, records in self._buckets.items()}

    @property
    def total_count(self) -> int:
        return sum(len(records) for records in self._buckets.values())
