"""
Tests for result merging and deduplication.
"""

import unittest

from crm_search.salesforce.client import DiscoveryHit
from crm_search.search.intent import ObjectType
from crm_search.search.merger import TICKETS_BUCKET, ResultMerger, bucket_name


class TestResultMerger(unittest.TestCase):
    """Tests for ResultMerger."""

    def test_bucket_names(self):
        self.assertEqual(bucket_name(ObjectType.CASE), "cases")
        self.assertEqual(bucket_name(ObjectType.OPPORTUNITY), "opportunities")

    def test_every_requested_bucket_present(self):
        merger = ResultMerger.for_object_types([ObjectType.ACCOUNT, ObjectType.CONTACT])
        self.assertEqual(merger.buckets, {"accounts": [], "contacts": []})
        self.assertEqual(merger.total_count, 0)

    def test_first_seen_wins(self):
        merger = ResultMerger(["cases"])
        merger.add("cases", [{"Id": "1", "v": "first"}, {"Id": "2"}])
        added = merger.add("cases", [{"Id": "3"}, {"Id": "1", "v": "second"}])

        self.assertEqual(added, 1)
        self.assertEqual([r["Id"] for r in merger.buckets["cases"]], ["1", "2", "3"])
        self.assertEqual(merger.buckets["cases"][0]["v"], "first")

    def test_records_without_id_are_kept(self):
        merger = ResultMerger(["accounts"])
        merger.add("accounts", [{"Name": "a"}, {"Name": "a"}, {"Id": "1"}])
        self.assertEqual(len(merger.buckets["accounts"]), 3)

    def test_unrequested_bucket_dropped(self):
        merger = ResultMerger(["cases"])
        self.assertEqual(merger.add("accounts", [{"Id": "1"}]), 0)
        self.assertNotIn("accounts", merger.buckets)

    def test_tickets_deduplicated_by_key(self):
        merger = ResultMerger.for_object_types([ObjectType.CASE], include_tickets=True)
        merger.add(TICKETS_BUCKET, [{"id": "10", "key": "OPS-1"}, {"id": "11", "key": "OPS-1"}])
        self.assertEqual(len(merger.buckets[TICKETS_BUCKET]), 1)

    def test_add_hits_buckets_by_type_tag(self):
        merger = ResultMerger.for_object_types([ObjectType.ACCOUNT, ObjectType.CASE])
        hits = [
            DiscoveryHit(id="001", object_type="Account", record={"Id": "001"}),
            DiscoveryHit(id="500", object_type="Case", record={"Id": "500"}),
            DiscoveryHit(id="003", object_type="Contact", record={"Id": "003"}),
            DiscoveryHit(id="001", object_type="Account", record={"Id": "001"}),
            DiscoveryHit(id="x", object_type="Lead", record={"Id": "x"}),
        ]
        self.assertEqual(merger.add_hits(hits), 2)
        self.assertEqual(merger.buckets, {"accounts": [{"Id": "001"}], "cases": [{"Id": "500"}]})
        self.assertEqual(merger.total_count, 2)

    def test_buckets_are_copies(self):
        merger = ResultMerger(["cases"])
        merger.buckets["cases"].append({"Id": "1"})
        self.assertEqual(merger.total_count, 0)
