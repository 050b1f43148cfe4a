"""
Tests for record insights.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from crm_search.search.analysis import ANALYSIS_FALLBACK
from crm_search.search.engine import SearchEngine
from crm_search.search.insights import (
    RecordInsights,
    TrendAnalysis,
    build_account_health_query,
    build_related_queries,
    build_trend_prompt,
    build_trend_query,
    is_record_id,
    lookup_predicate,
)
from crm_search.search.intent import ObjectType, TimeRange
from crm_search.utils.errors import (
    BackendError,
    ErrorCode,
    NotConnectedError,
    NotFoundError,
    ValidationError,
)

CASE_RECORD = {
    "Id": "500A",
    "CaseNumber": "00001026",
    "Subject": "Pump seal leaking",
    "Status": "New",
    "Priority": "High",
    "AccountId": "001A",
    "Account": {"Name": "Acme"},
}


@pytest.fixture
def summarizer():
    summarizer = Mock()
    summarizer.complete = AsyncMock(return_value="Seal failures cluster at Acme.")
    return summarizer


@pytest.fixture
def insights(fake_transport, summarizer, metrics):
    engine = SearchEngine(
        transport_factory=lambda session: fake_transport, summarizer=summarizer, metrics=metrics
    )
    return RecordInsights(engine)


def test_account_health_query():
    assert build_account_health_query().render() == (
        "SELECT AccountId, Account.Name, COUNT(Id) CaseCount FROM Case "
        "WHERE Priority IN ('High', 'Critical') AND CreatedDate = LAST_N_DAYS:30 "
        "GROUP BY AccountId, Account.Name ORDER BY COUNT(Id) DESC LIMIT 15"
    )
    query = build_account_health_query(TimeRange.ALL_TIME).render()
    assert "WHERE Priority IN ('High', 'Critical') GROUP BY" in query


def test_record_references():
    assert is_record_id(ObjectType.CASE, "500Ab00000XyZ12")
    assert is_record_id(ObjectType.ACCOUNT, "001Ab00000XyZ12AAA")
    assert not is_record_id(ObjectType.ACCOUNT, "500Ab00000XyZ12")
    assert not is_record_id(ObjectType.CASE, "00001026")

    assert lookup_predicate(ObjectType.CASE, "500Ab00000XyZ12") == "Id = '500Ab00000XyZ12'"
    assert lookup_predicate(ObjectType.CASE, "00001026") == "CaseNumber = '00001026'"
    assert lookup_predicate(ObjectType.ACCOUNT, "O'Brien_Co 100%") == (
        "Name LIKE '%O\\'Brien\\_Co 100\\%%'"
    )


def test_related_queries():
    related = build_related_queries(ObjectType.CASE, CASE_RECORD)
    assert list(related) == ["cases"]
    assert related["cases"].render().endswith(
        "FROM Case WHERE AccountId = '001A' AND Id != '500A' ORDER BY CreatedDate DESC LIMIT 10"
    )

    related = build_related_queries(ObjectType.ACCOUNT, {"Id": "001A", "Name": "Acme"})
    assert list(related) == ["cases", "opportunities"]
    assert related["cases"].limit == 25
    assert "ClosedDate" in related["cases"].fields
    assert related["opportunities"].predicates == ["AccountId = '001A'"]

    assert build_related_queries(ObjectType.CASE, {"Id": "500A"}) == {}


def test_trend_queries():
    assert build_trend_query(TrendAnalysis.CASE_PATTERNS, TimeRange.THIS_MONTH).render() == (
        "SELECT Type, Priority, Status, COUNT(Id) CaseCount FROM Case "
        "WHERE CreatedDate = THIS_MONTH GROUP BY Type, Priority, Status "
        "ORDER BY COUNT(Id) DESC LIMIT 200"
    )
    assert build_trend_query(TrendAnalysis.ACCOUNT_RISKS, TimeRange.LAST_90_DAYS).render() == (
        "SELECT Account.Name, Account.Industry, COUNT(Id) CaseCount FROM Case "
        "WHERE CreatedDate = LAST_N_DAYS:90 GROUP BY Account.Name, Account.Industry "
        "HAVING COUNT(Id) >= 3 ORDER BY COUNT(Id) DESC LIMIT 200"
    )


def test_trend_prompt_omits_record_attributes():
    rows = [{"attributes": {"type": "AggregateResult"}, "Type": "Mechanical", "CaseCount": 4}]

    prompt = build_trend_prompt(TrendAnalysis.CASE_PATTERNS, rows)

    assert '"Type": "Mechanical"' in prompt
    assert "AggregateResult" not in prompt
    assert prompt.startswith("Analyze these case patterns")


class TestAccountHealth:
    """Tests for RecordInsights.account_health."""

    @pytest.mark.asyncio
    async def test_accounts_ranked(self, insights, fake_transport, crm_session):
        fake_transport.structured["COUNT(Id) CaseCount"] = [
            {"AccountId": "001A", "Name": "Acme", "CaseCount": 6},
            {"AccountId": "001B", "Account": {"Name": "Globex"}, "CaseCount": 2},
        ]

        report = await insights.account_health(crm_session, "this_week")

        assert report.time_range == TimeRange.THIS_WEEK
        assert "CreatedDate = THIS_WEEK" in fake_transport.structured_queries[0]
        assert [(a.account_name, a.case_count) for a in report.accounts] == [
            ("Acme", 6),
            ("Globex", 2),
        ]
        assert report.executed_queries == fake_transport.structured_queries

    @pytest.mark.asyncio
    async def test_failure_reported(self, insights, fake_transport, crm_session):
        fake_transport.structured["FROM Case"] = BackendError(
            "MALFORMED_QUERY", status_code=400, code=ErrorCode.MALFORMED_QUERY
        )

        report = await insights.account_health(crm_session)

        assert report.accounts == []
        assert report.per_query_errors[0].object_type == "Case"
        assert report.per_query_errors[0].error_code == ErrorCode.MALFORMED_QUERY.value

    @pytest.mark.asyncio
    async def test_missing_session(self, insights):
        with pytest.raises(NotConnectedError):
            await insights.account_health(None)


class TestRecordAnalysis:
    """Tests for RecordInsights.analyze_record."""

    @pytest.mark.asyncio
    async def test_case_with_account_history(
        self, insights, fake_transport, crm_session, summarizer
    ):
        fake_transport.structured["CaseNumber = '00001026'"] = [CASE_RECORD]
        fake_transport.structured["AccountId = '001A'"] = [
            {"Id": "500B", "CaseNumber": "00001001", "Subject": "Pump noise", "Status": "Closed"}
        ]

        result = await insights.analyze_record(crm_session, "case", " 00001026 ")

        assert result.object_type == ObjectType.CASE
        assert result.record == CASE_RECORD
        assert [r["Id"] for r in result.related["cases"]] == ["500B"]
        assert len(result.executed_queries) == 2
        assert fake_transport.structured_queries[0].endswith(
            "WHERE CaseNumber = '00001026' ORDER BY CreatedDate DESC LIMIT 1"
        )
        assert result.analysis == "Seal failures cluster at Acme."
        prompt = summarizer.complete.await_args.args[0]
        assert "- Subject: Pump seal leaking" in prompt
        assert "- Account.Name: Acme" in prompt
        assert "RELATED CASES (1 found):" in prompt
        assert "- 00001001: Pump noise (Closed)" in prompt
        assert "1. Root cause analysis" in prompt

    @pytest.mark.asyncio
    async def test_account_related_failure_reported(self, insights, fake_transport, crm_session):
        fake_transport.structured["FROM Account"] = [{"Id": "001A", "Name": "Acme"}]
        fake_transport.structured["FROM Opportunity"] = BackendError("HTTP 503")
        fake_transport.structured["FROM Case"] = [{"Id": "500A", "CaseNumber": "00001026"}]

        result = await insights.analyze_record(
            crm_session, ObjectType.ACCOUNT, "Acme", deep_analysis=False
        )

        assert result.related == {"cases": [{"Id": "500A", "CaseNumber": "00001026"}]}
        assert len(result.per_query_errors) == 1
        assert result.per_query_errors[0].object_type == "Opportunity"
        assert result.per_query_errors[0].error == "HTTP 503"
        assert result.analysis is None
        assert "Name LIKE '%Acme%'" in fake_transport.structured_queries[0]

    @pytest.mark.asyncio
    async def test_record_not_found(self, insights, crm_session):
        with pytest.raises(NotFoundError):
            await insights.analyze_record(crm_session, "Case", "00009999")

    @pytest.mark.asyncio
    async def test_lookup_failure_reported(self, insights, fake_transport, crm_session):
        fake_transport.structured["FROM Case"] = BackendError("HTTP 500")

        result = await insights.analyze_record(crm_session, "Case", "00001026")

        assert result.record is None
        assert result.per_query_errors[0].error == "HTTP 500"
        assert len(fake_transport.structured_queries) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "object_type,reference",
        [("Opportunity", "Big deal"), ("widget", "x"), ("Case", "   ")],
    )
    async def test_invalid_requests(
        self, insights, fake_transport, crm_session, object_type, reference
    ):
        with pytest.raises(ValidationError):
            await insights.analyze_record(crm_session, object_type, reference)
        assert fake_transport.structured_queries == []

    @pytest.mark.asyncio
    async def test_analysis_failure_falls_back(
        self, insights, fake_transport, crm_session, summarizer
    ):
        fake_transport.structured["FROM Case"] = [CASE_RECORD]
        summarizer.complete.side_effect = BackendError("HTTP 500")

        result = await insights.analyze_record(crm_session, "Case", "00001026")

        assert result.analysis == ANALYSIS_FALLBACK


class TestPatternTrends:
    """Tests for RecordInsights.pattern_trends."""

    @pytest.mark.asyncio
    async def test_defaults_to_current_month(self, insights, fake_transport, crm_session):
        fake_transport.structured["GROUP BY Type"] = [
            {"Type": "Mechanical", "Priority": "High", "Status": "New", "CaseCount": 4}
        ]

        report = await insights.pattern_trends(crm_session)

        assert report.analysis_type == TrendAnalysis.CASE_PATTERNS
        assert report.time_range == TimeRange.THIS_MONTH
        assert "CreatedDate = THIS_MONTH" in fake_transport.structured_queries[0]
        assert report.rows[0]["CaseCount"] == 4
        assert report.analysis == "Seal failures cluster at Acme."

    @pytest.mark.asyncio
    async def test_no_rows_skips_analysis(self, insights, crm_session, summarizer):
        report = await insights.pattern_trends(crm_session, "account_risks", "last_90_days")

        assert report.rows == []
        assert report.analysis is None
        summarizer.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_analysis_type(self, insights, crm_session):
        with pytest.raises(ValidationError):
            await insights.pattern_trends(crm_session, "churn_forecast")
