"""
Vulnerability Database Tests
============================
OSV responses are mocked at the httpx layer.
"""
import asyncio
import httpx
from unittest.mock import AsyncMock, patch

from secfix.models.vulnerability import AdvisoryDetail
from secfix.services.vulnerability_db import (
    VulnerabilityDatabase,
    build_vulnerability_records,
    parse_advisory,
    severity_from_score,
)
from secfix.utils.versions import is_newer, smallest_newer

OSV_VULN = {
    "id": "GHSA-5crp-9r3c-p9vr",
    "summary": "Improper Handling of Exceptional Conditions in Newtonsoft.Json",
    "published": "2022-06-22T15:08:47Z",
    "database_specific": {"severity": "HIGH"},
    "affected": [{
        "package": {"ecosystem": "NuGet", "name": "Newtonsoft.Json"},
        "ranges": [{"type": "ECOSYSTEM", "events": [{"introduced": "0"}, {"fixed": "13.0.1"}]}],
    }],
    "references": [{"type": "WEB", "url": "https://github.com/advisories/GHSA-5crp-9r3c-p9vr"}],
}


def _resp(status, json=None, headers=None):
    request = httpx.Request("POST", "https://api.osv.dev/v1/querybatch")
    return httpx.Response(status, json=json, headers=headers, request=request)


def test_parse_advisory_flattens_ranges():
    detail = parse_advisory(OSV_VULN)
    assert detail.id == "GHSA-5crp-9r3c-p9vr"
    assert detail.fixed_in == ["13.0.1"]
    assert "introduced:0" in detail.affected_versions
    assert detail.references == ["https://github.com/advisories/GHSA-5crp-9r3c-p9vr"]
    assert detail.score is None


def test_severity_from_score():
    assert severity_from_score(9.8) == "critical"
    assert severity_from_score(7.5) == "high"
    assert severity_from_score(5.0) == "medium"
    assert severity_from_score(2.1) == "low"
    assert severity_from_score(None) == "unknown"


def test_check_vulnerabilities_fetches_details_and_builds_records():
    async def run_test():
        db = VulnerabilityDatabase()
        batch = {"results": [{"vulns": [{"id": OSV_VULN["id"]}]}, {}]}
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post, \
             patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_post.return_value = _resp(200, json=batch)
            mock_get.return_value = _resp(200, json=OSV_VULN)
            results = await db.check_vulnerabilities([
                ("Newtonsoft.Json", "12.0.1"),
                ("Serilog", "3.1.1"),
                ("Newtonsoft.Json", "12.0.1"),
            ])
        await db.close()
        return db, results, mock_post

    db, results, mock_post = asyncio.run(run_test())

    queries = mock_post.call_args.kwargs["json"]["queries"]
    assert len(queries) == 2
    assert queries[0] == {"package": {"name": "Newtonsoft.Json", "ecosystem": "NuGet"}, "version": "12.0.1"}
    assert results["Serilog@3.1.1"] == []

    records = db.build_vulnerability_records(results)
    assert len(records) == 1
    record = records[0]
    assert record.package_name == "Newtonsoft.Json"
    assert record.fixed_version == "13.0.1"
    assert record.severity == "high"
    assert record.advisory_ids == ("GHSA-5crp-9r3c-p9vr",)


def test_rate_limit_is_retried():
    async def run_test():
        db = VulnerabilityDatabase()
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post, \
             patch("secfix.services.vulnerability_db.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            mock_post.side_effect = [
                _resp(429, json={}, headers={"Retry-After": "2"}),
                _resp(200, json={"results": [{}]}),
            ]
            results = await db.check_vulnerabilities([("Serilog", "3.1.1")])
        await db.close()
        return results, mock_sleep

    results, mock_sleep = asyncio.run(run_test())
    assert results == {"Serilog@3.1.1": []}
    mock_sleep.assert_awaited_once_with(2.0)


def test_failed_chunk_marks_every_package_with_error():
    async def run_test():
        db = VulnerabilityDatabase()
        with patch("httpx.AsyncClient.post", new_callable=AsyncMock) as mock_post, \
             patch("secfix.services.vulnerability_db.asyncio.sleep", new_callable=AsyncMock):
            mock_post.side_effect = httpx.ConnectError("offline")
            results = await db.check_vulnerabilities([("A", "1.0.0"), ("B", "2.0.0")])
        await db.close()
        return results, mock_post

    results, mock_post = asyncio.run(run_test())
    assert mock_post.call_count == 3
    assert results["A@1.0.0"] == {"error": "OSV query failed or timed out"}
    assert results["B@2.0.0"] == {"error": "OSV query failed or timed out"}


def test_records_pick_fix_covering_every_advisory_and_worst_severity():
    results = {
        "Foo@1.5.0": [
            AdvisoryDetail(id="A", fixed_in=["1.4.0", "2.0.0"], score=5.0),
            AdvisoryDetail(id="B", fixed_in=["1.6.2"], score=9.1),
        ],
        "Bar@1.0.0": [AdvisoryDetail(id="C")],
        "Baz@1.0.0": {"error": "boom"},
    }
    records = build_vulnerability_records(results)
    by_name = {r.package_name: r for r in records}
    assert set(by_name) == {"Foo", "Bar"}
    # A is only fixed from 2.0.0 (1.4.0 is older than 1.5.0), B from 1.6.2
    assert by_name["Foo"].fixed_version == "2.0.0"
    assert by_name["Foo"].severity == "critical"
    assert by_name["Bar"].fixed_version == ""
    assert by_name["Bar"].severity == "unknown"


def test_fixed_version_is_highest_of_per_advisory_fixes():
    results = {
        "Foo@1.0.0": [
            AdvisoryDetail(id="GHSA-a", fixed_in=["1.2.0"]),
            AdvisoryDetail(id="GHSA-b", fixed_in=["1.5.0"]),
            AdvisoryDetail(id="GHSA-c"),
        ],
    }
    (record,) = build_vulnerability_records(results)
    assert record.fixed_version == "1.5.0"
    assert record.advisory_ids == ("GHSA-a", "GHSA-b", "GHSA-c")


def test_version_ordering():
    assert is_newer("13.0.1", "12.0.3")
    assert is_newer("1.10.0", "1.9.9")
    assert is_newer("2.0.0", "2.0.0-beta.1")
    assert not is_newer("1.0", "1.0.0")
    assert smallest_newer(["1.0.0", "3.0.0", "2.1.0"], "2.0.0") == "2.1.0"
    assert smallest_newer(["1.0.0"], "2.0.0") is None
