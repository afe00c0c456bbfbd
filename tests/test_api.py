"""
API Endpoint Tests
==================
POST /remediate, POST /merge-security-prs, GET /status, GET /health.
Orchestrator calls are mocked: no git, dotnet or GitHub.
"""
import pytest
from unittest.mock import AsyncMock, patch
from fastapi.testclient import TestClient

from secfix.agents.orchestrator import ScanResult
from secfix.models.pull_request import MergeAttemptResult, MergeOutcome, MergeSummary
from secfix.models.remediation import RemediationItem, RemediationSummary
from secfix.models.vulnerability import VulnerabilityRecord
from secfix.state.run_state import RUNS


@pytest.fixture
def client():
    RUNS.clear()
    from main import app
    return TestClient(app)


@pytest.fixture
def record():
    return VulnerabilityRecord(package_name="Newtonsoft.Json", current_version="12.0.1",
                               fixed_version="13.0.1", severity="high", advisory_ids=("GHSA-1",))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_remediate_returns_report_and_records_run(client, tmp_path, record):
    scan = ScanResult(packages=[("Newtonsoft.Json", "12.0.1")], vulnerabilities=[record])
    summary = RemediationSummary(items=[RemediationItem(vulnerability=record, success=True, pull_request_number=7)])

    with patch("secfix.api.remediation.scan_and_detect", new_callable=AsyncMock, return_value=scan), \
         patch("secfix.api.remediation.run_remediation", new_callable=AsyncMock, return_value=summary) as mock_run:
        resp = client.post("/remediate", json={"repo_path": str(tmp_path), "max_iterations": 2})

    assert resp.status_code == 200
    data = resp.json()
    assert data["remediation"]["succeeded"] == 1
    assert data["vulnerabilities"][0]["package_name"] == "Newtonsoft.Json"
    settings = mock_run.call_args.args[1]
    assert settings.max_repair_iterations == 2

    status = client.get("/status").json()
    assert status["runs"][0]["kind"] == "remediate"
    assert status["runs"][0]["status"] == "completed"
    assert status["running"] == 0


def test_remediate_dry_run_does_not_remediate(client, tmp_path, record):
    scan = ScanResult(packages=[], vulnerabilities=[record])
    with patch("secfix.api.remediation.scan_and_detect", new_callable=AsyncMock, return_value=scan), \
         patch("secfix.api.remediation.run_remediation", new_callable=AsyncMock) as mock_run:
        resp = client.post("/remediate", json={"repo_path": str(tmp_path), "dry_run": True})
    assert resp.status_code == 200
    assert "remediation" not in resp.json()
    mock_run.assert_not_called()


def test_remediate_missing_repo_is_400(client, tmp_path):
    resp = client.post("/remediate", json={"repo_path": str(tmp_path / "missing")})
    assert resp.status_code == 400


def test_remediate_rejects_bad_input(client):
    assert client.post("/remediate", json={"repo_path": "  "}).status_code == 422
    assert client.post("/remediate", json={"repo_path": "/tmp", "max_iterations": 0}).status_code == 422


def test_merge_without_token_is_400(client, tmp_path):
    with patch("secfix.api.remediation.run_merge_gate", new_callable=AsyncMock,
               side_effect=ValueError("GITHUB_TOKEN is required to merge pull requests")):
        resp = client.post("/merge-security-prs", json={"repo_path": str(tmp_path)})
    assert resp.status_code == 400
    assert "GITHUB_TOKEN" in resp.json()["detail"]
    assert client.get("/status").json()["runs"][0]["status"] == "failed"


def test_merge_returns_summary(client, tmp_path):
    summary = MergeSummary()
    summary.add(MergeAttemptResult(pr_number=7, title="t", outcome=MergeOutcome.MERGED, merge_commit_id="abc"))
    with patch("secfix.api.remediation.run_merge_gate", new_callable=AsyncMock, return_value=summary) as mock_run:
        resp = client.post("/merge-security-prs",
                           json={"repo_path": str(tmp_path), "approved_reviewers": ["alice"]})

    assert resp.status_code == 200
    assert resp.json()["merge"]["total_checked"] == 1
    assert resp.json()["merge"]["successful"][0]["merge_commit_id"] == "abc"
    assert mock_run.call_args.args[1].approved_reviewers == ["alice"]


def test_unexpected_error_is_500(client, tmp_path):
    with patch("secfix.api.remediation.scan_and_detect", new_callable=AsyncMock, side_effect=RuntimeError("boom")):
        resp = client.post("/remediate", json={"repo_path": str(tmp_path)})
    assert resp.status_code == 500
