"""
Orchestrator / Settings / Results Writer Tests
==============================================
Wiring only: every network and process boundary is mocked.
"""
import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from secfix.agents.orchestrator import run_merge_gate, run_remediation, scan_and_detect, validate_repo_path
from secfix.core.config import Settings
from secfix.executor.command_runner import CommandResult
from secfix.models.pull_request import MergeSummary
from secfix.models.remediation import RemediationSummary
from secfix.models.vulnerability import AdvisoryDetail
from secfix.services.results_writer import ResultsWriter
from secfix.services.vulnerability_db import build_vulnerability_records


def test_validate_repo_path(tmp_path):
    assert validate_repo_path(str(tmp_path)) == str(tmp_path)
    with pytest.raises(ValueError):
        validate_repo_path(str(tmp_path / "missing"))


def test_settings_overrides_ignore_none():
    settings = Settings(max_repair_iterations=3).with_overrides(max_repair_iterations=None, github_token="t")
    assert settings.max_repair_iterations == 3
    assert settings.github_token == "t"


def test_scan_without_dependencies_skips_osv(tmp_path):
    with patch("secfix.agents.orchestrator.VulnerabilityDatabase") as mock_db:
        result = asyncio.run(scan_and_detect(str(tmp_path), Settings()))
    assert result.packages == []
    assert result.vulnerabilities == []
    mock_db.assert_not_called()


def test_scan_builds_records(tmp_path):
    db = MagicMock()
    db.check_vulnerabilities = AsyncMock(return_value={
        "Newtonsoft.Json@12.0.1": [AdvisoryDetail(id="GHSA-1", fixed_in=["13.0.1"], score=7.5)],
    })
    db.close = AsyncMock()
    db.build_vulnerability_records.side_effect = build_vulnerability_records

    with patch("secfix.agents.orchestrator.scan_dependencies", return_value=[("Newtonsoft.Json", "12.0.1")]), \
         patch("secfix.agents.orchestrator.VulnerabilityDatabase", return_value=db):
        result = asyncio.run(scan_and_detect(str(tmp_path), Settings()))

    assert [r.fixed_version for r in result.vulnerabilities] == ["13.0.1"]
    db.close.assert_awaited_once()


def test_merge_gate_requires_token(tmp_path):
    with pytest.raises(ValueError):
        asyncio.run(run_merge_gate(str(tmp_path), Settings(github_token="")))


def test_merge_gate_closes_client(tmp_path):
    gate = MagicMock()
    gate.run_once = AsyncMock(return_value=MergeSummary())
    github = MagicMock()
    github.close = AsyncMock()
    with patch("secfix.agents.orchestrator.MergeGate", return_value=gate), \
         patch("secfix.agents.orchestrator.GitHubClient", return_value=github):
        summary = asyncio.run(run_merge_gate(str(tmp_path), Settings(github_token="tok"), host_runner=MagicMock()))
    assert summary.total_checked == 0
    github.close.assert_awaited_once()


def test_remediation_without_records_is_noop(tmp_path):
    runner = MagicMock()
    runner.run.return_value = CommandResult(exit_code=1)
    summary = asyncio.run(run_remediation(
        str(tmp_path), Settings(), records=[], host_runner=runner, build_runner=runner,
    ))
    assert isinstance(summary, RemediationSummary)
    assert summary.total == 0


def test_results_writer_roundtrip(tmp_path):
    report = ResultsWriter.build_report(str(tmp_path), vulnerabilities=[], merge=MergeSummary())
    path = tmp_path / "out.json"
    assert ResultsWriter.write(report, str(path)) is True
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["vulnerabilities"] == []
    assert data["merge"]["total_checked"] == 0


def test_results_writer_reports_failure(tmp_path):
    assert ResultsWriter.write({}, str(tmp_path / "missing" / "out.json")) is False
