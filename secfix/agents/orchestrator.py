"""
Orchestrator
============
Wires the components for one repository from a Settings object and runs
the three top-level workflows:

    scan_and_detect   dependencies → OSV → VulnerabilityRecords
    run_remediation   scan (optional) → RemediationService
    run_merge_gate    one MergeGate pass

CLI and HTTP entry points call these; nothing below them reads the
environment. Network clients are always closed before returning.
"""
import os
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from secfix.agents.build_repair_loop import BuildRepairLoop
from secfix.agents.code_fixes import CodeLevelFixer
from secfix.agents.merge_gate import MergeGate
from secfix.agents.remediation_service import RemediationService
from secfix.agents.resolution_planner import ResolutionPlanner
from secfix.agents.safe_operation_executor import SafeOperationExecutor
from secfix.agents.vcs_adapter import VersionControlAdapter
from secfix.core.config import Settings
from secfix.core.output_formatter import format_vulnerability_table
from secfix.executor.build_verifier import BuildVerifier
from secfix.executor.command_runner import CommandRunner, SubprocessCommandRunner, runner_for
from secfix.llm.client import LLMClient
from secfix.models.pull_request import MergeSummary
from secfix.models.remediation import RemediationSummary
from secfix.models.vulnerability import VulnerabilityRecord
from secfix.services.dependency_scanner import scan_dependencies
from secfix.services.github_client import GitHubClient, resolve_repo_slug
from secfix.services.vulnerability_db import VulnerabilityDatabase

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    packages: List[Tuple[str, str]]
    vulnerabilities: List[VulnerabilityRecord]


def validate_repo_path(repo_path: str) -> str:
    if not repo_path or not os.path.isdir(repo_path):
        raise ValueError(f"Repository path does not exist: {repo_path}")
    return os.path.abspath(repo_path)


async def scan_and_detect(repo_path: str, settings: Settings) -> ScanResult:
    repo_path = validate_repo_path(repo_path)
    packages = scan_dependencies(repo_path)
    if not packages:
        logger.warning("No dependencies found in %s", repo_path)
        return ScanResult(packages=[], vulnerabilities=[])

    db = VulnerabilityDatabase(timeout_seconds=settings.osv_api_timeout)
    try:
        results = await db.check_vulnerabilities(packages)
    finally:
        await db.close()

    records = db.build_vulnerability_records(results)
    logger.info(format_vulnerability_table(records))
    return ScanResult(packages=packages, vulnerabilities=records)


async def run_remediation(
    repo_path: str,
    settings: Settings,
    records: Optional[List[VulnerabilityRecord]] = None,
    host_runner: Optional[CommandRunner] = None,
    build_runner: Optional[CommandRunner] = None,
) -> RemediationSummary:
    """Remediate ``records`` (scanning first when None)."""
    repo_path = validate_repo_path(repo_path)
    if records is None:
        records = (await scan_and_detect(repo_path, settings)).vulnerabilities

    host_runner = host_runner or SubprocessCommandRunner()
    build_runner = build_runner or runner_for(settings.build_sandbox_image)

    vcs = VersionControlAdapter(repo_path, host_runner)
    executor = SafeOperationExecutor(repo_path, build_runner, settings.build_timeout)
    llm = LLMClient(settings)
    loop = BuildRepairLoop(
        verifier=BuildVerifier(repo_path, build_runner, settings.build_timeout),
        planner=ResolutionPlanner(repo_path, llm),
        executor=executor,
        code_fixer=CodeLevelFixer(executor),
    )
    github = GitHubClient(settings.github_token, settings.github_api_timeout) if settings.github_token else None
    slug = resolve_repo_slug(settings.github_repository_url, vcs.remote_url())

    service = RemediationService(repo_path, settings, vcs, executor, loop, github=github, repo_slug=slug)
    try:
        return await service.remediate(records)
    finally:
        await llm.close()
        if github is not None:
            await github.close()


async def run_merge_gate(
    repo_path: str,
    settings: Settings,
    host_runner: Optional[CommandRunner] = None,
    build_runner: Optional[CommandRunner] = None,
) -> MergeSummary:
    repo_path = validate_repo_path(repo_path)
    if not settings.github_token:
        raise ValueError("GITHUB_TOKEN is required to merge pull requests")

    host_runner = host_runner or SubprocessCommandRunner()
    build_runner = build_runner or runner_for(settings.build_sandbox_image)

    github = GitHubClient(settings.github_token, settings.github_api_timeout)
    gate = MergeGate(
        settings=settings,
        github=github,
        vcs=VersionControlAdapter(repo_path, host_runner),
        verifier=BuildVerifier(repo_path, build_runner, settings.build_timeout),
    )
    try:
        return await gate.run_once()
    finally:
        await github.close()
