"""
Remediation Service
===================
For each vulnerable package: branch, bump, repair the build, and open a
tracking issue plus a labelled pull request.

Per package (sequential, one working copy):
    1. reset to a clean base, create ``security-fix/<package>-<version>``
    2. ``dotnet add package <pkg> --version <fixed>`` via the executor
    3. BuildRepairLoop.run(max_iterations)
    4. success: persist dependency-graph.json, commit, push, open issue
       (with the auto-generated marker) and PR (``Closes #issue``, label,
       reviewers)
    5. failure: record the reason, discard the branch

The working copy is always returned to the base branch. Errors for one
package never stop the others.
"""
import os
import re
import asyncio
import shlex
import logging
from typing import Dict, Iterable, List, Optional

from secfix.agents.build_repair_loop import BuildRepairLoop
from secfix.agents.safe_operation_executor import SafeOperationExecutor
from secfix.agents.vcs_adapter import VersionControlAdapter, VcsError
from secfix.core.config import Settings
from secfix.core.constants import AUTO_GENERATED_MARKER, BRANCH_PREFIX, COMMIT_PREFIX
from secfix.core.output_formatter import (
    format_issue_body, format_issue_title, format_pull_request_body, format_remediation_summary,
)
from secfix.executor.project_detector import find_primary_project
from secfix.models.plan import SafeOperation, SafeOperationKind
from secfix.models.remediation import RemediationItem, RemediationSummary
from secfix.models.vulnerability import VulnerabilityRecord
from secfix.services.dependency_scanner import build_dependency_graph, persist_dependency_graph
from secfix.services.github_client import GitHubAPIError, GitHubClient
from secfix.utils.versions import version_key

logger = logging.getLogger(__name__)

_UNSAFE_BRANCH_CHARS = re.compile(r"[^a-z0-9._-]+")


def branch_name_for(record: VulnerabilityRecord) -> str:
    raw = f"{record.package_name}-{record.fixed_version}".lower()
    return BRANCH_PREFIX + _UNSAFE_BRANCH_CHARS.sub("-", raw).strip("-")


def group_by_package(records: Iterable[VulnerabilityRecord]) -> List[VulnerabilityRecord]:
    """
    One record per package. When several versions of a package are
    vulnerable the highest fixed version wins and advisories are merged.
    """
    grouped: Dict[str, VulnerabilityRecord] = {}
    for record in records:
        key = record.package_name.lower()
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = record
            continue
        winner = record if version_key(record.fixed_version or "0") > version_key(existing.fixed_version or "0") else existing
        advisories = tuple(dict.fromkeys(existing.advisory_ids + record.advisory_ids))
        grouped[key] = winner.model_copy(update={"advisory_ids": advisories})
    return list(grouped.values())


class RemediationService:
    """Drives one remediation pass over a list of vulnerability records."""

    def __init__(
        self,
        repo_path: str,
        settings: Settings,
        vcs: VersionControlAdapter,
        executor: SafeOperationExecutor,
        repair_loop: BuildRepairLoop,
        github: Optional[GitHubClient] = None,
        repo_slug: Optional[str] = None,
    ) -> None:
        if not repo_path:
            raise ValueError("repo_path is required")
        if vcs is None or executor is None or repair_loop is None:
            raise ValueError("vcs, executor and repair_loop are required")
        self.repo_path = repo_path
        self.settings = settings
        self.vcs = vcs
        self.executor = executor
        self.repair_loop = repair_loop
        self.github = github
        self.repo_slug = repo_slug

    async def remediate(self, records: Iterable[VulnerabilityRecord]) -> RemediationSummary:
        summary = RemediationSummary()
        groups = group_by_package(records)
        if not groups:
            summary.message = "No vulnerabilities to remediate."
            logger.info(summary.message)
            return summary

        try:
            base_branch = self.vcs.current_branch()
        except VcsError as e:
            summary.message = f"Could not determine base branch: {e}"
            logger.error(summary.message)
            return summary

        logger.info("Remediating %d package(s) from base branch %s", len(groups), base_branch)
        for record in groups:
            summary.items.append(await self.remediate_one(record, base_branch))

        logger.info(format_remediation_summary(summary))
        return summary

    async def remediate_one(self, record: VulnerabilityRecord, base_branch: str) -> RemediationItem:
        item = RemediationItem(vulnerability=record)
        if not record.fixed_version:
            item.error = "No fixed version published"
            logger.warning("Skipping %s %s: %s", record.package_name, record.current_version, item.error)
            return item

        branch = branch_name_for(record)
        item.branch_name = branch
        branch_created = False
        try:
            self.vcs.reset_hard()
            self.vcs.checkout(base_branch)
            self.vcs.create_branch(branch)
            branch_created = True

            applied = await asyncio.to_thread(self.executor.execute, [self._bump_operation(record)])
            if not applied.startswith("✓"):
                item.error = f"Version bump failed: {applied}"
                return item

            outcome = await self.repair_loop.run(self.settings.max_repair_iterations)
            item.repair = outcome
            if not outcome.succeeded:
                item.error = outcome.root_cause_summary or "Build could not be repaired"
                return item

            persist_dependency_graph(self.repo_path, build_dependency_graph(self.repo_path))
            self.vcs.add_all()
            if not self.vcs.has_staged_changes():
                item.error = "Version bump produced no changes"
                return item
            self.vcs.commit(
                f"{COMMIT_PREFIX} bump {record.package_name} from {record.current_version} to {record.fixed_version}"
            )
            if not self.vcs.push(branch, set_upstream=True):
                item.error = "Push failed"
                return item

            await self._open_issue_and_pull_request(item, base_branch)
            item.success = True
            return item

        except (VcsError, GitHubAPIError, OSError) as e:
            logger.error("Remediation of %s failed: %s", record.package_name, e)
            item.error = str(e)
            return item

        finally:
            self._return_to_base(base_branch, branch if branch_created and not item.success else None)

    def _bump_operation(self, record: VulnerabilityRecord) -> SafeOperation:
        project = find_primary_project(self.repo_path)
        target = ""
        if project and os.path.dirname(project) != os.path.abspath(self.repo_path):
            target = shlex.quote(os.path.relpath(project, self.repo_path)) + " "
        return SafeOperation(
            kind=SafeOperationKind.PACKAGE_ADD,
            command=f"dotnet add {target}package {record.package_name} --version {record.fixed_version}",
            rationale=f"Bump {record.package_name} to {record.fixed_version}",
        )

    async def _open_issue_and_pull_request(self, item: RemediationItem, base_branch: str) -> None:
        if self.github is None or not self.repo_slug:
            logger.warning("No GitHub client/repository configured; branch %s pushed without a PR", item.branch_name)
            return

        record = item.vulnerability
        label = self.settings.security_fix_label
        issue = await self.github.create_issue(
            self.repo_slug,
            format_issue_title(record),
            format_issue_body(record, AUTO_GENERATED_MARKER),
            labels=[label],
        )
        item.issue_number = issue.get("number")

        pr = await self.github.create_pull_request(
            self.repo_slug,
            title=f"{COMMIT_PREFIX} bump {record.package_name} from {record.current_version} to {record.fixed_version}",
            head=item.branch_name,
            base=base_branch,
            body=format_pull_request_body(record, item.issue_number, item.repair),
        )
        item.pull_request_number = pr.get("number")
        item.pull_request_url = pr.get("html_url") or ""
        logger.info("Opened PR #%s for %s", item.pull_request_number, record.package_name)

        try:
            await self.github.add_labels(self.repo_slug, item.pull_request_number, [label])
        except GitHubAPIError as e:
            logger.warning("Could not label PR #%s: %s", item.pull_request_number, e)

        if self.settings.approved_reviewers:
            try:
                await self.github.request_reviewers(
                    self.repo_slug, item.pull_request_number, list(self.settings.approved_reviewers)
                )
            except GitHubAPIError as e:
                logger.warning("Could not request reviewers on PR #%s: %s", item.pull_request_number, e)

    def _return_to_base(self, base_branch: str, discard_branch: Optional[str]) -> None:
        try:
            self.vcs.reset_hard()
            self.vcs.checkout(base_branch)
            if discard_branch:
                self.vcs.delete_branch(discard_branch)
        except VcsError as e:
            logger.warning("Could not restore base branch %s: %s", base_branch, e)
