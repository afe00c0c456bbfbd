"""
Merge Gate
==========
One pass over the open pull requests of a repository, merging approved
security-fix PRs whose build still passes.

Per-PR state machine:

    Discovered ─▶ Skipped (ineligible)
        │
        ▼
    Eligible ─▶ BuildVerifying ─▶ Skipped (build failed, comment posted)
        │
        ▼
    MergeabilityCheck ─▶ Failed (conflicts outside dependency-graph.json)
        │                     │
        │                     ▼
        │               AutoResolving ─▶ Failed (local merge could not finish)
        │                     │
        ▼                     ▼
    Merging ─▶ Failed     Merged ─▶ IssueClosing (best-effort) ─▶ Done
        │
        ▼
    Merged ─▶ IssueClosing (best-effort) ─▶ Done

Eligibility (short-circuits in this order):
    1. carries the security-fix label
    2. carries the approved label, or has an APPROVED review from an
       allow-listed reviewer (any reviewer when the list is empty)
    3. is not a draft

PRs are processed sequentially: every step mutates the one local working
copy. Nothing is cached between passes. ``run_once()`` never raises; each
PR ends up in exactly one of successful / failed / skipped.
"""
import re
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from secfix.agents.vcs_adapter import VersionControlAdapter, VcsError
from secfix.core.config import Settings
from secfix.core.constants import AUTO_GENERATED_MARKER, COMMIT_PREFIX, DEPENDENCY_GRAPH_FILE
from secfix.core.output_formatter import (
    format_build_failed_comment,
    format_conflict_report,
    format_issue_closed_comment,
    format_merge_comment,
    format_merge_summary,
)
from secfix.executor.build_verifier import BuildVerifier
from secfix.models.pull_request import (
    MergeableState, MergeAttemptResult, MergeOutcome, MergeSummary, PullRequestCandidate,
)
from secfix.services.github_client import GitHubAPIError, GitHubClient, resolve_repo_slug

logger = logging.getLogger(__name__)

ISSUE_REFERENCE_RE = re.compile(r"closes\s+#(\d+)", re.IGNORECASE)


def _malformed_result(data: Any, error: Exception) -> MergeAttemptResult:
    number = data.get("number") if isinstance(data, dict) else None
    return MergeAttemptResult(
        pr_number=number if isinstance(number, int) else 0,
        title=str(data.get("title") or "") if isinstance(data, dict) else "",
        outcome=MergeOutcome.FAILED,
        reason=f"Malformed pull request data: {error}",
    )


class MergeGate:
    """Review-gated merge of security-fix PRs for one repository."""

    def __init__(
        self,
        settings: Settings,
        github: GitHubClient,
        vcs: VersionControlAdapter,
        verifier: BuildVerifier,
        repo_slug: Optional[str] = None,
    ) -> None:
        if settings is None or github is None or vcs is None or verifier is None:
            raise ValueError("settings, github, vcs and verifier are required")
        self.settings = settings
        self.github = github
        self.vcs = vcs
        self.verifier = verifier
        self.repo_slug = repo_slug

    # -------------------------------------------------------------------
    # Pass
    # -------------------------------------------------------------------
    async def run_once(self) -> MergeSummary:
        summary = MergeSummary()

        slug = self.repo_slug or resolve_repo_slug(
            self.settings.github_repository_url, self.vcs.remote_url()
        )
        if not slug:
            summary.error = "Could not determine GitHub repository (set GITHUB_REPOSITORY_URL or an origin remote)"
            logger.error(summary.error)
            return summary
        self.repo_slug = slug

        logger.info("Scanning %s for approved security fix PRs...", slug)
        try:
            prs = await self.github.list_open_pull_requests(slug)
        except GitHubAPIError as e:
            summary.error = f"Could not list pull requests: {e}"
            logger.error(summary.error)
            return summary

        logger.info("Found %d open PR(s) to check", len(prs))
        starting_branch = self._current_branch()

        for data in prs:
            try:
                pr = PullRequestCandidate.from_api(data)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.error("Malformed pull request entry %r: %s", data, e)
                summary.add(_malformed_result(data, e))
                continue
            logger.info("PR #%d: %s - Labels: [%s]", pr.number, pr.title, ", ".join(sorted(pr.labels)))
            try:
                result = await self.process(pr)
            except Exception as e:
                logger.exception("Error processing PR #%d", pr.number)
                result = MergeAttemptResult(
                    pr_number=pr.number, title=pr.title,
                    outcome=MergeOutcome.FAILED, reason=f"Unexpected error: {e}",
                )
            summary.add(result)

        self._restore_branch(starting_branch)
        logger.info(format_merge_summary(summary, slug))
        return summary

    async def process(self, pr: PullRequestCandidate) -> MergeAttemptResult:
        """Take one PR through the state machine."""
        skip_reason = await self.check_eligibility(pr)
        if skip_reason:
            logger.info("  ⏭️  Skipping PR #%d: %s", pr.number, skip_reason)
            return self._result(pr, MergeOutcome.SKIPPED, skip_reason)

        logger.info("Processing approved security fix PR #%d...", pr.number)

        # Pre-merge build on the PR head
        try:
            await asyncio.to_thread(self._checkout_pr_head, pr)
        except VcsError as e:
            return self._result(pr, MergeOutcome.FAILED, f"Could not check out PR head: {e}")

        check = await asyncio.to_thread(self.verifier.verify)
        if not check.success:
            await self._comment(pr.number, format_build_failed_comment(check.log_excerpt))
            return self._result(pr, MergeOutcome.SKIPPED, "Pre-merge build verification failed")

        # Mergeability, re-read now the build has passed
        try:
            details = await self.github.get_pull_request(self.repo_slug, pr.number)
            pr = PullRequestCandidate.from_api(details)
        except GitHubAPIError as e:
            logger.warning("Could not refresh PR #%d, using listing data: %s", pr.number, e)
            details = {}

        if pr.mergeable_state == MergeableState.CONFLICTING:
            return await self._handle_conflict(pr, details)

        return await self._merge_via_api(pr)

    # -------------------------------------------------------------------
    # Eligibility
    # -------------------------------------------------------------------
    async def check_eligibility(self, pr: PullRequestCandidate) -> Optional[str]:
        """None when eligible, otherwise the skip reason."""
        if not pr.has_label(self.settings.security_fix_label):
            return f"Missing '{self.settings.security_fix_label}' label"
        if not pr.has_label(self.settings.approved_label) and not await self._has_allowed_approval(pr.number):
            return f"Missing '{self.settings.approved_label}' label or approving review"
        if pr.draft:
            return "Pull request is a draft"
        return None

    async def _has_allowed_approval(self, number: int) -> bool:
        try:
            reviews = await self.github.list_reviews(self.repo_slug, number)
        except GitHubAPIError as e:
            logger.warning("Could not read reviews for PR #%d: %s", number, e)
            return False

        # A reviewer's latest review decides their state
        latest: Dict[str, str] = {}
        for review in reviews:
            login = ((review.get("user") or {}).get("login") or "").lower()
            state = (review.get("state") or "").upper()
            if login and state != "COMMENTED":
                latest[login] = state

        allowed = {r.lower() for r in self.settings.approved_reviewers}
        return any(
            state == "APPROVED" and (not allowed or login in allowed)
            for login, state in latest.items()
        )

    # -------------------------------------------------------------------
    # Conflicts
    # -------------------------------------------------------------------
    async def conflicting_files(self, pr: PullRequestCandidate) -> List[str]:
        """
        Files changed both by the PR and on the base branch since the merge
        base. Empty when the platform calls fail.
        """
        try:
            pr_files = await self.github.list_pull_request_files(self.repo_slug, pr.number)
            comparison = await self.github.compare(self.repo_slug, pr.head_sha or pr.head_ref, pr.base_ref)
        except GitHubAPIError as e:
            logger.warning("Could not determine conflicting files for PR #%d: %s", pr.number, e)
            return []
        base_files = {f.get("filename") for f in comparison.get("files") or []}
        return sorted(f for f in pr_files if f in base_files)

    async def _handle_conflict(self, pr: PullRequestCandidate, details: Dict[str, Any]) -> MergeAttemptResult:
        files = await self.conflicting_files(pr)
        logger.warning("PR #%d is not mergeable; conflicting files: %s", pr.number, files or "(unknown)")

        if files and files != [DEPENDENCY_GRAPH_FILE]:
            checks = await self._status_checks(pr.head_sha or pr.head_ref)
            report = format_conflict_report(pr.number, self._diagnostics(pr, details), files, checks)
            logger.error(report)
            await self._comment(pr.number, report)
            return self._result(pr, MergeOutcome.FAILED, f"Merge conflicts require manual resolution: {', '.join(files)}")

        ok, sha, reason = await asyncio.to_thread(self.auto_resolve, pr)
        if not ok:
            return self._result(pr, MergeOutcome.FAILED, reason)

        result = self._result(pr, MergeOutcome.MERGED, f"Auto-resolved {DEPENDENCY_GRAPH_FILE} conflict", sha)
        await self._comment(pr.number, format_merge_comment(
            pr.number, pr.head_ref, sha or "", method=f"Merge (auto-resolved {DEPENDENCY_GRAPH_FILE})",
        ))
        result.warnings.extend(await self.close_linked_issue(pr))
        return result

    def auto_resolve(self, pr: PullRequestCandidate) -> Tuple[bool, Optional[str], str]:
        """
        Merge the PR head into its base locally, taking the PR's version of
        dependency-graph.json. Returns (ok, merge commit sha, failure reason).
        """
        try:
            # Start from a clean tree whatever the previous PR left behind
            self.vcs.abort_merge()
            self.vcs.reset_hard()
            self.vcs.clean()

            self.vcs.fetch()
            self.vcs.checkout_tracking(pr.base_ref)
            self.vcs.pull("origin", pr.base_ref)

            message = f"{COMMIT_PREFIX} merge PR #{pr.number} ({pr.title})"
            if not self.vcs.merge(f"origin/{pr.head_ref}", message=message):
                conflicts = self.vcs.conflicted_files()
                if conflicts != [DEPENDENCY_GRAPH_FILE]:
                    self.vcs.abort_merge()
                    return False, None, f"Local merge conflicts outside {DEPENDENCY_GRAPH_FILE}: {', '.join(conflicts) or '(none reported)'}"
                self.vcs.checkout_theirs(DEPENDENCY_GRAPH_FILE)
                self.vcs.add_all()
                self.vcs.commit(f"{message}, auto-resolved {DEPENDENCY_GRAPH_FILE} conflict")

            if not self.vcs.push(pr.base_ref):
                self.vcs.reset_hard(f"origin/{pr.base_ref}")
                return False, None, f"Push of auto-resolved merge to {pr.base_ref} failed"

            sha = self.vcs.head_sha()
            logger.info("✅ PR #%d merged locally with auto-resolved conflict (%s)", pr.number, sha)
            return True, sha, ""
        except VcsError as e:
            logger.error("Auto-resolution of PR #%d failed: %s", pr.number, e)
            self.vcs.abort_merge()
            return False, None, f"Auto-resolution failed: {e}"

    def _diagnostics(self, pr: PullRequestCandidate, details: Dict[str, Any]) -> Dict[str, object]:
        return {
            "state": pr.state,
            "draft": pr.draft,
            "base_ref": pr.base_ref,
            "head_ref": pr.head_ref,
            "mergeable_state": details.get("mergeable_state", pr.mergeable_state.value),
            "commits": details.get("commits"),
            "additions": details.get("additions"),
            "deletions": details.get("deletions"),
            "changed_files": details.get("changed_files"),
        }

    async def _status_checks(self, ref: str) -> List[Dict[str, str]]:
        checks: List[Dict[str, str]] = []
        try:
            combined = await self.github.get_combined_status(self.repo_slug, ref)
            for status in combined.get("statuses") or []:
                checks.append({"name": status.get("context", "?"), "state": status.get("state", "?")})
            for run in await self.github.list_check_runs(self.repo_slug, ref):
                checks.append({"name": run.get("name", "?"), "state": run.get("conclusion") or run.get("status", "?")})
        except GitHubAPIError as e:
            logger.warning("Could not read status checks for %s: %s", ref, e)
        return checks

    # -------------------------------------------------------------------
    # Merge & issue closure
    # -------------------------------------------------------------------
    async def _merge_via_api(self, pr: PullRequestCandidate) -> MergeAttemptResult:
        title = pr.title if pr.title.startswith(COMMIT_PREFIX) else f"{COMMIT_PREFIX} {pr.title}"
        try:
            response = await self.github.merge_pull_request(
                self.repo_slug, pr.number, f"{title} (#{pr.number})", "squash", sha=pr.head_sha or None,
            )
        except GitHubAPIError as e:
            logger.error("❌ PR #%d merge failed: %s", pr.number, e)
            return self._result(pr, MergeOutcome.FAILED, f"Merge failed: {e}")

        if not response.get("merged"):
            reason = response.get("message") or "platform reported the PR as not merged"
            logger.error("❌ PR #%d merge failed: %s", pr.number, reason)
            return self._result(pr, MergeOutcome.FAILED, f"Merge failed: {reason}")

        sha = response.get("sha")
        logger.info("✅ PR #%d merged successfully (%s)", pr.number, sha)
        result = self._result(pr, MergeOutcome.MERGED, None, sha)
        await self._comment(pr.number, format_merge_comment(pr.number, pr.head_ref, sha or ""))
        result.warnings.extend(await self.close_linked_issue(pr))
        return result

    async def close_linked_issue(self, pr: PullRequestCandidate) -> List[str]:
        """
        Close the issue named by ``Closes #N`` in the PR body, but only if its
        body carries the auto-generated marker. Returns warnings; never raises.
        """
        match = ISSUE_REFERENCE_RE.search(pr.body_text or "")
        if not match:
            return []
        number = int(match.group(1))

        try:
            issue = await self.github.get_issue(self.repo_slug, number)
        except GitHubAPIError as e:
            warning = f"Could not read issue #{number}: {e}"
            logger.warning("  ⚠️ %s", warning)
            return [warning]

        if AUTO_GENERATED_MARKER not in (issue.get("body") or ""):
            warning = f"Issue #{number} was not created by this tool; left open"
            logger.warning("  ⚠️ %s", warning)
            return [warning]

        if issue.get("state") == "closed":
            return []

        try:
            await self.github.close_issue(self.repo_slug, number)
        except GitHubAPIError as e:
            warning = f"Could not close issue #{number}: {e}"
            logger.warning("  ⚠️ %s", warning)
            return [warning]

        logger.info("  ✓ Closed associated issue #%d", number)
        if not await self._comment(number, format_issue_closed_comment(pr.number)):
            return [f"Closed issue #{number} but could not add comment"]
        return []

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _result(
        pr: PullRequestCandidate,
        outcome: MergeOutcome,
        reason: Optional[str],
        sha: Optional[str] = None,
    ) -> MergeAttemptResult:
        return MergeAttemptResult(pr_number=pr.number, title=pr.title, outcome=outcome,
                                  reason=reason, merge_commit_id=sha)

    async def _comment(self, number: int, body: str) -> bool:
        """Best-effort comment on a PR or issue."""
        try:
            await self.github.create_comment(self.repo_slug, number, body)
            return True
        except GitHubAPIError as e:
            logger.warning("⚠️  Unable to comment on #%d: %s", number, e)
            return False

    def _checkout_pr_head(self, pr: PullRequestCandidate) -> None:
        self.vcs.abort_merge()
        self.vcs.reset_hard()
        self.vcs.clean()
        self.vcs.fetch()
        self.vcs.checkout_tracking(pr.head_ref)
        self.vcs.reset_hard(f"origin/{pr.head_ref}")

    def _current_branch(self) -> Optional[str]:
        try:
            return self.vcs.current_branch()
        except VcsError as e:
            logger.warning("Could not read current branch: %s", e)
            return None

    def _restore_branch(self, branch: Optional[str]) -> None:
        if not branch or branch == "HEAD":
            return
        try:
            self.vcs.abort_merge()
            self.vcs.reset_hard()
            self.vcs.checkout(branch)
        except VcsError as e:
            logger.warning("Could not return to %s: %s", branch, e)
