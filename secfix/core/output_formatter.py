"""
Output Formatter
================
THE SINGLE SOURCE OF TRUTH for operator-facing reports and the comments
posted back to pull requests and issues.

STRICT DETERMINISM CONTRACT:
  - This module NEVER calls an LLM.
  - This module NEVER reads environment variables.
  - This module NEVER performs I/O; callers log, print or post the strings.
  - Given the same inputs, it ALWAYS returns the exact same output string.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from secfix.models.plan import BreakingChange
from secfix.models.pull_request import MergeAttemptResult, MergeSummary
from secfix.models.remediation import RemediationSummary, RepairOutcome
from secfix.models.vulnerability import VulnerabilityRecord

RULE_WIDE = "=" * 80
RULE_NARROW = "=" * 60
RULE_THIN = "-" * 80


# ---------------------------------------------------------------------------
# Build repair reports
# ---------------------------------------------------------------------------
def format_breaking_changes_report(changes: Sequence[BreakingChange], iteration: int) -> str:
    """Breaking changes found in one iteration. Diagnostic only, never a retry signal."""
    lines = [f"⚠️  [Iteration {iteration}] Breaking Changes Detected:", ""]
    for change in changes:
        lines += [
            f"📍 Location: {change.location}",
            f"   Severity: {change.severity}",
            "",
            "   Affected Code:",
            f"   {change.affected_code}",
            "",
            "   Old API:",
            f"   {change.old_signature}",
            "",
            "   New API:",
            f"   {change.new_signature}",
            "",
            "   Fix Guidance:",
            f"   {change.guidance}",
            "",
            RULE_THIN,
            "",
        ]
    return "\n".join(lines)


def format_failure_summary(outcome: RepairOutcome) -> str:
    """Terminal failure report: root cause, attempts, breaking changes, backups left for rollback."""
    lines = [
        RULE_WIDE,
        "❌ BUILD VALIDATION FAILED - BREAKING CHANGES REQUIRE MANUAL INTERVENTION",
        RULE_WIDE,
        "",
        f"Root Cause: {outcome.root_cause_summary or 'unknown'}",
        "",
        "Iterations Attempted:",
    ]
    for attempt in outcome.attempts:
        status = "✓" if attempt.succeeded else "✗"
        lines.append(f"  {status} Iteration {attempt.attempt_number}: {attempt.strategy}")
        if attempt.applied_change_description:
            lines.append(f"     Changes: {attempt.applied_change_description}")

    if outcome.breaking_changes:
        lines += ["", "Breaking Changes Summary:"]
        lines += [f"  • {c.location} ({c.severity})" for c in outcome.breaking_changes]
        lines += ["", "Required Manual Fixes:"]
        for c in outcome.breaking_changes:
            lines += ["", f"  File: {c.location}", f"  {c.guidance}"]

    if outcome.pending_backups:
        lines += ["", "Backup Files Created (for manual rollback):"]
        lines += [f"  • {b}" for b in outcome.pending_backups]

    lines += ["", RULE_WIDE]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Remediation: issue / PR bodies
# ---------------------------------------------------------------------------
def format_issue_title(record: VulnerabilityRecord) -> str:
    return f"Security vulnerability in {record.package_name} {record.current_version}"


def format_issue_body(record: VulnerabilityRecord, marker: str) -> str:
    advisories = ", ".join(record.advisory_ids) or "n/a"
    return "\n".join([
        marker,
        f"## Vulnerable dependency: `{record.package_name}`",
        "",
        f"- **Current version:** {record.current_version}",
        f"- **Fixed version:** {record.fixed_version}",
        f"- **Severity:** {record.severity}",
        f"- **Advisories:** {advisories}",
        "",
        "This issue was opened automatically and will be closed when the fix PR is merged.",
    ])


def format_pull_request_body(record: VulnerabilityRecord, issue_number: Optional[int],
                             outcome: Optional[RepairOutcome]) -> str:
    lines = []
    if issue_number is not None:
        lines += [f"Closes #{issue_number}", ""]
    lines += [
        f"Bumps `{record.package_name}` from {record.current_version} to {record.fixed_version}.",
        "",
        f"- **Severity:** {record.severity}",
        f"- **Advisories:** {', '.join(record.advisory_ids) or 'n/a'}",
    ]
    if outcome is not None and outcome.attempts:
        lines += ["", "### Build validation"]
        for a in outcome.attempts:
            status = "✓" if a.succeeded else "✗"
            change = f": {a.applied_change_description}" if a.applied_change_description else ""
            lines.append(f"- {status} Iteration {a.attempt_number} ({a.strategy}){change}")
    return "\n".join(lines)


def format_remediation_summary(summary: RemediationSummary) -> str:
    lines = [RULE_NARROW, "=== Remediation Summary ===", RULE_NARROW]
    lines.append(f"Vulnerabilities processed: {summary.total}")
    lines.append(f"✅ Fixed: {len(summary.succeeded)}")
    for item in summary.succeeded:
        v = item.vulnerability
        pr = f" → PR #{item.pull_request_number}" if item.pull_request_number else ""
        lines.append(f"   {v.package_name} {v.current_version} → {v.fixed_version}{pr}")
    lines.append(f"❌ Failed: {len(summary.failed)}")
    for item in summary.failed:
        v = item.vulnerability
        lines.append(f"   {v.package_name} {v.current_version}: {item.error or 'unknown error'}")
    if summary.message:
        lines.append(summary.message)
    lines.append(RULE_NARROW)
    return "\n".join(lines)


def format_vulnerability_table(records: Iterable[VulnerabilityRecord]) -> str:
    records = list(records)
    if not records:
        return "✅ No known vulnerabilities found."
    lines = [f"⚠️  {len(records)} vulnerable package(s):"]
    for r in records:
        lines.append(
            f"  • {r.package_name} {r.current_version} [{r.severity}] "
            f"→ fixed in {r.fixed_version or 'n/a'} ({', '.join(r.advisory_ids)})"
        )
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Merge gate comments and report
# ---------------------------------------------------------------------------
def format_merge_comment(pr_number: int, head_ref: str, merge_commit_id: str, method: str = "Squash") -> str:
    return "\n".join([
        "## ✅ Automated Security Fix Merged",
        "",
        "**Merged by:** secfix",
        f"**Commit:** {merge_commit_id}",
        "",
        "### Build Status",
        "✅ Build verification passed",
        "",
        "### Details",
        f"- **PR:** #{pr_number}",
        f"- **Branch:** {head_ref}",
        f"- **Merge Method:** {method}",
    ])


def format_issue_closed_comment(pr_number: int) -> str:
    return f"✅ Fixed by PR #{pr_number}. Issue closed automatically."


def format_build_failed_comment(excerpt: str) -> str:
    return "\n".join([
        "❌ Build verification failed before merge. The PR was not merged.",
        "",
        "```",
        excerpt.strip(),
        "```",
    ])


def format_conflict_report(
    pr_number: int,
    details: Dict[str, object],
    conflicting_files: Sequence[str],
    checks: Sequence[Dict[str, str]],
) -> str:
    """Diagnostics for a PR whose conflicts cannot be resolved automatically."""
    lines = [
        f"❌ PR #{pr_number} has merge conflicts that require manual resolution.",
        "",
        "**Conflicting files:**",
    ]
    lines += [f"- `{f}`" for f in conflicting_files] or ["- (unknown)"]
    lines += [
        "",
        "**Pull request state:**",
        f"- State: {details.get('state')}",
        f"- Draft: {details.get('draft')}",
        f"- Base: {details.get('base_ref')}",
        f"- Head: {details.get('head_ref')}",
        f"- Mergeable state: {details.get('mergeable_state')}",
        f"- Commits: {details.get('commits')}, "
        f"+{details.get('additions')} / -{details.get('deletions')}, "
        f"{details.get('changed_files')} file(s) changed",
        "",
        "**Status checks:**",
    ]
    lines += [f"- {c.get('name')}: {c.get('state')}" for c in checks] or ["- (none reported)"]
    return "\n".join(lines)


def _pr_link(repo_slug: Optional[str], number: int) -> List[str]:
    return [f"   Link: https://github.com/{repo_slug}/pull/{number}"] if repo_slug else []


def format_merge_summary(summary: MergeSummary, repo_slug: Optional[str] = None) -> str:
    lines = ["", RULE_NARROW, "=== Merge Summary ===", RULE_NARROW]

    def section(header: str, results: List[MergeAttemptResult], detail) -> None:
        if not results:
            return
        lines.append(f"\n{header}: {len(results)}")
        for r in results:
            lines.append(f"   PR #{r.pr_number}: {r.title}")
            lines.extend(_pr_link(repo_slug, r.pr_number))
            lines.append(detail(r))
            lines.extend(f"   Warning: {w}" for w in r.warnings)

    section("✅ Successful Merges", summary.successful, lambda r: f"   Commit: {r.merge_commit_id}")
    section("❌ Failed Merges", summary.failed, lambda r: f"   Reason: {r.reason}")
    section("⏭️  Skipped PRs", summary.skipped, lambda r: f"   Reason: {r.reason}")

    if summary.error:
        lines.append(f"\n❌ Error: {summary.error}")
    if summary.total_checked == 0 and not summary.error:
        lines.append("\nNo open pull requests were eligible for processing.")
    lines += ["", RULE_NARROW]
    return "\n".join(lines)
