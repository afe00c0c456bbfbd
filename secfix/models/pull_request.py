"""
Pull Request Models
===================
What the merge gate reads from the platform and what it reports back.

PullRequestCandidate is rebuilt from the platform on every pass and never
cached, so label/approval changes between runs are always observed.
"""
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel


class MergeableState(str, Enum):
    UNKNOWN = "unknown"
    MERGEABLE = "mergeable"
    CONFLICTING = "conflicting"


class MergeOutcome(str, Enum):
    MERGED = "merged"
    SKIPPED = "skipped"
    FAILED = "failed"


class PullRequestCandidate(BaseModel):
    number: int
    title: str = ""
    labels: Set[str] = set()
    head_ref: str = ""
    head_sha: str = ""
    base_ref: str = ""
    body_text: str = ""
    draft: bool = False
    state: str = "open"
    mergeable_state: MergeableState = MergeableState.UNKNOWN

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PullRequestCandidate":
        """Build a candidate from a GitHub REST pull request payload."""
        mergeable = data.get("mergeable")
        if mergeable is True:
            state = MergeableState.MERGEABLE
        elif mergeable is False or data.get("mergeable_state") == "dirty":
            state = MergeableState.CONFLICTING
        else:
            state = MergeableState.UNKNOWN
        head = data.get("head") or {}
        base = data.get("base") or {}
        return cls(
            number=int(data["number"]),
            title=data.get("title") or "",
            labels={(l.get("name") or "").lower() for l in data.get("labels") or [] if l.get("name")},
            head_ref=head.get("ref") or "",
            head_sha=head.get("sha") or "",
            base_ref=base.get("ref") or "",
            body_text=data.get("body") or "",
            draft=bool(data.get("draft")),
            state=data.get("state") or "open",
            mergeable_state=state,
        )

    def has_label(self, name: str) -> bool:
        return name.lower() in self.labels


class MergeAttemptResult(BaseModel):
    pr_number: int
    title: str = ""
    outcome: MergeOutcome
    reason: Optional[str] = None
    merge_commit_id: Optional[str] = None
    warnings: List[str] = []


class MergeSummary(BaseModel):
    successful: List[MergeAttemptResult] = []
    failed: List[MergeAttemptResult] = []
    skipped: List[MergeAttemptResult] = []
    error: Optional[str] = None

    def add(self, result: MergeAttemptResult) -> None:
        if result.outcome == MergeOutcome.MERGED:
            self.successful.append(result)
        elif result.outcome == MergeOutcome.FAILED:
            self.failed.append(result)
        else:
            self.skipped.append(result)

    @property
    def total_checked(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.skipped)
