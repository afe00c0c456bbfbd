"""
Remediation Models
==================
Audit trail of one build-repair run and the per-vulnerability results of
one remediation pass.

RemediationAttempt  - one loop iteration (1-based attempt_number, insertion
                      order == attempt order)
RepairOutcome       - terminal result of one BuildRepairLoop.run()
RemediationItem     - result for one vulnerability group (branch, PR, issue)
RemediationSummary  - aggregate returned by RemediationService.remediate()
"""
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from .plan import BreakingChange
from .vulnerability import VulnerabilityRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemediationAttempt(BaseModel):
    attempt_number: int
    strategy: str
    diagnostic_text: str = ""
    applied_change_description: Optional[str] = None
    succeeded: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class RepairOutcome(BaseModel):
    succeeded: bool = False
    attempts: List[RemediationAttempt] = []
    root_cause_summary: Optional[str] = None
    breaking_changes: List[BreakingChange] = []
    pending_backups: List[str] = []     # Left on disk for manual rollback
    completed_at: datetime = Field(default_factory=_utcnow)

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)


class RemediationItem(BaseModel):
    vulnerability: VulnerabilityRecord
    success: bool = False
    branch_name: str = ""
    pull_request_number: Optional[int] = None
    pull_request_url: str = ""
    issue_number: Optional[int] = None
    repair: Optional[RepairOutcome] = None
    error: str = ""


class RemediationSummary(BaseModel):
    items: List[RemediationItem] = []
    message: str = ""

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> List[RemediationItem]:
        return [i for i in self.items if i.success]

    @property
    def failed(self) -> List[RemediationItem]:
        return [i for i in self.items if not i.success]
