"""
Vulnerability Models
====================
Pydantic models for vulnerability data consumed by the remediation flow.

AdvisoryDetail        - one advisory as returned by the vulnerability database
                        (OSV record, flattened to the fields the core reads)
VulnerabilityRecord   - one vulnerable package version plus the version that
                        fixes it. Immutable once built; the remediation service
                        only reads it.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class AdvisoryDetail(BaseModel):
    id: str
    summary: Optional[str] = None
    details: Optional[str] = None
    score: Optional[float] = None
    fixed_in: List[str] = []
    affected_versions: List[str] = []
    published_date: Optional[str] = None
    references: List[str] = []


class VulnerabilityRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    package_name: str
    current_version: str
    fixed_version: str
    severity: str = "unknown"
    advisory_ids: tuple[str, ...] = ()

    @property
    def key(self) -> str:
        return f"{self.package_name}@{self.current_version}"
