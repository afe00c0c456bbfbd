"""
Remediation Plan Model
======================
Structured plan returned by the ResolutionPlanner.

The plan comes from an external reasoning service, so every field has a
default and the JSON key spellings used by older prompt versions are
accepted as aliases (``oldApi``, ``fixGuidance``, ``suggestedSafeOperations``,
``action``, ``file``, ``reasoning``).

SafeOperationKind is a closed set. Nothing outside it can be represented
by a validated SafeOperation, which is what lets the executor treat the
whitelist as a type check.
"""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from secfix.core.constants import STRATEGY_AI_RESOLUTION


class SafeOperationKind(str, Enum):
    PACKAGE_ADD = "package-add"
    PACKAGE_REMOVE = "package-remove"
    CONFIG_EDIT = "config-edit"


# Older spellings → canonical kind
_KIND_ALIASES = {
    "dotnet-package-add": SafeOperationKind.PACKAGE_ADD,
    "dotnet-package-remove": SafeOperationKind.PACKAGE_REMOVE,
    "csproj-edit": SafeOperationKind.CONFIG_EDIT,
}


def normalize_kind(value) -> Optional[SafeOperationKind]:
    """Map a raw kind string onto the whitelist. Returns None when not allowed."""
    if isinstance(value, SafeOperationKind):
        return value
    if not isinstance(value, str):
        return None
    raw = value.strip().lower()
    if raw in _KIND_ALIASES:
        return _KIND_ALIASES[raw]
    try:
        return SafeOperationKind(raw)
    except ValueError:
        return None


class BreakingChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location: str = ""
    affected_code: str = Field("", validation_alias=AliasChoices("affectedCode", "affected_code"))
    old_signature: str = Field("", validation_alias=AliasChoices("oldSignature", "oldApi", "old_signature"))
    new_signature: str = Field("", validation_alias=AliasChoices("newSignature", "newApi", "new_signature"))
    guidance: str = Field("", validation_alias=AliasChoices("guidance", "fixGuidance"))
    severity: Literal["critical", "high", "medium"] = "medium"

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, v):
        v = str(v or "").strip().lower()
        return v if v in ("critical", "high", "medium") else "medium"


class SafeOperation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: SafeOperationKind = Field(validation_alias=AliasChoices("kind", "action"))
    command: Optional[str] = None
    target_file: Optional[str] = Field(None, validation_alias=AliasChoices("targetFile", "file", "target_file"))
    # Structured config edit: set MSBuild <property> to <value>
    property_name: Optional[str] = Field(None, validation_alias=AliasChoices("property", "propertyName", "property_name"))
    value: Optional[str] = None
    rationale: str = Field("", validation_alias=AliasChoices("rationale", "reasoning"))

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v):
        kind = normalize_kind(v)
        if kind is None:
            raise ValueError(f"operation kind not allowed: {v!r}")
        return kind

    def describe(self) -> str:
        return self.rationale or self.command or f"{self.kind.value} {self.target_file or ''}".strip()


class RemediationPlan(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    root_cause: str = Field("", validation_alias=AliasChoices("rootCause", "root_cause"))
    strategy: str = STRATEGY_AI_RESOLUTION
    breaking_changes: List[BreakingChange] = Field(
        default_factory=list, validation_alias=AliasChoices("breakingChanges", "breaking_changes")
    )
    safe_operations: List[SafeOperation] = Field(
        default_factory=list,
        validation_alias=AliasChoices("safeOperations", "suggestedSafeOperations", "safe_operations"),
    )

    @field_validator("strategy", mode="before")
    @classmethod
    def _default_strategy(cls, v):
        return v if isinstance(v, str) and v.strip() else STRATEGY_AI_RESOLUTION
