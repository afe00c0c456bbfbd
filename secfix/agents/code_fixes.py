"""
Code-Level Known Fixes
======================
Deterministic fixes for build failures whose cause is recognisable from the
diagnostics alone. The repair loop tries these before asking the reasoning
service; a known fix is applied at most once per run.

Every fix goes through SafeOperationExecutor.apply_config_edit, so it gets
the same backup/restore protection and manifest restrictions as a planned
operation.
"""
import os
import re
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from secfix.agents.safe_operation_executor import SafeOperationExecutor, SafeOperationError
from secfix.executor.project_detector import find_project_files, read_project_property
from secfix.models.plan import SafeOperation, SafeOperationKind

logger = logging.getLogger(__name__)

# Type or namespace could not be found / name does not exist in context
_NAMESPACE_ERROR_RE = re.compile(r"\berror\s+CS0(?:246|103)\b")


@dataclass
class KnownFix:
    name: str
    description: str
    # (diagnostics, working_dir) -> SafeOperation to apply, or None
    detect: Callable[[str, str], Optional[SafeOperation]]


def _is_sdk_style(project_path: str) -> bool:
    try:
        return "Sdk" in ET.parse(project_path).getroot().attrib
    except (OSError, ET.ParseError):
        return False


def detect_disabled_implicit_usings(diagnostics: str, working_dir: str) -> Optional[SafeOperation]:
    """
    Namespace-resolution errors in a project that has implicit usings off.

    Matches a manifest with ``<ImplicitUsings>disable</ImplicitUsings>``, or
    an SDK-style manifest without the property that the failing build names.
    """
    if not _NAMESPACE_ERROR_RE.search(diagnostics):
        return None

    for project in find_project_files(working_dir):
        setting = (read_project_property(project, "ImplicitUsings") or "").lower()
        explicit_off = setting in ("disable", "false")
        implicit_off = (
            not setting
            and _is_sdk_style(project)
            and os.path.basename(project) in diagnostics
        )
        if explicit_off or implicit_off:
            return SafeOperation(
                kind=SafeOperationKind.CONFIG_EDIT,
                target_file=os.path.relpath(project, working_dir),
                property_name="ImplicitUsings",
                value="enable",
                rationale="Enabled implicit usings",
            )
    return None


KNOWN_FIXES: List[KnownFix] = [
    KnownFix(
        name="implicit-usings",
        description="Enabled implicit usings",
        detect=detect_disabled_implicit_usings,
    ),
]


class CodeLevelFixer:
    """Applies KNOWN_FIXES through an executor; remembers which ones already ran."""

    def __init__(self, executor: SafeOperationExecutor, fixes: Optional[List[KnownFix]] = None) -> None:
        self.executor = executor
        self.fixes = fixes if fixes is not None else KNOWN_FIXES
        self._applied: Set[str] = set()

    def reset(self) -> None:
        """Forget applied fixes; called at the start of each repair run."""
        self._applied.clear()

    def try_apply(self, diagnostics: str) -> Optional[str]:
        """Apply the first matching fix not yet used. Returns its description, or None."""
        for fix in self.fixes:
            if fix.name in self._applied:
                continue
            op = fix.detect(diagnostics, self.executor.working_dir)
            if op is None:
                continue

            self._applied.add(fix.name)
            try:
                self.executor.apply_config_edit(op)
            except SafeOperationError as e:
                logger.warning("Known fix '%s' could not be applied: %s", fix.name, e)
                continue
            logger.info("Applied known fix '%s' to %s", fix.name, op.target_file)
            return fix.description
        return None
