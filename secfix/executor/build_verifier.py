"""
Build Verifier
==============
Runs ``dotnet restore`` followed by ``dotnet build`` in a working copy and
reports pass/fail plus the captured diagnostic text.

BOUNDARY RULES:
    - Verifier ONLY observes the build.
    - Verifier NEVER edits files and NEVER calls the LLM.
    - Verifier never raises for a failing build; infrastructure errors
      (dotnet missing, sandbox failure) are reported as a failed check.

The diagnostic text keeps the section markers the repair prompt relies on:

    === RESTORE ===
    ...
    === RESTORE ERRORS ===
    ...
    === BUILD ===
    ...
    === BUILD ERRORS ===
"""
import logging
from dataclasses import dataclass
from typing import Optional

from secfix.executor.command_runner import CommandRunner, CommandResult, create_log_excerpt

logger = logging.getLogger(__name__)


@dataclass
class BuildCheck:
    """
    Result of one restore + build.

    Fields
    ------
    success : bool
        True only when the build step exited 0.
    exit_code : int
        Exit code of the build step (or of restore, if the build never ran).
    diagnostics : str
        Full restore + build output with section markers.
    log_excerpt : str
        First/last lines of ``diagnostics`` for reports.
    duration_seconds : float
        Combined wall-clock time of both steps.
    error : str | None
        Infrastructure error, if any.
    """
    success: bool = False
    exit_code: int = -1
    diagnostics: str = ""
    log_excerpt: str = ""
    duration_seconds: float = 0.0
    error: Optional[str] = None


def _append_section(parts: list[str], label: str, result: CommandResult) -> None:
    parts.append(f"=== {label} ===")
    parts.append(result.stdout)
    if result.stderr.strip():
        parts.append(f"=== {label} ERRORS ===")
        parts.append(result.stderr)


class BuildVerifier:
    """Restore + build one working copy through a CommandRunner."""

    def __init__(
        self,
        working_dir: str,
        runner: CommandRunner,
        timeout_seconds: Optional[int] = None,
        program: str = "dotnet",
    ) -> None:
        if not working_dir:
            raise ValueError("working_dir is required")
        if runner is None:
            raise ValueError("runner is required")
        self.working_dir = working_dir
        self.runner = runner
        self.timeout_seconds = timeout_seconds
        self.program = program

    def verify(self) -> BuildCheck:
        """Run restore then build. The restore exit code does not short-circuit the build."""
        parts: list[str] = []
        check = BuildCheck()

        logger.info("Restoring packages in %s", self.working_dir)
        restore = self.runner.run(self.working_dir, self.program, ["restore"], self.timeout_seconds)
        _append_section(parts, "RESTORE", restore)
        check.duration_seconds += restore.duration_seconds
        if restore.error:
            check.error = restore.error

        logger.info("Building %s", self.working_dir)
        build = self.runner.run(self.working_dir, self.program, ["build"], self.timeout_seconds)
        _append_section(parts, "BUILD", build)
        check.duration_seconds += build.duration_seconds
        if build.error:
            check.error = build.error

        check.exit_code = build.exit_code
        check.success = build.exit_code == 0
        check.diagnostics = "\n".join(parts)
        check.log_excerpt = create_log_excerpt(check.diagnostics)

        if check.success:
            logger.info("Build succeeded (%.1fs)", check.duration_seconds)
        else:
            logger.warning("Build failed with exit code %d", check.exit_code)
        return check
