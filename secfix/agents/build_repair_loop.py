"""
Build Repair Loop
=================
Bounded build → diagnose → apply → rebuild cycle for one working copy.

State machine (per iteration):

    Building ──ok──▶ Success (terminal)
       │
       └─fail─▶ KnownFix? ──yes──▶ Applying ─▶ next iteration
                   │
                   no
                   ▼
                Planning ──no plan──▶ PlanningFailed (terminal)
                   │
                   ▼
                Applying ─▶ next iteration, or Exhausted (terminal)

Guarantees:
    - At most ``max_iterations`` builds per run.
    - Success is declared only by a clean build, never because a fix was
      applied. Every non-build attempt is recorded with succeeded=False.
    - Attempts are appended in order; the planner sees all earlier ones.
    - A missing plan ends the run immediately (no blind retries).
    - Backups are deleted on success and listed in the outcome on failure.
    - Known fixes and tracked backups start empty for every run, so a
      failed run's backups survive a later successful one.

Builds, known fixes and operations run via ``asyncio.to_thread``; steps
still run one at a time.

``run()`` only raises for programmer errors. Build, planning and operation
failures are all recorded in the returned RepairOutcome.
"""
import asyncio
import logging
from typing import List, Optional

from secfix.agents.code_fixes import CodeLevelFixer
from secfix.agents.resolution_planner import ResolutionPlanner
from secfix.agents.safe_operation_executor import SafeOperationExecutor
from secfix.core.constants import (
    STRATEGY_BUILD_SUCCESS, STRATEGY_CODE_FIX, STRATEGY_PLANNING_FAILED,
)
from secfix.core.output_formatter import format_breaking_changes_report, format_failure_summary
from secfix.executor.build_verifier import BuildVerifier
from secfix.models.plan import BreakingChange
from secfix.models.remediation import RemediationAttempt, RepairOutcome

logger = logging.getLogger(__name__)

PLANNING_FAILED_CHANGE = "Reasoning service unavailable or returned invalid response"
PLANNING_FAILED_SUMMARY = "AI-powered analysis failed. Unable to continue."


class BuildRepairLoop:
    """One repair run; not shared between concurrent callers."""

    def __init__(
        self,
        verifier: BuildVerifier,
        planner: ResolutionPlanner,
        executor: SafeOperationExecutor,
        code_fixer: Optional[CodeLevelFixer] = None,
    ) -> None:
        if verifier is None or planner is None or executor is None:
            raise ValueError("verifier, planner and executor are required")
        self.verifier = verifier
        self.planner = planner
        self.executor = executor
        self.code_fixer = code_fixer

    async def run(self, max_iterations: int) -> RepairOutcome:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")

        # Known fixes and tracked backups are per run
        self.executor.start_run()
        if self.code_fixer:
            self.code_fixer.reset()

        attempts: List[RemediationAttempt] = []
        breaking_changes: List[BreakingChange] = []
        root_cause: Optional[str] = None

        for i in range(1, max_iterations + 1):
            check = await asyncio.to_thread(self.verifier.verify)

            if check.success:
                attempts.append(RemediationAttempt(
                    attempt_number=i,
                    strategy=STRATEGY_BUILD_SUCCESS,
                    succeeded=True,
                ))
                self.executor.cleanup_backups()
                logger.info("Build passed on iteration %d", i)
                return RepairOutcome(
                    succeeded=True,
                    attempts=attempts,
                    root_cause_summary=root_cause,
                    breaking_changes=breaking_changes,
                )

            logger.warning("[Iteration %d] Build failed. Analyzing...", i)

            known_fix = None
            if self.code_fixer:
                known_fix = await asyncio.to_thread(self.code_fixer.try_apply, check.diagnostics)
            if known_fix:
                attempts.append(RemediationAttempt(
                    attempt_number=i,
                    strategy=STRATEGY_CODE_FIX,
                    diagnostic_text=check.diagnostics,
                    applied_change_description=known_fix,
                ))
                logger.info("[Iteration %d] Applied code-level fix: %s", i, known_fix)
                continue

            plan = await self.planner.plan(check.diagnostics, list(attempts))
            if plan is None:
                logger.error("[Iteration %d] No usable remediation plan. Stopping.", i)
                attempts.append(RemediationAttempt(
                    attempt_number=i,
                    strategy=STRATEGY_PLANNING_FAILED,
                    diagnostic_text=check.diagnostics,
                    applied_change_description=PLANNING_FAILED_CHANGE,
                ))
                root_cause = PLANNING_FAILED_SUMMARY
                break

            if plan.root_cause:
                root_cause = plan.root_cause

            applied = await asyncio.to_thread(self.executor.execute, plan.safe_operations)

            if plan.breaking_changes:
                logger.warning(format_breaking_changes_report(plan.breaking_changes, i))
                for change in plan.breaking_changes:
                    if change not in breaking_changes:
                        breaking_changes.append(change)

            attempts.append(RemediationAttempt(
                attempt_number=i,
                strategy=plan.strategy,
                diagnostic_text=check.diagnostics,
                applied_change_description=applied or None,
            ))

        outcome = RepairOutcome(
            succeeded=False,
            attempts=attempts,
            root_cause_summary=root_cause,
            breaking_changes=breaking_changes,
            pending_backups=self.executor.pending_backups,
        )
        logger.error(format_failure_summary(outcome))
        return outcome
