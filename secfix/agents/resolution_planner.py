"""
Resolution Planner
==================
Turns a failing build's diagnostics into a RemediationPlan by asking the
reasoning service, then decoding and validating its answer.

    plan(diagnostics, prior_attempts) -> RemediationPlan | None

None means "cannot proceed automatically": empty response, no JSON object
in the response, JSON that does not match the plan shape, or a transport
failure. The planner never guesses and never raises for those cases.

Operations whose kind is outside the whitelist are dropped here with a
warning, so one bad entry does not invalidate an otherwise usable plan.
"""
import json
import re
import logging
from typing import Optional, Protocol, Sequence

from pydantic import ValidationError

from secfix.executor.project_detector import find_primary_project, get_target_framework
from secfix.llm.prompts import PLANNER_SYSTEM_PROMPT, build_resolution_prompt
from secfix.models.plan import RemediationPlan, normalize_kind
from secfix.models.remediation import RemediationAttempt

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_PLAN_KEYS = {
    "rootCause", "root_cause",
    "breakingChanges", "breaking_changes",
    "safeOperations", "suggestedSafeOperations", "safe_operations",
}
_OPERATION_LIST_KEYS = ("safeOperations", "suggestedSafeOperations", "safe_operations")


class CompletionClient(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


def extract_json_object(raw: str) -> Optional[str]:
    """Outermost ``{...}`` span of ``raw`` (tolerates prose or code fences around it)."""
    if not raw:
        return None
    match = _JSON_OBJECT_RE.search(raw)
    return match.group(0) if match else None


def parse_plan(raw: str) -> Optional[RemediationPlan]:
    """Decode and validate a reasoning-service response. Returns None if unusable."""
    if not raw or not raw.strip():
        logger.warning("Reasoning service returned an empty response")
        return None

    payload = extract_json_object(raw)
    if payload is None:
        logger.warning("Could not find JSON in reasoning service response")
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning("Reasoning service response is not valid JSON: %s", e)
        return None

    if not isinstance(data, dict) or not (_PLAN_KEYS & data.keys()):
        logger.warning("Reasoning service response does not look like a remediation plan")
        return None

    for key in _OPERATION_LIST_KEYS:
        ops = data.get(key)
        if ops is None:
            continue
        if not isinstance(ops, list):
            logger.warning("Ignoring non-list %s in plan", key)
            data[key] = []
            continue
        kept = []
        for op in ops:
            raw_kind = op.get("kind", op.get("action")) if isinstance(op, dict) else None
            if normalize_kind(raw_kind) is None:
                logger.warning("Dropping operation with disallowed kind %r", raw_kind)
                continue
            kept.append(op)
        data[key] = kept

    try:
        return RemediationPlan.model_validate(data)
    except ValidationError as e:
        logger.warning("Remediation plan failed validation: %s", e.errors()[:3])
        return None


class ResolutionPlanner:
    """Asks the reasoning service for a plan for one working copy."""

    def __init__(self, working_dir: str, client: CompletionClient) -> None:
        if not working_dir:
            raise ValueError("working_dir is required")
        if client is None:
            raise ValueError("client is required")
        self.working_dir = working_dir
        self.client = client

    def build_prompt(self, diagnostics: str, prior_attempts: Sequence[RemediationAttempt]) -> str:
        project = find_primary_project(self.working_dir)
        return build_resolution_prompt(
            diagnostics=diagnostics,
            prior_attempts=prior_attempts,
            target_framework=get_target_framework(project),
            project_path=self.working_dir,
        )

    async def plan(
        self,
        diagnostics: str,
        prior_attempts: Sequence[RemediationAttempt] = (),
    ) -> Optional[RemediationPlan]:
        prompt = self.build_prompt(diagnostics, prior_attempts)
        logger.info("Requesting resolution plan (%d prior attempts)", len(prior_attempts))
        try:
            raw = await self.client.complete(PLANNER_SYSTEM_PROMPT, prompt)
        except Exception as e:
            logger.error("Reasoning service call failed: %s", e)
            return None

        plan = parse_plan(raw)
        if plan is not None:
            logger.info(
                "Plan received: %d safe operation(s), %d breaking change(s)",
                len(plan.safe_operations), len(plan.breaking_changes),
            )
        return plan
