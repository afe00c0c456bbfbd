"""
Remediation & Merge Endpoints
=============================
Routes:
    POST /remediate            scan → vulnerability check → remediation
    POST /merge-security-prs   one merge-gate pass

Both run synchronously within the request and return the run summary.
Bad input (missing repository, missing token) is a 400; anything
unexpected is a 500. Each run is recorded for GET /status.
"""
import os
import uuid
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, field_validator

from secfix.agents.orchestrator import run_merge_gate, run_remediation, scan_and_detect
from secfix.core.config import Settings
from secfix.services.results_writer import ResultsWriter
from secfix.state.run_state import RUNS

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class RemediateRequest(BaseModel):
    repo_path: str
    max_iterations: Optional[int] = None
    dry_run: bool = False         # Scan and report only

    @field_validator("repo_path")
    @classmethod
    def validate_repo_path(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("repo_path is required")
        return v

    @field_validator("max_iterations")
    @classmethod
    def validate_iterations(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_iterations must be >= 1")
        return v


class MergeRequest(BaseModel):
    repo_path: str
    approved_reviewers: Optional[List[str]] = None

    @field_validator("repo_path")
    @classmethod
    def validate_repo_path(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("repo_path is required")
        return v


def _require_repo(path: str) -> None:
    if not os.path.isdir(path):
        raise HTTPException(status_code=400, detail=f"Repository path does not exist: {path}")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("/remediate")
async def remediate(request: RemediateRequest):
    _require_repo(request.repo_path)
    settings = Settings.from_env(max_repair_iterations=request.max_iterations)
    record = RUNS.start(str(uuid.uuid4())[:12], "remediate", request.repo_path)

    try:
        scan = await scan_and_detect(request.repo_path, settings)
        if request.dry_run:
            report = ResultsWriter.build_report(request.repo_path, vulnerabilities=scan.vulnerabilities)
        else:
            summary = await run_remediation(request.repo_path, settings, records=scan.vulnerabilities)
            report = ResultsWriter.build_report(
                request.repo_path, vulnerabilities=scan.vulnerabilities, remediation=summary,
            )
    except ValueError as e:
        RUNS.finish(record, "failed", {"error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Remediation run failed")
        RUNS.finish(record, "failed", {"error": str(e)})
        raise HTTPException(status_code=500, detail=f"Remediation failed: {e}")

    RUNS.finish(record, "completed", report)
    return {"run_id": record["run_id"], **report}


@router.post("/merge-security-prs")
async def merge_security_prs(request: MergeRequest):
    _require_repo(request.repo_path)
    settings = Settings.from_env(approved_reviewers=request.approved_reviewers)
    record = RUNS.start(str(uuid.uuid4())[:12], "merge", request.repo_path)

    try:
        summary = await run_merge_gate(request.repo_path, settings)
    except ValueError as e:
        RUNS.finish(record, "failed", {"error": str(e)})
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Merge gate run failed")
        RUNS.finish(record, "failed", {"error": str(e)})
        raise HTTPException(status_code=500, detail=f"Merge gate failed: {e}")

    report = ResultsWriter.build_report(request.repo_path, merge=summary)
    RUNS.finish(record, "completed", report)
    return {"run_id": record["run_id"], **report}
