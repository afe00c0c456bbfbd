"""
Results Writer
==============
Serializes a run summary (remediation and/or merge) to a JSON report.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from secfix.models.pull_request import MergeSummary
from secfix.models.remediation import RemediationSummary
from secfix.models.vulnerability import VulnerabilityRecord

logger = logging.getLogger(__name__)


class ResultsWriter:
    """Compiles run results into one JSON document."""

    @staticmethod
    def build_report(
        repo_path: str,
        vulnerabilities: Optional[list] = None,
        remediation: Optional[RemediationSummary] = None,
        merge: Optional[MergeSummary] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "repository": os.path.abspath(repo_path),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        if vulnerabilities is not None:
            data["vulnerabilities"] = [
                v.model_dump(mode="json") if isinstance(v, VulnerabilityRecord) else v
                for v in vulnerabilities
            ]
        if remediation is not None:
            data["remediation"] = {
                "total": remediation.total,
                "succeeded": len(remediation.succeeded),
                "failed": len(remediation.failed),
                "items": [i.model_dump(mode="json") for i in remediation.items],
            }
        if merge is not None:
            data["merge"] = {
                "total_checked": merge.total_checked,
                **merge.model_dump(mode="json"),
            }
        return data

    @staticmethod
    def write(data: Dict[str, Any], output_path: str = "results.json") -> bool:
        """Write ``data`` as indented JSON. Returns False (and logs) on failure."""
        try:
            abs_output = os.path.abspath(output_path)
            logger.info("Writing results to %s", abs_output)
            with open(abs_output, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write %s: %s", output_path, e, exc_info=True)
            return False
