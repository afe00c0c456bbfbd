"""
Run State
=========
In-memory record of recent runs, served by GET /status.

Process-local only: nothing is persisted, and eligibility or remediation
decisions never read from it.
"""
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, TypedDict

_HISTORY_LIMIT = 20


class RunRecord(TypedDict):
    run_id: str
    kind: str                # scan / remediate / merge
    repo_path: str
    status: str              # running / completed / failed
    started_at: str
    finished_at: Optional[str]
    summary: Dict[str, Any]


class RunRegistry:
    def __init__(self, limit: int = _HISTORY_LIMIT) -> None:
        self._runs: Deque[RunRecord] = deque(maxlen=limit)

    def start(self, run_id: str, kind: str, repo_path: str) -> RunRecord:
        record: RunRecord = {
            "run_id": run_id,
            "kind": kind,
            "repo_path": repo_path,
            "status": "running",
            "started_at": datetime.now(timezone.utc).isoformat(),
            "finished_at": None,
            "summary": {},
        }
        self._runs.append(record)
        return record

    def finish(self, record: RunRecord, status: str, summary: Dict[str, Any]) -> None:
        record["status"] = status
        record["summary"] = summary
        record["finished_at"] = datetime.now(timezone.utc).isoformat()

    def recent(self) -> List[RunRecord]:
        """Most recent first."""
        return list(reversed(self._runs))

    def clear(self) -> None:
        self._runs.clear()


RUNS = RunRegistry()
