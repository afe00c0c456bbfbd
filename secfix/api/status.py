"""
GET /status
Recent remediation / merge runs handled by this process, most recent first.
"""
from fastapi import APIRouter

from secfix.state.run_state import RUNS

router = APIRouter()


@router.get("/status")
async def get_status():
    runs = RUNS.recent()
    return {
        "running": sum(1 for r in runs if r["status"] == "running"),
        "runs": runs,
    }
