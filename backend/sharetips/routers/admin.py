"""
backend/sharetips/routers/admin.py

Purpose:
    Operational endpoints for the scheduled jobs: list their state and
    trigger a run by hand. Guarded by a static admin key (X-Admin-Key).

Dependencies:
    - sharetips.workers._runner
    - sharetips.workers._state
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from sharetips.config import settings
from sharetips.models.jobs import JobRunResponse, JobStatusResponse
from sharetips.workers._runner import JobAlreadyRunningError, job_runner
from sharetips.workers._state import get_run_records

logger = logging.getLogger("sharetips.admin")

router = APIRouter(prefix="/admin", tags=["admin"])


async def require_admin_key(x_admin_key: str = Header(default="")) -> None:
    """FastAPI dependency: requires the configured admin key."""
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API disabled (ADMIN_API_KEY not set).",
        )
    if not hmac.compare_digest(x_admin_key.encode(), settings.ADMIN_API_KEY.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key.",
        )


@router.get("/jobs", response_model=list[JobStatusResponse])
async def list_jobs(_: None = Depends(require_admin_key)):
    """Scheduler state and last run record of every job."""
    from sharetips.main import job_specs, scheduler

    specs = job_specs()
    records = await get_run_records([s["id"] for s in specs])
    out = []
    for spec in specs:
        job = scheduler.get_job(spec["id"])
        record = records.get(spec["id"], {})
        out.append(JobStatusResponse(
            id=spec["id"],
            scheduled=job is not None,
            running=job_runner.is_running(spec["id"]),
            next_run_at=job.next_run_time if job else None,
            last_run_at=record.get("last_run_at"),
            last_outcome=record.get("last_outcome"),
            last_summary=record.get("last_summary"),
            last_error=record.get("last_error"),
        ))
    return out


@router.post("/jobs/{job_id}/run", response_model=JobRunResponse)
async def run_job(job_id: str, _: None = Depends(require_admin_key)):
    """Run a job now and wait for it. 409 while the same job is running."""
    from sharetips.main import job_specs

    spec = next((s for s in job_specs() if s["id"] == job_id), None)
    if spec is None:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")

    logger.info("Manual run requested: %s", job_id)
    try:
        result = await job_runner.run(job_id, spec["func"])
    except JobAlreadyRunningError:
        raise HTTPException(status_code=409, detail=f"Job '{job_id}' is already running.")
    return JobRunResponse(**result)
