from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class JobStatusResponse(BaseModel):
    """Scheduler job state returned by the admin endpoints."""
    id: str
    scheduled: bool
    running: bool
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_outcome: Optional[str] = None     # "ok" | "failed"
    last_summary: Optional[dict[str, Any]] = None
    last_error: Optional[str] = None


class JobRunResponse(BaseModel):
    id: str
    outcome: str
    summary: Optional[dict[str, Any]] = None
