"""Admin dashboard, broadcast notifications and background job polling."""

import os

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlmodel import Session

from .. import models
from ..auth import require_admin
from ..database import get_session
from ..schemas import BroadcastIn
from ..services.dashboard import DashboardService
from ..services.notifications import run_broadcast
from ..utils.jobs import JobStore

router = APIRouter(prefix="/admin", tags=["admin"])

jobs = JobStore(
    max_jobs=int(os.getenv("JOB_MAX_JOBS", "500")),
    ttl_seconds=int(os.getenv("JOB_TTL_SECONDS", "86400")),
)


@router.get("/dashboard/stats")
def dashboard_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Users, courses, appointments, revenue and test-prep headline numbers."""
    return DashboardService(db).stats()


@router.get("/dashboard/activities")
def dashboard_activities(limit: int = Query(20, ge=1, le=100), db: Session = Depends(get_session),
                         admin: models.User = Depends(require_admin)):
    return {"activities": DashboardService(db).activities(limit)}


@router.post("/notifications/broadcast", status_code=202)
def broadcast(payload: BroadcastIn, request: Request, admin: models.User = Depends(require_admin)):
    """Queue a broadcast and return a job id for polling."""
    created = jobs.submit(
        kind="broadcast",
        params=payload.model_dump(mode="json"),
        request_id=getattr(request.state, "request_id", ""),
        submitted_by=admin.id,
        worker=run_broadcast,
    )
    return {**created, "status_url": f"/admin/jobs/{created['job_id']}"}


@router.get("/jobs/{job_id}")
def get_job(job_id: str, admin: models.User = Depends(require_admin)):
    job = jobs.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return job
