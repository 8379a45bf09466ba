"""
Jobs API Routes

Mutating job endpoints. Every route is gated by require_action(), which
decides, records the audit entry and only then lets the handler run.
"""
from datetime import datetime
from typing import Optional
from uuid import uuid4
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..database import get_db
from ..guards import GuardedAction, require_action
from ..models.db_models import (
    Action, JobDB, JobStatus, JobApplicationDB, ApplicationStatus, JobAssignmentDB, JobMessageDB,
)
from ..timeutils import utcnow, to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateJobRequest(BaseModel):
    """Request to post a new job."""
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, description="Free-text job description")
    start_time: datetime = Field(..., description="When the job starts (ISO 8601)")
    publish: bool = Field(default=True, description="Open immediately; False keeps it as a draft")

    @field_validator('start_time')
    @classmethod
    def normalize_start_time(cls, v):
        return to_naive_utc(v)


class ApplyRequest(BaseModel):
    cover_note: Optional[str] = None


class SendMessageRequest(BaseModel):
    body: str = Field(..., min_length=1)


class JobResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    status: str
    start_time: str


def _job_response(job: JobDB) -> JobResponse:
    return JobResponse(
        id=job.id,
        owner_id=job.owner_id,
        title=job.title,
        status=job.status.value,
        start_time=job.start_time.isoformat(),
    )


def _get_job_or_404(db: Session, job_id: str) -> JobDB:
    job = db.query(JobDB).filter(JobDB.id == job_id).first()
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# =============================================================================
# GUARDED ENDPOINTS
# =============================================================================

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: CreateJobRequest,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.CREATE_JOB, resource_param=None)),
):
    """Post a new job."""
    job = JobDB(
        id=str(uuid4()),
        owner_id=guarded.user.id,
        title=request.title,
        description=request.description,
        start_time=request.start_time,
        status=JobStatus.OPEN if request.publish else JobStatus.DRAFT,
    )
    db.add(job)
    db.commit()

    logger.info(f"Job created: {job.id} by {guarded.user.id}")
    return _job_response(job)


@router.post("/{job_id}/apply", response_model=dict, status_code=status.HTTP_201_CREATED)
async def apply_to_job(
    job_id: str,
    request: Optional[ApplyRequest] = None,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.APPLY_TO_JOB)),
):
    """Apply to an open job. One application per worker per job."""
    application = JobApplicationDB(
        id=str(uuid4()),
        job_id=job_id,
        worker_id=guarded.user.id,
        status=ApplicationStatus.PENDING,
        cover_note=request.cover_note if request else None,
    )
    db.add(application)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent duplicate slipped past the guard; the unique constraint holds
        db.rollback()
        raise HTTPException(status_code=409, detail="You have already applied to this job")

    return {"application_id": application.id, "job_id": job_id, "status": application.status.value}


@router.post("/{job_id}/applications/{application_id}/accept", response_model=dict)
async def accept_application(
    job_id: str,
    application_id: str,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.ACCEPT_APPLICATION)),
):
    """Accept an application and assign the worker to the job."""
    job = _get_job_or_404(db, job_id)
    if job.owner_id != guarded.user.id:
        raise HTTPException(status_code=403, detail="Only the job owner can accept applications")

    application = db.query(JobApplicationDB).filter(
        JobApplicationDB.id == application_id,
        JobApplicationDB.job_id == job_id,
    ).first()
    if application is None:
        raise HTTPException(status_code=404, detail="Application not found")

    application.status = ApplicationStatus.ACCEPTED
    assignment = JobAssignmentDB(
        id=str(uuid4()),
        job_id=job_id,
        worker_id=application.worker_id,
    )
    db.add(assignment)
    db.commit()

    return {"assignment_id": assignment.id, "job_id": job_id, "worker_id": application.worker_id}


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: str,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.CANCEL_JOB)),
):
    """Cancel a job the requester owns, before anyone has checked in."""
    job = _get_job_or_404(db, job_id)
    job.status = JobStatus.CANCELLED
    db.commit()

    logger.info(f"Job cancelled: {job_id} by {guarded.user.id}")
    return _job_response(job)


@router.post("/{job_id}/messages", response_model=dict, status_code=status.HTTP_201_CREATED)
async def send_message(
    job_id: str,
    request: SendMessageRequest,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.SEND_MESSAGE)),
):
    """Send a chat message to the other participants of a job."""
    message = JobMessageDB(
        id=str(uuid4()),
        job_id=job_id,
        sender_id=guarded.user.id,
        body=request.body,
    )
    db.add(message)
    db.commit()

    return {"message_id": message.id, "job_id": job_id}


@router.post("/{job_id}/check-in", response_model=dict)
async def check_in(
    job_id: str,
    db: Session = Depends(get_db),
    guarded: GuardedAction = Depends(require_action(Action.CHECK_IN)),
):
    """Mark the assigned worker as on site."""
    assignment = db.query(JobAssignmentDB).filter(
        JobAssignmentDB.job_id == job_id,
        JobAssignmentDB.worker_id == guarded.user.id,
    ).first()
    if assignment is None:
        raise HTTPException(status_code=404, detail="You are not assigned to this job")

    if assignment.check_in_time is None:
        assignment.check_in_time = utcnow()
        job = _get_job_or_404(db, job_id)
        if job.status == JobStatus.OPEN:
            job.status = JobStatus.IN_PROGRESS
        db.commit()

    return {"job_id": job_id, "check_in_time": assignment.check_in_time.isoformat()}
