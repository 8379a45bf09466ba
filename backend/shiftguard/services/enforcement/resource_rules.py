"""
Resource-State Rules

Pure predicates over a resource snapshot and the requester. They encode the
marketplace invariants that static thresholds cannot express:

- create_job:   verified phone, no debt, new clients capped on open jobs
- apply_to_job: verified phone + identity, job open, enough lead time,
                one application per worker per job
- cancel_job:   owner only, enough lead time, nobody checked in yet
- send_message: participants only, job not cancelled

Each predicate returns None when satisfied, or a denying ActionDecision.
No predicate reads the store or the clock; the guard passes both in.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from ...models.db_models import JobStatus
from ...models.decisions import ActionDecision, BlockedBy, JobSnapshot, RequesterSnapshot


# =============================================================================
# RULE CONSTANTS
# =============================================================================

APPLY_LEAD_TIME = timedelta(hours=2)
CANCEL_LEAD_TIME = timedelta(hours=2)

# Clients with fewer completed jobs than this are "new"
NEW_CLIENT_COMPLETED_JOBS = 3
NEW_CLIENT_MAX_OPEN_JOBS = 3

# Job states that count against the new-client cap
ACTIVE_JOB_STATUSES = (JobStatus.DRAFT, JobStatus.OPEN, JobStatus.IN_PROGRESS)


class ResourceFact(str, Enum):
    """Facts a predicate needs the guard to load before evaluation."""
    JOB = "job"
    OPEN_JOB_COUNT = "open_job_count"
    PRIOR_APPLICATION = "prior_application"


@dataclass(frozen=True)
class ResourceContext:
    """Everything a resource-state predicate may look at."""
    requester: RequesterSnapshot
    now: datetime
    job: Optional[JobSnapshot] = None
    open_job_count: int = 0
    has_prior_application: bool = False


def _deny(reason: str, **metadata) -> ActionDecision:
    return ActionDecision.deny(BlockedBy.RESOURCE_STATE, reason, metadata or None)


def _time_until_start(job: JobSnapshot, now: datetime) -> timedelta:
    return job.start_time - now


# =============================================================================
# PREDICATES
# =============================================================================

def check_create_job(ctx: ResourceContext) -> Optional[ActionDecision]:
    requester = ctx.requester

    if not requester.phone_verified:
        return _deny("Verify your phone number before creating jobs")

    if requester.unpaid_debts > 0:
        return _deny(
            "You have unpaid debts. Settle them before creating new jobs.",
            unpaid_debts=requester.unpaid_debts,
        )

    if (
        requester.completed_jobs < NEW_CLIENT_COMPLETED_JOBS
        and ctx.open_job_count >= NEW_CLIENT_MAX_OPEN_JOBS
    ):
        return _deny(
            f"New clients can have at most {NEW_CLIENT_MAX_OPEN_JOBS} active jobs at a time",
            rule="new_client_cap",
            open_jobs=ctx.open_job_count,
            max_open_jobs=NEW_CLIENT_MAX_OPEN_JOBS,
        )

    return None


def check_apply_to_job(ctx: ResourceContext) -> Optional[ActionDecision]:
    requester = ctx.requester
    job = ctx.job

    if not requester.phone_verified:
        return _deny("Verify your phone number before applying to jobs")

    if not requester.identity_verified:
        return _deny("Complete document verification before applying to jobs")

    if job is None:
        return _deny("Job not found")

    if job.status != JobStatus.OPEN:
        return _deny("This job is no longer accepting applications", status=job.status.value)

    if _time_until_start(job, ctx.now) < APPLY_LEAD_TIME:
        return _deny(
            "You cannot apply to jobs starting in less than 2 hours",
            start_time=job.start_time.isoformat(),
        )

    if ctx.has_prior_application:
        return _deny("You have already applied to this job")

    return None


def check_cancel_job(ctx: ResourceContext) -> Optional[ActionDecision]:
    job = ctx.job

    if job is None:
        return _deny("Job not found")

    if job.owner_id != ctx.requester.user_id:
        return _deny("You cannot cancel someone else's job")

    if _time_until_start(job, ctx.now) < CANCEL_LEAD_TIME:
        return _deny(
            "Jobs cannot be cancelled less than 2 hours before start. Contact support.",
            start_time=job.start_time.isoformat(),
        )

    # Irreversible once work has begun
    if job.has_check_ins:
        return _deny("Jobs cannot be cancelled after workers have checked in")

    return None


def check_send_message(ctx: ResourceContext) -> Optional[ActionDecision]:
    job = ctx.job

    if job is None:
        return _deny("Job not found")

    if not job.is_participant(ctx.requester.user_id):
        return _deny("You are not a participant of this job")

    if job.status == JobStatus.CANCELLED:
        return _deny("You cannot send messages in a cancelled job")

    return None
